from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from refledger.api.deps import require_service_token
from refledger.db.session import get_db
from refledger.schemas.users import ReferrerClaimRequest, UserCreateRequest, UserProfile, UserRead
from refledger.services.identity_service import (
    claim_referrer,
    create_user,
    get_referral_chain,
    get_user,
    get_user_by_telegram_id,
    list_referred_users,
    update_profile,
)

router = APIRouter(dependencies=[Depends(require_service_token)])


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register_user(payload: UserCreateRequest, db: Session = Depends(get_db)) -> UserRead:
    user = create_user(
        db,
        payload.telegram_id,
        payload.profile,
        referrer_code=payload.referrer_code,
        invite_code=payload.invite_code,
    )
    return UserRead.model_validate(user)


@router.get("/by-telegram/{telegram_id}", response_model=UserRead)
def read_user_by_telegram_id(telegram_id: int, db: Session = Depends(get_db)) -> UserRead:
    user = get_user_by_telegram_id(db, telegram_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserRead.model_validate(user)


@router.get("/{user_id}", response_model=UserRead)
def read_user(user_id: str, db: Session = Depends(get_db)) -> UserRead:
    return UserRead.model_validate(get_user(db, user_id))


@router.put("/{user_id}/profile", response_model=UserRead)
def write_profile(user_id: str, payload: UserProfile, db: Session = Depends(get_db)) -> UserRead:
    return UserRead.model_validate(update_profile(db, user_id, payload))


@router.post("/{user_id}/referrer", response_model=UserRead)
def attach_referrer(
    user_id: str,
    payload: ReferrerClaimRequest,
    db: Session = Depends(get_db),
) -> UserRead:
    return UserRead.model_validate(claim_referrer(db, user_id, payload.code))


@router.get("/{user_id}/referrals", response_model=list[UserRead])
def read_referred_users(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[UserRead]:
    get_user(db, user_id)
    return [UserRead.model_validate(user) for user in list_referred_users(db, user_id, limit=limit)]


@router.get("/{user_id}/upline", response_model=list[UserRead])
def read_upline(user_id: str, db: Session = Depends(get_db)) -> list[UserRead]:
    return [UserRead.model_validate(user) for user in get_referral_chain(db, user_id)]
