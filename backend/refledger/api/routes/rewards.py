from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from refledger.api.deps import require_service_token
from refledger.db.session import get_db
from refledger.schemas.rewards import RewardAmountRequest, RewardBalanceRead, RewardLedgerEntryRead
from refledger.services.reward_service import credit, get_balance, list_entries, settle

router = APIRouter(dependencies=[Depends(require_service_token)])


@router.get("/{user_id}", response_model=RewardBalanceRead)
def read_balance(user_id: str, db: Session = Depends(get_db)) -> RewardBalanceRead:
    return RewardBalanceRead.model_validate(get_balance(db, user_id))


@router.get("/{user_id}/entries", response_model=list[RewardLedgerEntryRead])
def read_entries(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
) -> list[RewardLedgerEntryRead]:
    get_balance(db, user_id)
    return [RewardLedgerEntryRead.model_validate(entry) for entry in list_entries(db, user_id, limit)]


@router.post("/{user_id}/credit", response_model=RewardBalanceRead)
def credit_reward(
    user_id: str,
    payload: RewardAmountRequest,
    db: Session = Depends(get_db),
) -> RewardBalanceRead:
    return RewardBalanceRead.model_validate(credit(db, user_id, payload.amount))


@router.post("/{user_id}/settle", response_model=RewardBalanceRead)
def settle_reward(
    user_id: str,
    payload: RewardAmountRequest,
    db: Session = Depends(get_db),
) -> RewardBalanceRead:
    return RewardBalanceRead.model_validate(settle(db, user_id, payload.amount))
