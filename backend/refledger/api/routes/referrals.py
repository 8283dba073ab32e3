from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from refledger.api.deps import require_service_token
from refledger.db.session import get_db
from refledger.schemas.referrals import (
    ReferralAccountEnsureRequest,
    ReferralAccountRead,
    ReferralLinkIssueRequest,
    ReferralLinkRead,
    ReferralOverviewRead,
    RewardsWalletUpdateRequest,
)
from refledger.services.identity_service import get_user
from refledger.services.referral_service import (
    deactivate_link,
    ensure_referral_account,
    get_account,
    get_referral_overview,
    issue_link,
    list_links,
    resolve_link,
    set_rewards_wallet,
)

router = APIRouter(dependencies=[Depends(require_service_token)])


@router.post("/accounts", response_model=ReferralAccountRead)
def ensure_account(
    payload: ReferralAccountEnsureRequest,
    db: Session = Depends(get_db),
) -> ReferralAccountRead:
    return ReferralAccountRead.model_validate(ensure_referral_account(db, payload.user_id))


@router.get("/users/{user_id}", response_model=ReferralOverviewRead)
def read_overview(user_id: str, db: Session = Depends(get_db)) -> ReferralOverviewRead:
    payload = get_referral_overview(db, get_user(db, user_id))
    payload["links"] = [ReferralLinkRead.model_validate(link) for link in payload["links"]]
    return ReferralOverviewRead.model_validate(payload)


@router.post(
    "/accounts/{account_id}/links",
    response_model=ReferralLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def create_link(
    account_id: str,
    payload: ReferralLinkIssueRequest | None = None,
    db: Session = Depends(get_db),
) -> ReferralLinkRead:
    single_active = payload.single_active if payload else None
    return ReferralLinkRead.model_validate(issue_link(db, account_id, single_active=single_active))


@router.get("/accounts/{account_id}/links", response_model=list[ReferralLinkRead])
def read_links(
    account_id: str,
    active_only: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[ReferralLinkRead]:
    get_account(db, account_id)
    return [ReferralLinkRead.model_validate(link) for link in list_links(db, account_id, active_only)]


@router.post("/links/{link_id}/deactivate", response_model=ReferralLinkRead)
def disable_link(link_id: str, db: Session = Depends(get_db)) -> ReferralLinkRead:
    return ReferralLinkRead.model_validate(deactivate_link(db, link_id))


@router.get("/links/resolve/{invite_code}", response_model=ReferralAccountRead)
def read_link_target(invite_code: str, db: Session = Depends(get_db)) -> ReferralAccountRead:
    return ReferralAccountRead.model_validate(resolve_link(db, invite_code))


@router.put("/accounts/{account_id}/rewards-wallet", response_model=ReferralAccountRead)
def write_rewards_wallet(
    account_id: str,
    payload: RewardsWalletUpdateRequest,
    db: Session = Depends(get_db),
) -> ReferralAccountRead:
    return ReferralAccountRead.model_validate(set_rewards_wallet(db, account_id, payload.wallet_id))
