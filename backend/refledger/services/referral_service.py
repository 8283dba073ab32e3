from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refledger.core.config import get_settings
from refledger.db.models import ReferralAccount, ReferralLink, RewardWalletBalance, User
from refledger.services.code_allocator import allocate_unique, generate_code, normalize_code
from refledger.services.errors import LinkInactiveOrUnknown, LinkNotFound, NotFound
from refledger.services.transaction import with_rollback_on_error

settings = get_settings()


class _AccountAlreadyCreated(Exception):
    def __init__(self, account: ReferralAccount) -> None:
        super().__init__(account.id)
        self.account = account


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_account_for_user(db: Session, user_id: str) -> ReferralAccount | None:
    return db.scalar(select(ReferralAccount).where(ReferralAccount.user_id == user_id))


def get_account(db: Session, account_id: str) -> ReferralAccount:
    account = db.get(ReferralAccount, account_id)
    if not account:
        raise NotFound("Referral account not found")
    return account


@with_rollback_on_error
def ensure_referral_account(db: Session, user_id: str) -> ReferralAccount:
    existing = get_account_for_user(db, user_id)
    if existing:
        return existing

    # The user row must exist before its account.
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")

    def _raise_if_account_exists(_exc: IntegrityError) -> None:
        winner = get_account_for_user(db, user.id)
        if winner:
            raise _AccountAlreadyCreated(winner)

    try:
        account = allocate_unique(
            db,
            lambda code: ReferralAccount(user_id=user.id, referral_code=code),
            generate=lambda: generate_code(settings.referral_code_length, settings.referral_code_prefix),
            on_conflict=_raise_if_account_exists,
        )
    except _AccountAlreadyCreated as raced:
        db.commit()
        return raced.account

    db.commit()
    db.refresh(account)
    logger.info("Referral account {} created for user {}", account.id, user.id)
    return account


@with_rollback_on_error
def issue_link(db: Session, account_id: str, single_active: bool | None = None) -> ReferralLink:
    account = get_account(db, account_id)
    if single_active is None:
        single_active = settings.referral_single_active_link

    if single_active:
        db.execute(
            update(ReferralLink)
            .where(
                ReferralLink.referral_account_id == account.id,
                ReferralLink.is_active.is_(True),
            )
            .values(is_active=False)
        )

    link = allocate_unique(
        db,
        lambda code: ReferralLink(referral_account_id=account.id, invite_code=code, is_active=True),
        generate=lambda: generate_code(settings.invite_code_length),
    )
    account.last_link_update_at = _utc_now()
    db.add(account)
    db.commit()
    db.refresh(link)
    logger.info(
        "Issued invite {} for account {} (single_active={})",
        link.invite_code,
        account.id,
        single_active,
    )
    return link


@with_rollback_on_error
def deactivate_link(db: Session, link_id: str) -> ReferralLink:
    link = db.get(ReferralLink, link_id)
    if not link:
        raise LinkNotFound()
    if not link.is_active:
        return link

    link.is_active = False
    account = db.get(ReferralAccount, link.referral_account_id)
    if account:
        account.last_link_update_at = _utc_now()
        db.add(account)
    db.add(link)
    db.commit()
    db.refresh(link)
    logger.info("Deactivated invite {}", link.invite_code)
    return link


def resolve_link(db: Session, invite_code: str | None) -> ReferralAccount:
    normalized = normalize_code(invite_code)
    if not normalized:
        raise LinkInactiveOrUnknown()
    account = db.scalar(
        select(ReferralAccount)
        .join(ReferralLink, ReferralLink.referral_account_id == ReferralAccount.id)
        .where(
            ReferralLink.invite_code == normalized,
            ReferralLink.is_active.is_(True),
        )
    )
    if not account:
        raise LinkInactiveOrUnknown()
    return account


@with_rollback_on_error
def set_rewards_wallet(db: Session, account_id: str, wallet_id: str | None) -> ReferralAccount:
    account = get_account(db, account_id)
    account.rewards_wallet_id = (wallet_id or "").strip() or None
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def list_links(db: Session, account_id: str, active_only: bool = False) -> list[ReferralLink]:
    query = select(ReferralLink).where(ReferralLink.referral_account_id == account_id)
    if active_only:
        query = query.where(ReferralLink.is_active.is_(True))
    return list(db.scalars(query.order_by(ReferralLink.created_at.desc())).all())


def get_referral_overview(db: Session, user: User) -> dict:
    account = get_account_for_user(db, user.id)
    links = list_links(db, account.id) if account else []
    total_referrals = (
        db.scalar(select(func.count(User.id)).where(User.referred_by_user_id == user.id)) or 0
    )
    balance = db.scalar(select(RewardWalletBalance).where(RewardWalletBalance.user_id == user.id))

    return {
        "user_id": user.id,
        "referral_code": user.referral_code,
        "referred_by_user_id": user.referred_by_user_id,
        "account_id": account.id if account else None,
        "account_referral_code": account.referral_code if account else None,
        "rewards_wallet_id": account.rewards_wallet_id if account else None,
        "last_link_update_at": account.last_link_update_at if account else None,
        "links": links,
        "active_link_count": sum(1 for link in links if link.is_active),
        "total_referrals": int(total_referrals),
        "total_paid": balance.total_paid if balance else 0,
        "total_unpaid": balance.total_unpaid if balance else 0,
    }
