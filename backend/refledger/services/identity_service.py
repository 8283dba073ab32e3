from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refledger.core.config import get_settings
from refledger.db.models import User
from refledger.schemas.users import UserProfile
from refledger.services.code_allocator import allocate_unique, generate_code, normalize_code
from refledger.services.errors import (
    DuplicateIdentity,
    LinkInactiveOrUnknown,
    NotFound,
    ReferralCycle,
    ReferrerAlreadySet,
    UnknownReferralCode,
)
from refledger.services.referral_service import resolve_link
from refledger.services.transaction import with_rollback_on_error

settings = get_settings()


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


def get_user_by_telegram_id(db: Session, telegram_id: int) -> User | None:
    return db.scalar(select(User).where(User.telegram_id == telegram_id))


def get_user_by_referral_code(db: Session, referral_code: str | None) -> User | None:
    normalized = normalize_code(referral_code)
    if not normalized:
        return None
    return db.scalar(select(User).where(User.referral_code == normalized))


def _resolve_referrer(db: Session, code: str) -> User:
    referrer = get_user_by_referral_code(db, code)
    if referrer:
        return referrer
    try:
        account = resolve_link(db, code)
    except LinkInactiveOrUnknown:
        raise UnknownReferralCode() from None
    return get_user(db, account.user_id)


def _lock_user(db: Session, user_id: str) -> User | None:
    return db.scalar(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _creates_cycle(db: Session, user_id: str, referrer: User) -> bool:
    # Every upline row is locked and re-read, so a concurrent claim in the
    # opposite direction either commits first and is seen here, or waits.
    seen: set[str] = set()
    current = _lock_user(db, referrer.id)
    while current is not None:
        if current.id == user_id:
            return True
        if current.id in seen or not current.referred_by_user_id:
            return False
        seen.add(current.id)
        current = _lock_user(db, current.referred_by_user_id)
    return False


@with_rollback_on_error
def create_user(
    db: Session,
    telegram_id: int,
    profile: UserProfile | None = None,
    referrer_code: str | None = None,
    invite_code: str | None = None,
) -> User:
    if get_user_by_telegram_id(db, telegram_id):
        raise DuplicateIdentity()

    referrer: User | None = None
    if referrer_code:
        referrer = get_user_by_referral_code(db, referrer_code)
        if not referrer:
            raise UnknownReferralCode()
    elif invite_code:
        referrer = get_user(db, resolve_link(db, invite_code).user_id)

    if referrer and referrer.telegram_id == telegram_id:
        referrer = None

    profile = profile or UserProfile()

    def _build(code: str) -> User:
        return User(
            telegram_id=telegram_id,
            username=_clean(profile.username),
            first_name=_clean(profile.first_name),
            last_name=_clean(profile.last_name),
            referral_code=code,
            referred_by_user_id=referrer.id if referrer else None,
        )

    def _raise_if_identity_taken(_exc: IntegrityError) -> None:
        if get_user_by_telegram_id(db, telegram_id):
            raise DuplicateIdentity()

    user = allocate_unique(
        db,
        _build,
        generate=lambda: generate_code(settings.referral_code_length, settings.referral_code_prefix),
        on_conflict=_raise_if_identity_taken,
    )
    db.commit()
    db.refresh(user)
    logger.info(
        "User {} registered for telegram id {} (referrer={})",
        user.id,
        telegram_id,
        user.referred_by_user_id,
    )
    return user


@with_rollback_on_error
def update_profile(db: Session, user_id: str, profile: UserProfile) -> User:
    user = get_user(db, user_id)
    user.username = _clean(profile.username)
    user.first_name = _clean(profile.first_name)
    user.last_name = _clean(profile.last_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@with_rollback_on_error
def claim_referrer(db: Session, user_id: str, code: str) -> User:
    """Attach a referrer to an existing user on their first link claim.

    ``code`` may be a user referral code or an active invite code. The
    assignment is write-once: the update only matches while
    ``referred_by_user_id`` is still empty. The claimant and the referrer's
    upline stay locked until commit, so two opposite claims cannot both pass
    the cycle check.
    """
    user = _lock_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    if user.referred_by_user_id:
        raise ReferrerAlreadySet()

    referrer = _resolve_referrer(db, code)
    if referrer.id == user.id or _creates_cycle(db, user.id, referrer):
        raise ReferralCycle()

    result = db.execute(
        update(User)
        .where(User.id == user.id, User.referred_by_user_id.is_(None))
        .values(referred_by_user_id=referrer.id)
    )
    if result.rowcount != 1:
        raise ReferrerAlreadySet()
    db.commit()
    db.refresh(user)
    logger.info("User {} claimed referrer {}", user.id, referrer.id)
    return user


def list_referred_users(db: Session, user_id: str, limit: int = 100) -> list[User]:
    clamped_limit = max(1, min(500, int(limit)))
    return list(
        db.scalars(
            select(User)
            .where(User.referred_by_user_id == user_id)
            .order_by(User.created_at.desc())
            .limit(clamped_limit)
        ).all()
    )


def get_referral_chain(db: Session, user_id: str, max_depth: int | None = None) -> list[User]:
    """Return the upline of ``user_id``, nearest referrer first."""
    depth = max(1, int(max_depth or settings.referral_chain_max_depth))
    chain: list[User] = []
    current = get_user(db, user_id)
    while len(chain) < depth and current.referred_by_user_id:
        parent = db.get(User, current.referred_by_user_id)
        if parent is None or any(entry.id == parent.id for entry in chain):
            break
        chain.append(parent)
        current = parent
    return chain
