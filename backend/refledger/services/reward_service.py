"""
Reward ledger.

Balances are split into ``total_unpaid`` (accrued, owed) and ``total_paid``
(disbursed). Every mutation is a single conditional UPDATE evaluated by the
database against the current row, so concurrent credits and settles on the
same user serialise on the row and never lose updates. Each mutation also
appends a ``RewardLedgerEntry`` in the same transaction.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refledger.db.models import RewardLedgerEntry, RewardWalletBalance, User
from refledger.services.admin_service import ROLE_ADMIN, ROLE_SUPER_ADMIN, require_role
from refledger.services.errors import InsufficientUnpaidBalance, InvalidAmount, InvalidRequest, NotFound
from refledger.services.transaction import with_rollback_on_error

ENTRY_CREDIT = "credit"
ENTRY_SETTLE = "settle"
ENTRY_REVERSAL = "reversal"

AMOUNT_QUANTUM = Decimal("0.00000001")
# Numeric(28, 8) holds 20 integer digits.
AMOUNT_LIMIT = Decimal("1e20")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_amount(amount: Decimal | int | float | str) -> Decimal:
    """Validate a ledger amount without ever rounding it.

    Amounts must be positive, finite, fit ``Numeric(28, 8)`` and carry at
    most 8 decimal places; anything else is ``InvalidAmount``.
    """
    try:
        value = Decimal(str(amount))
        if not value.is_finite():
            raise InvalidAmount("Amount is not a number")
        if value <= 0:
            raise InvalidAmount()
        if value >= AMOUNT_LIMIT:
            raise InvalidAmount("Amount exceeds the ledger range")
        quantized = value.quantize(AMOUNT_QUANTUM)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount("Amount is not a number") from exc
    if quantized != value:
        raise InvalidAmount("Amount has more than 8 decimal places")
    return quantized


def _require_user(db: Session, user_id: str) -> None:
    if not db.get(User, user_id):
        raise NotFound("User not found")


def _load_balance(db: Session, user_id: str) -> RewardWalletBalance | None:
    return db.scalar(
        select(RewardWalletBalance)
        .where(RewardWalletBalance.user_id == user_id)
        .execution_options(populate_existing=True)
    )


def _ensure_balance_row(db: Session, user_id: str) -> None:
    if _load_balance(db, user_id):
        return
    try:
        with db.begin_nested():
            db.add(
                RewardWalletBalance(
                    user_id=user_id,
                    total_paid=Decimal("0"),
                    total_unpaid=Decimal("0"),
                    updated_at=_utc_now(),
                )
            )
            db.flush()
    except IntegrityError:
        # A concurrent credit created the row first; the UPDATE below applies to it.
        logger.debug("Balance row for {} created concurrently", user_id)


def _append_entry(
    db: Session,
    balance: RewardWalletBalance,
    entry_type: str,
    amount: Decimal,
    admin_id: str | None = None,
    reason: str | None = None,
) -> RewardLedgerEntry:
    entry = RewardLedgerEntry(
        user_id=balance.user_id,
        entry_type=entry_type,
        amount=amount,
        admin_id=admin_id,
        reason=(reason or "").strip()[:500] or None,
        paid_after=balance.total_paid,
        unpaid_after=balance.total_unpaid,
        created_at=_utc_now(),
    )
    db.add(entry)
    return entry


def get_balance(db: Session, user_id: str) -> RewardWalletBalance:
    _require_user(db, user_id)
    balance = _load_balance(db, user_id)
    if balance:
        return balance
    return RewardWalletBalance(user_id=user_id, total_paid=Decimal("0"), total_unpaid=Decimal("0"))


def list_entries(db: Session, user_id: str, limit: int = 50) -> list[RewardLedgerEntry]:
    clamped_limit = max(1, min(200, int(limit)))
    return list(
        db.scalars(
            select(RewardLedgerEntry)
            .where(RewardLedgerEntry.user_id == user_id)
            .order_by(RewardLedgerEntry.created_at.desc())
            .limit(clamped_limit)
        ).all()
    )


@with_rollback_on_error
def credit(db: Session, user_id: str, amount: Decimal | int | float | str) -> RewardWalletBalance:
    value = normalize_amount(amount)
    _require_user(db, user_id)
    _ensure_balance_row(db, user_id)

    db.execute(
        update(RewardWalletBalance)
        .where(RewardWalletBalance.user_id == user_id)
        .values(
            total_unpaid=RewardWalletBalance.total_unpaid + value,
            updated_at=_utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    balance = _load_balance(db, user_id)
    _append_entry(db, balance, ENTRY_CREDIT, value)
    db.commit()
    db.refresh(balance)
    logger.info("Credited {} to user {} (unpaid={})", value, user_id, balance.total_unpaid)
    return balance


def _move_out_of_unpaid(
    db: Session,
    user_id: str,
    value: Decimal,
    *,
    to_paid: bool,
) -> RewardWalletBalance:
    values = {
        "total_unpaid": RewardWalletBalance.total_unpaid - value,
        "updated_at": _utc_now(),
    }
    if to_paid:
        values["total_paid"] = RewardWalletBalance.total_paid + value

    result = db.execute(
        update(RewardWalletBalance)
        .where(
            RewardWalletBalance.user_id == user_id,
            RewardWalletBalance.total_unpaid >= value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientUnpaidBalance()
    return _load_balance(db, user_id)


@with_rollback_on_error
def settle(
    db: Session,
    user_id: str,
    amount: Decimal | int | float | str,
    acting_admin_id: str | None = None,
) -> RewardWalletBalance:
    value = normalize_amount(amount)
    if acting_admin_id is not None:
        require_role(db, acting_admin_id, ROLE_ADMIN)
    _require_user(db, user_id)

    balance = _move_out_of_unpaid(db, user_id, value, to_paid=True)
    _append_entry(db, balance, ENTRY_SETTLE, value, admin_id=acting_admin_id)
    db.commit()
    db.refresh(balance)
    logger.info(
        "Settled {} for user {} (paid={}, unpaid={})",
        value,
        user_id,
        balance.total_paid,
        balance.total_unpaid,
    )
    return balance


@with_rollback_on_error
def reverse(
    db: Session,
    user_id: str,
    amount: Decimal | int | float | str,
    acting_admin_id: str,
    reason: str,
) -> RewardWalletBalance:
    """Withdraw accrued but undisbursed rewards.

    Only unpaid rewards can be reversed; ``total_paid`` is never reduced.
    The reversal is recorded with the acting super admin and the reason.
    """
    value = normalize_amount(amount)
    require_role(db, acting_admin_id, ROLE_SUPER_ADMIN)
    if not (reason or "").strip():
        raise InvalidRequest("Reversal requires a reason")
    _require_user(db, user_id)

    balance = _move_out_of_unpaid(db, user_id, value, to_paid=False)
    _append_entry(db, balance, ENTRY_REVERSAL, value, admin_id=acting_admin_id, reason=reason)
    db.commit()
    db.refresh(balance)
    logger.warning(
        "Reversed {} of unpaid rewards for user {} by admin {}: {}",
        value,
        user_id,
        acting_admin_id,
        reason,
    )
    return balance
