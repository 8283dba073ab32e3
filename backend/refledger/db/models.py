from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from refledger.db.base import Base

MONEY = Numeric(28, 8)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referral_code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    # Weak reference: no foreign key, the referrer may disappear independently.
    referred_by_user_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class ReferralAccount(Base):
    __tablename__ = "referral_accounts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    referral_code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    rewards_wallet_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_link_update_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class ReferralLink(Base):
    __tablename__ = "referral_links"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    referral_account_id: Mapped[str] = mapped_column(String(32), index=True)
    invite_code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class RewardWalletBalance(Base):
    __tablename__ = "reward_wallet_balances"
    __table_args__ = (
        CheckConstraint("total_paid >= 0", name="ck_reward_wallet_balances_paid_non_negative"),
        CheckConstraint("total_unpaid >= 0", name="ck_reward_wallet_balances_unpaid_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    total_paid: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    total_unpaid: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class RewardLedgerEntry(Base):
    __tablename__ = "reward_ledger_entries"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(32), index=True)
    entry_type: Mapped[str] = mapped_column(String(16), index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    admin_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    paid_after: Mapped[Decimal] = mapped_column(MONEY)
    unpaid_after: Mapped[Decimal] = mapped_column(MONEY)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, index=True)


class AdminUser(Base):
    __tablename__ = "admin_users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), default="admin")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class AdminSettings(Base):
    __tablename__ = "admin_settings"
    __table_args__ = (UniqueConstraint("namespace", name="uq_admin_settings_namespace"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    namespace: Mapped[str] = mapped_column(String(120), index=True)
    settings: Mapped[Any] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class AdminSettingAudit(Base):
    __tablename__ = "admin_setting_audits"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    admin_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    namespace: Mapped[str] = mapped_column(String(120), index=True)
    old_value: Mapped[Any | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    new_value: Mapped[Any | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
