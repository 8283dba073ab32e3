from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ReferralAccountEnsureRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=32)


class ReferralAccountRead(BaseModel):
    id: str
    user_id: str
    referral_code: str
    rewards_wallet_id: str | None = None
    last_link_update_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReferralLinkIssueRequest(BaseModel):
    single_active: bool | None = None


class ReferralLinkRead(BaseModel):
    id: str
    referral_account_id: str
    invite_code: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class RewardsWalletUpdateRequest(BaseModel):
    wallet_id: str | None = Field(default=None, max_length=64)


class ReferralOverviewRead(BaseModel):
    user_id: str
    referral_code: str
    referred_by_user_id: str | None = None
    account_id: str | None = None
    account_referral_code: str | None = None
    rewards_wallet_id: str | None = None
    last_link_update_at: datetime | None = None
    links: list[ReferralLinkRead]
    active_link_count: int
    total_referrals: int
    total_paid: Decimal
    total_unpaid: Decimal
