from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class RewardAmountRequest(BaseModel):
    amount: Decimal = Field(gt=0, lt=Decimal("1e20"), max_digits=28, decimal_places=8)


class RewardReversalRequest(RewardAmountRequest):
    reason: str = Field(min_length=3, max_length=500)


class RewardBalanceRead(BaseModel):
    user_id: str
    total_paid: Decimal
    total_unpaid: Decimal
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class RewardLedgerEntryRead(BaseModel):
    id: str
    user_id: str
    entry_type: str
    amount: Decimal
    admin_id: str | None = None
    reason: str | None = None
    paid_after: Decimal
    unpaid_after: Decimal
    created_at: datetime

    class Config:
        from_attributes = True
