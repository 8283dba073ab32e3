from datetime import datetime

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    username: str | None = Field(default=None, max_length=255)
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)


class UserCreateRequest(BaseModel):
    telegram_id: int = Field(gt=0)
    profile: UserProfile = Field(default_factory=UserProfile)
    referrer_code: str | None = Field(default=None, max_length=32)
    invite_code: str | None = Field(default=None, max_length=32)


class ReferrerClaimRequest(BaseModel):
    code: str = Field(min_length=2, max_length=32)


class UserRead(BaseModel):
    id: str
    telegram_id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    referral_code: str
    referred_by_user_id: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
