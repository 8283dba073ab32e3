from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AdminUserRead(BaseModel):
    id: str
    telegram_id: int
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


class AdminCreateRequest(BaseModel):
    telegram_id: int = Field(gt=0)
    role: str = Field(default="admin", min_length=5, max_length=20)


class AdminRoleUpdateRequest(BaseModel):
    role: str = Field(min_length=5, max_length=20)


class SettingsWriteRequest(BaseModel):
    settings: Any


class SettingsRead(BaseModel):
    namespace: str
    settings: Any
    version: int | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class AdminSettingAuditRead(BaseModel):
    id: str
    admin_id: str | None = None
    namespace: str
    old_value: Any | None = None
    new_value: Any | None = None
    updated_at: datetime

    class Config:
        from_attributes = True
