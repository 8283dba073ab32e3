from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Referral Ledger API"
    debug: bool = False
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    database_url: str = "sqlite:///./refledger.db"
    redis_url: str = "redis://localhost:6379/0"
    auto_create_schema: bool = False

    secret_key: str = "change-this-secret-key"
    access_token_expire_minutes: int = 60 * 24
    service_api_token: str = ""
    rate_limit_enabled: bool = True
    trust_proxy_headers: bool = False
    rate_limit_global_limit: int = 180
    rate_limit_global_window_seconds: int = 60
    rate_limit_sensitive_limit: int = 60
    rate_limit_sensitive_window_seconds: int = 60

    referral_code_prefix: str = "ZB"
    referral_code_length: int = 8
    invite_code_length: int = 10
    code_allocation_max_attempts: int = 5
    referral_single_active_link: bool = False
    referral_chain_max_depth: int = 3
    settings_write_max_attempts: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
