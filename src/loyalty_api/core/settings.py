from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./loyalty.db"
    database_echo: bool = False
    sqlite_busy_timeout_seconds: float = 30.0

    # Session codes handed to POS terminals
    session_code_ttl_seconds: int = 180
    session_code_max_attempts: int = 10
    session_code_length: int = Field(default=6, ge=1, le=9)

    # Ledger defaults applied when merchant settings are unset
    default_earn_rate_per_1000: int = 1
    default_level: str = "bronze"

    # Post-checkout notification sink (bot webhook)
    checkout_notify_url: str | None = None
    checkout_notify_timeout_seconds: float = 5.0

    # Bot channel security
    bot_api_token: str = ""
    # Operator endpoints (observability snapshot)
    ops_api_key: str = ""

    # Transaction history paging
    history_default_limit: int = 10
    history_max_limit: int = 50

    @field_validator("checkout_notify_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
