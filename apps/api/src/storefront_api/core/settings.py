from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./storefront.db"
    database_echo: bool = False

    # HTTP server
    server_host: str = "127.0.0.1"
    server_port: int = 8000
    cors_allowed_origins: list[str] = Field(default_factory=list)

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _parse_origin_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Internal API security (order, review and referral sources)
    checkout_api_key: str = ""

    # Loyalty engine
    loyalty_snapshot_max_retries: int = Field(3, ge=0)
    loyalty_notifications_enabled: bool = True
    loyalty_history_page_limit: int = Field(100, gt=0)
    loyalty_account_cache_size: int = Field(1024, ge=1)

    # Tracing
    tracing_enabled: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
