from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_SERVICE_TYPES = ["laundry", "transportation", "housekeeping", "dining", "tourism", "travel"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./hotelmarket.db"

    # Internal API security
    admin_api_key: str = ""

    # Pricing
    default_currency: Literal["EGP", "USD", "EUR", "GBP", "CAD", "AUD"] = "EGP"

    # Loyalty ledger
    loyalty_service_types: Annotated[list[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_SERVICE_TYPES))
    loyalty_ledger_max_attempts: int = 5
    loyalty_expiration_batch_size: int = 200

    @field_validator("loyalty_service_types", mode="before")
    @classmethod
    def _parse_service_types(cls, value: object) -> list[str]:
        if value is None:
            return list(DEFAULT_SERVICE_TYPES)
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return list(DEFAULT_SERVICE_TYPES)

    # Recurring jobs
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    # Tracing
    tracing_enabled: bool = True

    # Notifications
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
