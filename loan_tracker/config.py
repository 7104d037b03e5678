from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from LOAN_TRACKER_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_TRACKER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "sqlite:///./loan_tracker.db"
    database_echo: bool = False

    log_level: str = "INFO"
    log_format: str = "text"  # text or json

    # Business rules
    max_principal_amount: Decimal = Decimal("1000000000")
    max_interest_rate: Decimal = Decimal("50")
    similar_amount_tolerance: Decimal = Decimal("0.10")


@lru_cache
def get_settings() -> Settings:
    return Settings()
