"""Configuration settings for the leave migrator."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables (or a .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Xero API
    xero_endpoint: str = Field(
        default="https://api.xero.com", validation_alias="XERO_ENDPOINT"
    )
    xero_auth_token_file: Path = Field(..., validation_alias="XERO_AUTH_TOKEN_FILE")
    xero_timeout: float = Field(default=5.0, validation_alias="XERO_TIMEOUT")
    xero_max_retries: int = Field(default=3, validation_alias="XERO_MAX_RETRIES")
    xero_backoff_initial: float = Field(
        default=1.0, validation_alias="XERO_BACKOFF_INITIAL"
    )
    xero_backoff_max: float = Field(default=30.0, validation_alias="XERO_BACKOFF_MAX")

    # Xero allows 60 calls per minute per tenant
    rate_limit_threshold: int = Field(default=5, validation_alias="RATE_LIMIT_THRESHOLD")
    rate_limit_cooldown: float = Field(
        default=60.0, validation_alias="RATE_LIMIT_COOLDOWN"
    )

    # Migration behaviour
    balance_settle_delay: float = Field(
        default=0.2, validation_alias="BALANCE_SETTLE_DELAY"
    )
    max_concurrent_submissions: int = Field(
        default=10, validation_alias="MAX_CONCURRENT_SUBMISSIONS"
    )

    # Report delivery
    email_to: str = Field(default="", validation_alias="EMAIL_TO")
    email_from: str = Field(default="", validation_alias="EMAIL_FROM")
    aws_region: str = Field(default="ap-southeast-2", validation_alias="AWS_REGION")
    report_file: Path = Field(
        default=Path("/tmp/report.xlsx"), validation_alias="REPORT_FILE"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
