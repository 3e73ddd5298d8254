# backend/live_sessions/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )

    # Database
    database_url: str = Field(
        default="sqlite+pysqlite:///./live_sessions.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Celery broker / result backend
    redis_url: str = "redis://localhost:6379"

    # Payment gateway
    payment_provider: Literal["fake", "stripe"] = Field(
        default="fake",
        description="Which payment gateway adapter to use",
    )
    stripe_secret_key: Optional[SecretStr] = Field(default=None, description="Stripe API key")
    stripe_currency: str = Field(default="usd", description="Default Stripe currency")
    stripe_webhook_secret: Optional[SecretStr] = Field(
        default=None, description="Signing secret for transfer webhooks"
    )

    # Video provider
    video_provider: Literal["fake", "hundredms"] = Field(
        default="fake",
        description="Which video provider adapter to use",
    )
    hundredms_access_key: Optional[str] = Field(default=None, description="100ms access key")
    hundredms_app_secret: Optional[SecretStr] = Field(
        default=None, description="100ms app secret used to sign management tokens"
    )
    hundredms_template_id: Optional[str] = Field(default=None, description="100ms room template")
    hundredms_base_url: str = Field(default="https://api.100ms.live/v2")
    hundredms_meeting_base_url: str = Field(
        default="https://meet.100ms.live", description="Join links are built from this base"
    )

    # Booking workflow
    booking_request_expiry_hours: int = Field(
        default=24, ge=1, description="Hours before a REQUEST-mode booking expires"
    )
    direct_booking_hold_minutes: int = Field(
        default=30, ge=1, description="Minutes a DIRECT-mode booking stays pending"
    )
    max_reschedules: int = Field(default=3, ge=0, description="Reschedules allowed per booking")
    min_price_ratio: float = Field(
        default=0.5, gt=0, le=1, description="Lowest offer accepted, as a share of base price"
    )
    platform_fee_rate: float = Field(
        default=0.20, ge=0, lt=1, description="Platform share of each session price"
    )

    # Availability defaults
    default_slot_duration_minutes: int = Field(default=60, gt=0)
    default_buffer_minutes: int = Field(default=15, ge=0)
    default_min_advance_hours: int = Field(default=12, ge=0)
    default_max_advance_hours: int = Field(default=720, ge=1)
    default_max_sessions_per_slot: int = Field(default=1, ge=1)
    default_currency: str = Field(default="USD")
    default_timezone: str = Field(default="UTC")

    # Background jobs
    expiry_sweep_interval_minutes: int = Field(
        default=5, ge=1, description="How often the booking expiry sweep runs"
    )
    payout_delay_hours: int = Field(
        default=24, ge=0, description="Hours after session end before a session can be paid out"
    )
    payout_run_hour_utc: int = Field(
        default=2, ge=0, le=23, description="Hour of day (UTC) the automatic payout run starts"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_currency", "stripe_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def _check_advance_window(self) -> "Settings":
        if self.default_min_advance_hours > self.default_max_advance_hours:
            raise ValueError("default_min_advance_hours cannot exceed default_max_advance_hours")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()
