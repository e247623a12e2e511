# backend/app/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
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
    """Runtime configuration for the scheduling and credit engine."""

    environment: str = Field(default="development", description="Deployment environment name")
    is_testing: bool = Field(default=False, description="Set by the test suite")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Storage
    database_url: str = Field(
        default="sqlite:///./tutordesk.db",
        description="SQLAlchemy database URL",
    )
    sql_echo: bool = False

    # Redis is optional; cache and scheduling locks fall back to in-process state.
    redis_url: Optional[str] = Field(default=None, description="Redis URL for cache and locks")
    celery_broker_url: Optional[str] = Field(default=None, description="Celery broker URL")
    scheduling_lock_ttl_seconds: int = Field(default=30, ge=1)

    # Meeting provider; a fake in-memory client is used when unset
    meeting_api_url: Optional[str] = None
    meeting_api_key: Optional[SecretStr] = None

    # Lesson policy
    max_reschedules_per_lesson: int = Field(default=2, description="Approved reschedules per lesson")
    admin_approval_window_hours: int = Field(
        default=24,
        description="Changes closer than this to the start are late and need an admin",
    )
    late_reschedule_penalty_credits: int = 0
    late_cancellation_penalty_credits: int = 0
    auto_approve_early_reschedules: bool = Field(
        default=False,
        description="Apply the first bookable option immediately when a reschedule is not late",
    )

    # Credit policy
    low_credit_threshold: int = 5
    late_cancellation_refund_percent: int = 50
    tutor_earning_per_lesson_credits: int = 1
    credits_per_lesson: int = 1
    no_show_refund_percent: int = Field(
        default=0,
        description="Refund applied when a lesson is marked no-show (0 keeps credits consumed)",
    )

    # Availability guardrails
    availability_max_range_days: int = 31
    availability_max_slots: int = 2000
    availability_cache_ttl_seconds: int = 60
    default_tutor_timezone: str = "UTC"

    # Reminder jobs
    lesson_starting_soon_minutes: int = 15
    lesson_starting_soon_dedupe_minutes: int = 60
    credit_reminder_cooldown_hours: int = 24

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("admin_approval_window_hours")
    @classmethod
    def _clamp_window(cls, v: int) -> int:
        return max(1, v)

    @field_validator(
        "max_reschedules_per_lesson",
        "late_reschedule_penalty_credits",
        "late_cancellation_penalty_credits",
        "tutor_earning_per_lesson_credits",
        "credits_per_lesson",
    )
    @classmethod
    def _non_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("late_cancellation_refund_percent", "no_show_refund_percent")
    @classmethod
    def _clamp_percent(cls, v: int) -> int:
        return min(100, max(0, v))

    @property
    def broker_url(self) -> Optional[str]:
        return self.celery_broker_url or self.redis_url


settings = Settings()

if is_running_tests():
    settings.is_testing = True
