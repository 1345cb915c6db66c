"""
Scheduling configuration.

Uses Pydantic Settings for centralized, testable validation. Every value can
be overridden through a SCHEDULING_* environment variable or a .env file.
"""
import logging
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Default timezone for clinics that have not configured one
DEFAULT_TIMEZONE = "America/Los_Angeles"

LOG_FORMAT_CHOICES = ("auto", "local", "container")


class SchedulingSettings(BaseSettings):
    """Validated scheduling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"
    # auto, local or container (see utils.logging_config)
    log_format: str = "auto"

    # Calendar
    clinic_timezone: str = DEFAULT_TIMEZONE

    # Recurrence bounds (one year of weekly visits)
    max_occurrences_cap: int = Field(default=52, ge=1)
    max_interval: int = Field(default=12, ge=1)
    default_generation_days: int = Field(default=90, ge=1)

    # Appointment sizing
    default_slot_minutes: int = Field(default=30, ge=5)
    max_appointment_minutes: int = Field(default=480, ge=5)

    @field_validator("clinic_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject names zoneinfo cannot resolve."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        layout = v.lower()
        if layout not in LOG_FORMAT_CHOICES:
            raise ValueError(f"Log format must be one of {', '.join(LOG_FORMAT_CHOICES)}")
        return layout


@lru_cache()
def get_settings() -> SchedulingSettings:
    """Get validated settings singleton."""
    return SchedulingSettings()


def validate_environment() -> bool:
    """
    Validate configuration at startup.
    Returns True if valid, logs errors and returns False otherwise.
    """
    try:
        get_settings()
        logger.info("Scheduling configuration validation passed")
        return True
    except Exception as e:
        logger.error(f"Scheduling configuration validation failed: {e}")
        return False
