"""
Runtime settings for the notification engine.
"""

import zoneinfo
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationSettings(BaseSettings):
    """
    Settings shared by the manager, the triggers and the reference services.

    Values are read from the environment (or a local .env file), so a host can
    tune quotas and storage without code changes:

    >>> settings = NotificationSettings(MAX_ALARMS=64)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # --- Logging ---
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FILE: str | None = None

    # --- Persistence ---
    # e.g. "sqlite+aiosqlite:///notifications.db". Memory store when unset.
    DATABASE_URL: str | None = None

    # --- Trigger engine ---
    DEFAULT_TIMEZONE: str = "UTC"
    MATCH_MAX_LOOKAHEAD_YEARS: int = 5

    # --- External services ---
    # Android refuses more than 500 pending alarms per app
    MAX_ALARMS: int = 500
    EVENT_QUEUE_SIZE: int = 1000

    @field_validator("DEFAULT_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            zoneinfo.ZoneInfo(v)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as z:
            msg = f"Invalid timezone name: {v}"
            raise ValueError(msg) from z
        return v

    @model_validator(mode="after")
    def validate_limits(self) -> "NotificationSettings":
        """Quotas and lookahead windows must be positive."""
        for name in ("MATCH_MAX_LOOKAHEAD_YEARS", "MAX_ALARMS", "EVENT_QUEUE_SIZE"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return self

    @property
    def timezone(self) -> zoneinfo.ZoneInfo:
        return zoneinfo.ZoneInfo(self.DEFAULT_TIMEZONE)


notification_settings = NotificationSettings()
