"""Runtime configuration loaded from environment variables (and an optional .env file).

Data is stored in ~/.weather-alerts/data.db by default.
Provider keys are optional; features that need a missing key are disabled.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = os.path.expanduser("~/.weather-alerts")
DEFAULT_EMAIL_FROM = "Weather Nexus <onboarding@resend.dev>"
DEFAULT_DASHBOARD_URL = "https://studentofstars.github.io/Weather-Nexus/"


class Settings(BaseSettings):
    """Process-wide settings. Built once at startup and passed to components."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    # Providers
    openweather_api_key: str = Field(default="", alias="OPENWEATHER_API_KEY")
    nasa_api_key: str = Field(default="", alias="NASA_API_KEY")
    resend_api_key: str = Field(default="", alias="RESEND_API_KEY")
    email_from: str = Field(default=DEFAULT_EMAIL_FROM, alias="EMAIL_FROM")
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_service_key: str = Field(default="", alias="SUPABASE_SERVICE_ROLE_KEY")

    # Scheduled check
    cron_secret: str = Field(default="", alias="CRON_SECRET")
    alert_cooldown_minutes: int = Field(default=0, ge=0, alias="ALERT_COOLDOWN_MINUTES")
    space_lookback_hours: int = Field(default=24, ge=1, alias="SPACE_LOOKBACK_HOURS")
    max_concurrency: int = Field(default=5, ge=1, alias="MAX_CONCURRENCY")
    check_interval_minutes: int = Field(default=0, ge=0, alias="CHECK_INTERVAL_MINUTES")

    # Storage
    data_dir: str = Field(default=DEFAULT_DATA_DIR, alias="DATA_DIR")
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    dashboard_url: str = Field(default=DEFAULT_DASHBOARD_URL, alias="DASHBOARD_URL")

    @field_validator("supabase_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()

    def get_db_url(self) -> str:
        """Get the database URL, defaulting to a SQLite file in the data directory."""
        if self.database_url:
            return self.database_url
        data_dir = Path(self.data_dir).expanduser()
        data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite+aiosqlite:///{data_dir / 'data.db'}"
