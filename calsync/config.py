"""Application configuration management."""

import re
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "/data/calsync.db"

    # Server
    log_level: str = "info"

    # Participating calendars (comma, semicolon or newline separated)
    sync_calendar_ids: str = ""
    min_calendars_required: int = 2

    # Sync settings
    placeholder_title: str = "Busy"
    sync_interval_minutes: int = 15  # 0 = manual only
    sync_days_ahead: int = 30

    # Google Calendar
    google_token_file: str = "/data/google-token.json"
    google_client_secrets_file: Optional[str] = None
    calendar_sync_tag: str = "calSyncPlaceholder"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def _parse_calendar_ids(raw: Optional[str]) -> list[str]:
    """Parse comma/newline/semicolon separated calendar ids, keeping order."""
    if not raw:
        return []

    calendar_ids: list[str] = []
    for token in re.split(r"[,\n;]+", raw):
        calendar_id = token.strip()
        if calendar_id and calendar_id not in calendar_ids:
            calendar_ids.append(calendar_id)
    return calendar_ids


def get_sync_calendar_ids() -> list[str]:
    """Get the normalized list of participating calendar ids."""
    return _parse_calendar_ids(get_settings().sync_calendar_ids)


def is_sync_configured() -> bool:
    """Check whether enough calendars are configured to run a sync."""
    return len(get_sync_calendar_ids()) >= get_settings().min_calendars_required
