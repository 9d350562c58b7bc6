from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_DATABASE_URL = "sqlite:///./reminders.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_LOOKBACK_MONTHS = 1
DEFAULT_LOOKAHEAD_MONTHS = 2


@dataclass(frozen=True)
class Settings:
    database_url: str
    frontend_origin: str
    lookback_months: int
    lookahead_months: int
    timezone_name: str
    log_level: str
    log_json: bool

    @property
    def connect_args(self) -> dict:
        if self.database_url.startswith("sqlite"):
            return {"check_same_thread": False}
        return {}

    @property
    def timezone(self) -> tzinfo:
        try:
            return ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            return timezone.utc


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
        lookback_months=_read_months("REMINDER_LOOKBACK_MONTHS", DEFAULT_LOOKBACK_MONTHS),
        lookahead_months=_read_months("REMINDER_LOOKAHEAD_MONTHS", DEFAULT_LOOKAHEAD_MONTHS),
        timezone_name=os.getenv("REMINDER_TIMEZONE", "UTC"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        log_json=os.getenv("LOG_JSON", "true").strip().lower() not in {"0", "false", "no"},
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()


def system_clock(settings: Settings | None = None):
    """Wall-clock source in the reference timezone, for injection into the service."""
    tz = (settings or get_settings()).timezone

    def now() -> datetime:
        return datetime.now(tz)

    return now


def _read_months(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(value, 0)
