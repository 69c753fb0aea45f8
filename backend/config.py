"""
Settings read from the environment (a .env file is loaded by main.py).
Services are built from one Settings instance and passed around explicitly.
"""
import os
from datetime import time
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, field_validator

from timeparse import parse_hm

# Settings field -> environment variable
ENV_VARS = {
    "database_path": "TSKR_DATABASE_PATH",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "model": "TSKR_MODEL",
    "max_tokens": "TSKR_MAX_TOKENS",
    "request_timeout": "TSKR_REQUEST_TIMEOUT",
    "timezone": "TSKR_TIMEZONE",
    "review_mode": "TSKR_REVIEW_MODE",
    "series_horizon_days": "TSKR_SERIES_HORIZON_DAYS",
    "cadence_origin": "TSKR_CADENCE_ORIGIN",
    "default_due_time": "TSKR_DEFAULT_DUE_TIME",
    "default_reminder_offset": "TSKR_DEFAULT_REMINDER_OFFSET",
    "date_languages": "TSKR_DATE_LANGUAGES",
    "log_level": "TSKR_LOG_LEVEL",
    "cors_origins": "TSKR_CORS_ORIGINS",
}
_LIST_FIELDS = {"date_languages", "cors_origins"}


class Settings(BaseModel):
    database_path: str = "tasks.db"
    anthropic_api_key: Optional[str] = None
    model: str = "claude-sonnet-4-5"
    max_tokens: int = 1024
    request_timeout: float = 20.0
    timezone: str = "UTC"
    review_mode: bool = False
    series_horizon_days: int = 365
    cadence_origin: Literal["earliest", "edited"] = "earliest"
    default_due_time: str = "09:00"
    default_reminder_offset: int = 10
    date_languages: list[str] = ["en", "zh"]
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value):
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown time zone {value!r}")
        return value

    @field_validator("default_due_time")
    @classmethod
    def _clock(cls, value):
        parse_hm(value)
        return value

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {}
        for field, var in ENV_VARS.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            if field in _LIST_FIELDS:
                values[field] = [part.strip() for part in raw.split(",") if part.strip()]
            else:
                values[field] = raw
        return cls(**values)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def due_time(self) -> time:
        return parse_hm(self.default_due_time)

    @property
    def has_api_key(self) -> bool:
        return bool(self.anthropic_api_key) and self.anthropic_api_key != "your-api-key-here"
