"""
Duty Reminder — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

from src.core.crontab import DEFAULT_CRONTAB, InvalidCrontab, validate_crontab

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Webhook mode (empty WEBHOOK_URL → long polling)
    WEBHOOK_URL: str = ""
    WEBHOOK_LISTEN: str = "0.0.0.0"
    WEBHOOK_PORT: int = 8080
    WEBHOOK_SECRET: str = ""

    # SQLite
    DATABASE_PATH: str = "data/households.db"

    # Scheduling
    TIMEZONE: str = "Europe/Kyiv"
    DEFAULT_CRONTAB: str = DEFAULT_CRONTAB

    LOG_LEVEL: str = "INFO"

    @field_validator("DEFAULT_CRONTAB")
    @classmethod
    def check_crontab(cls, v: str) -> str:
        try:
            return validate_crontab(v)
        except InvalidCrontab as exc:
            raise ValueError(f"DEFAULT_CRONTAB is invalid: {exc}") from exc

    @field_validator("WEBHOOK_PORT", mode="before")
    @classmethod
    def parse_port(cls, v: str | int) -> int:
        return int(v)

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        WEBHOOK_URL=os.getenv("WEBHOOK_URL", ""),
        WEBHOOK_LISTEN=os.getenv("WEBHOOK_LISTEN", "0.0.0.0"),
        WEBHOOK_PORT=os.getenv("WEBHOOK_PORT", "8080"),
        WEBHOOK_SECRET=os.getenv("WEBHOOK_SECRET", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/households.db"),
        TIMEZONE=os.getenv("TIMEZONE", "Europe/Kyiv"),
        DEFAULT_CRONTAB=os.getenv("DEFAULT_CRONTAB", DEFAULT_CRONTAB),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
