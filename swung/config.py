"""
SWUNG Assistant: Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from swung/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (chat front-end and live alarm channel)
    TELEGRAM_BOT_TOKEN: str
    ALLOWED_USER_IDS: list[int] = []

    # LLM: "copilot" (refreshable GitHub Copilot token) or "openai" (static key)
    LLM_PROVIDER: str = "copilot"
    LLM_MODEL: str = "gpt-4o"
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = ""       # empty → provider default
    LLM_TIMEOUT_SECONDS: int = 30
    LLM_TEMPERATURE: float = 0.7
    COPILOT_TOKEN_PATH: str = ".copilot-token.json"

    # SQLite
    DATABASE_PATH: str = "data/swung.db"

    # All stored timestamps are naive local times in this zone
    TIMEZONE: str = "Asia/Kolkata"

    # Alarm scheduler
    ALARM_POLL_SECONDS: int = 30

    # Resolver context and defaults
    CONTEXT_EVENT_LIMIT: int = 20
    DEFAULT_REMINDER_MINUTES: int = 15
    CHAT_HISTORY_LIMIT: int = 50

    # Firebase Cloud Messaging (optional; no credentials → no push)
    FIREBASE_SERVICE_ACCOUNT_BASE64: str = ""
    FIREBASE_CREDENTIALS_PATH: str = "serviceAccountKey.json"

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "LLM_TIMEOUT_SECONDS",
        "ALARM_POLL_SECONDS",
        "CONTEXT_EVENT_LIMIT",
        "DEFAULT_REMINDER_MINUTES",
        "CHAT_HISTORY_LIMIT",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("LLM_PROVIDER", mode="before")
    @classmethod
    def parse_provider(cls, v: str) -> str:
        provider = (v or "copilot").strip().lower()
        if provider not in ("copilot", "openai"):
            raise ValueError(f"Unknown LLM_PROVIDER={provider!r}. Supported: copilot, openai")
        return provider


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "copilot"),
        LLM_MODEL=os.getenv("LLM_MODEL", "gpt-4o"),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        LLM_BASE_URL=os.getenv("LLM_BASE_URL", ""),
        LLM_TIMEOUT_SECONDS=os.getenv("LLM_TIMEOUT_SECONDS", "30"),
        LLM_TEMPERATURE=os.getenv("LLM_TEMPERATURE", "0.7"),
        COPILOT_TOKEN_PATH=os.getenv("COPILOT_TOKEN_PATH", ".copilot-token.json"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/swung.db"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Kolkata"),
        ALARM_POLL_SECONDS=os.getenv("ALARM_POLL_SECONDS", "30"),
        CONTEXT_EVENT_LIMIT=os.getenv("CONTEXT_EVENT_LIMIT", "20"),
        DEFAULT_REMINDER_MINUTES=os.getenv("DEFAULT_REMINDER_MINUTES", "15"),
        CHAT_HISTORY_LIMIT=os.getenv("CHAT_HISTORY_LIMIT", "50"),
        FIREBASE_SERVICE_ACCOUNT_BASE64=os.getenv("FIREBASE_SERVICE_ACCOUNT_BASE64", ""),
        FIREBASE_CREDENTIALS_PATH=os.getenv("FIREBASE_CREDENTIALS_PATH", "serviceAccountKey.json"),
    )


# Singleton, imported by the entry point and front-end as:
#   from swung.config import settings
settings = _load_settings()
