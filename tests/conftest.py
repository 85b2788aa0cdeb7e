"""Shared test fixtures and configuration.

Sets up fake environment variables so swung.config doesn't sys.exit(),
and provides a temp-file store on a frozen clock.
"""

import os

# Patch env vars BEFORE any swung imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Kolkata")
os.environ.setdefault("FIREBASE_SERVICE_ACCOUNT_BASE64", "")
os.environ.setdefault("FIREBASE_CREDENTIALS_PATH", "/nonexistent/serviceAccountKey.json")

from datetime import datetime

import pytest

# Reference "now" for every store-backed test
NOW = datetime(2026, 2, 3, 14, 0, 0)


class FrozenClock:
    """Settable clock for the store and scheduler."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_swung.db")


@pytest.fixture
def store(tmp_db_path, clock):
    """An open ActionStore backed by a temp file."""
    from swung.data.db import ActionStore

    s = ActionStore.open(db_path=tmp_db_path, clock=clock)
    yield s
    s.close()


@pytest.fixture
def user(store):
    return store.users.get_or_create(12345, "Asha")


@pytest.fixture
def other_user(store):
    return store.users.get_or_create(67890, "Ravi")


@pytest.fixture
def executor(store):
    from swung.core.executor import ActionExecutor

    return ActionExecutor(store, default_reminder_minutes=15)
