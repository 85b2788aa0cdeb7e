"""
SWUNG Assistant: Data Models.

Plain records for the five entity kinds the assistant persists in SQLite.
Every row except users is owned by exactly one user (``user_id``).
Timestamps are naive local strings ``YYYY-MM-DDTHH:MM:SS`` in the fixed
organizational timezone.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

PRIORITIES = ("low", "medium", "high", "urgent")
DEFAULT_PRIORITY = "medium"


@dataclass
class User:
    """A chat front-end user; ``id`` is the opaque owner id used everywhere else."""

    id: int
    telegram_user_id: int
    display_name: str
    created_at: str = ""


@dataclass
class Event:
    """A timed calendar entry."""

    id: int
    user_id: int
    title: str
    datetime: str                       # start, local
    end_datetime: str | None = None
    description: str | None = None
    location: str | None = None
    category: str = "general"
    color: str = "#3b82f6"
    is_all_day: bool = False
    recurrence: str | None = None       # opaque, never interpreted
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Todo:
    """A checklist item (never called a "task" in user-facing text)."""

    id: int
    user_id: int
    title: str
    description: str | None = None
    priority: str = DEFAULT_PRIORITY
    due_date: str | None = None         # YYYY-MM-DD
    completed: bool = False
    completed_at: str | None = None
    category: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Alarm:
    """A one-shot reminder.

    ``pending`` = active and not triggered. ``fired`` = triggered and
    inactive; fired is terminal.
    """

    id: int
    user_id: int
    title: str
    trigger_at: str
    event_id: int | None = None
    message: str | None = None
    repeat_type: str = "once"           # informational only
    is_triggered: bool = False
    is_active: bool = True
    call_user: bool = False
    created_at: str = ""

    @property
    def is_pending(self) -> bool:
        return self.is_active and not self.is_triggered

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ChatMessage:
    """One append-only chat log line, optionally carrying the executed action."""

    id: int
    user_id: int
    role: str                           # "user" | "assistant"
    content: str
    action_type: str | None = None
    action_data: dict | None = None
    created_at: str = ""


@dataclass
class PushToken:
    """A device token registered for mobile/web push."""

    user_id: int
    token: str
    platform: str = "web"
    created_at: str = ""
    updated_at: str = ""

