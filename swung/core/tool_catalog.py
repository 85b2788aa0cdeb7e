"""
SWUNG Assistant: Tool Catalog.

The closed set of actions the language model may request. Each action has
a name, an instruction-style description and a pydantic argument model;
the model doubles as the JSON schema sent to the LLM and as the validator
the executor runs before touching the store.

Adding an action means: a member of ``ActionType``, an entry in
``CATALOG``, a handler in the executor, and a store operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from swung.core.clock import format_date, format_timestamp, parse_date, parse_timestamp
from swung.data.models import PRIORITIES

CATALOG_VERSION = "1"

Priority = Literal[PRIORITIES]


class ActionType(str, Enum):
    CREATE_EVENT = "create_event"
    READ_EVENTS = "read_events"
    UPDATE_EVENT = "update_event"
    DELETE_EVENT = "delete_event"
    CREATE_TODO = "create_todo"
    COMPLETE_TODO = "complete_todo"
    LIST_TODOS = "list_todos"
    UPDATE_TODO = "update_todo"
    CREATE_ALARM = "create_alarm"


# ---------------------------------------------------------------------------
# Shared field normalizers
# ---------------------------------------------------------------------------


def _normalize_timestamp(value: Any) -> str | None:
    if value is None or value == "":
        return None
    try:
        return format_timestamp(parse_timestamp(str(value)))
    except ValueError as exc:
        raise ValueError(f"not a valid date/time: {value!r}") from exc


def _normalize_date(value: Any) -> str | None:
    if value is None or value == "":
        return None
    try:
        return format_date(parse_date(str(value)))
    except ValueError as exc:
        raise ValueError(f"not a valid date: {value!r}") from exc


def _normalize_priority(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower() or None
    return value


class _ActionArgs(BaseModel):
    """Base for all argument models: unknown keys are ignored, strings trimmed."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    # Columns an update may not clear; an explicit null for these is dropped
    not_nullable: ClassVar[tuple[str, ...]] = ()

    def changes(self, *exclude: str) -> dict[str, Any]:
        """Fields the caller actually supplied, minus ``exclude``.

        An explicit ``None`` is kept so the store clears that column.
        """
        data = self.model_dump(exclude_unset=True)
        for key in exclude:
            data.pop(key, None)
        for key in self.not_nullable:
            if key in data and data[key] is None:
                del data[key]
        return data


# ---------------------------------------------------------------------------
# Per-action argument models
# ---------------------------------------------------------------------------


class CreateEventArgs(_ActionArgs):
    title: str = Field(min_length=1, description="Event title")
    datetime: str = Field(description="Event date/time in ISO 8601 format (YYYY-MM-DDTHH:mm:ss)")
    description: str | None = Field(default=None, description="Optional event description")
    location: str | None = Field(default=None, description="Optional location")
    reminder_minutes: int | None = Field(
        default=None, ge=0,
        description="Reminder before the event in minutes (default 15, 0 for none)",
    )

    normalize_datetime = field_validator("datetime", mode="before")(_normalize_timestamp)


class ReadEventsArgs(_ActionArgs):
    query: str = Field(
        min_length=1,
        description="Query like 'today', 'tomorrow', 'this week', 'upcoming', or a specific date",
    )
    start_date: str | None = Field(default=None, description="Start date in ISO format")
    end_date: str | None = Field(default=None, description="End date in ISO format")

    normalize_dates = field_validator("start_date", "end_date", mode="before")(_normalize_date)


class UpdateEventArgs(_ActionArgs):
    not_nullable = ("title", "datetime")

    event_id: int = Field(description="ID of the event to update")
    title: str | None = Field(default=None, min_length=1, description="New title (optional)")
    datetime: str | None = Field(default=None, description="New date/time (optional)")
    description: str | None = Field(default=None, description="New description (optional)")
    location: str | None = Field(default=None, description="New location (optional)")

    normalize_datetime = field_validator("datetime", mode="before")(_normalize_timestamp)


class DeleteEventArgs(_ActionArgs):
    event_id: int = Field(description="ID of the event to delete")


class CreateTodoArgs(_ActionArgs):
    title: str = Field(min_length=1, description="To-do title")
    description: str | None = Field(default=None, description="To-do description")
    priority: Priority | None = Field(default=None, description="Priority (default medium)")
    due_date: str | None = Field(default=None, description="Due date in ISO format (optional)")

    normalize_priority = field_validator("priority", mode="before")(_normalize_priority)
    normalize_due_date = field_validator("due_date", mode="before")(_normalize_date)


class CompleteTodoArgs(_ActionArgs):
    todo_id: int = Field(description="ID of the to-do to complete (or un-complete)")


class ListTodosArgs(_ActionArgs):
    show_completed: bool = Field(default=False, description="Whether to include completed to-dos")


class UpdateTodoArgs(_ActionArgs):
    not_nullable = ("title", "priority")

    todo_id: int = Field(description="ID of the to-do to update")
    title: str | None = Field(default=None, min_length=1, description="New title")
    description: str | None = Field(default=None, description="New description")
    priority: Priority | None = Field(default=None, description="New priority")
    due_date: str | None = Field(default=None, description="New due date")

    normalize_priority = field_validator("priority", mode="before")(_normalize_priority)
    normalize_due_date = field_validator("due_date", mode="before")(_normalize_date)


class CreateAlarmArgs(_ActionArgs):
    title: str = Field(min_length=1, description="Alarm title/reason")
    trigger_at: str = Field(description="When to trigger the alarm (ISO 8601 format)")
    message: str | None = Field(default=None, description="Optional message to show")
    call_user: bool = Field(default=False, description="Whether to call the user (default: false)")

    normalize_trigger_at = field_validator("trigger_at", mode="before")(_normalize_timestamp)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    action: ActionType
    description: str
    args_model: type[_ActionArgs]

    @property
    def name(self) -> str:
        return self.action.value


CATALOG: dict[ActionType, ToolSpec] = {
    spec.action: spec
    for spec in (
        ToolSpec(ActionType.CREATE_EVENT, "Create a new calendar event", CreateEventArgs),
        ToolSpec(ActionType.READ_EVENTS, "List events for a specific date range or query", ReadEventsArgs),
        ToolSpec(ActionType.UPDATE_EVENT, "Update an existing event", UpdateEventArgs),
        ToolSpec(ActionType.DELETE_EVENT, "Delete an event", DeleteEventArgs),
        ToolSpec(
            ActionType.CREATE_TODO,
            "Create a new to-do checklist item (NOT an event)",
            CreateTodoArgs,
        ),
        ToolSpec(
            ActionType.COMPLETE_TODO,
            "Mark a to-do as complete (calling it on a completed to-do restores it)",
            CompleteTodoArgs,
        ),
        ToolSpec(ActionType.LIST_TODOS, "List to-do items", ListTodosArgs),
        ToolSpec(ActionType.UPDATE_TODO, "Update an existing to-do", UpdateTodoArgs),
        ToolSpec(ActionType.CREATE_ALARM, "Create a reminder alarm", CreateAlarmArgs),
    )
}


def lookup(name: str | None) -> ActionType | None:
    """Map a tool name from the model to a catalog action, or None if unknown."""
    if not name:
        return None
    try:
        return ActionType(name.strip())
    except ValueError:
        return None


def _strip_titles(schema: Any) -> Any:
    """Drop pydantic's auto-generated ``title`` annotations from a JSON schema."""
    if isinstance(schema, list):
        return [_strip_titles(item) for item in schema]
    if not isinstance(schema, dict):
        return schema
    cleaned: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "title":
            continue
        if key == "properties":
            cleaned[key] = {name: _strip_titles(prop) for name, prop in value.items()}
        else:
            cleaned[key] = _strip_titles(value)
    return cleaned


def tool_definitions() -> list[dict[str, Any]]:
    """The catalog in chat-completions ``tools`` format."""
    return [
        {
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": _strip_titles(spec.args_model.model_json_schema()),
            },
        }
        for spec in CATALOG.values()
    ]
