"""
SWUNG Assistant: Action Executor.

Validates a resolved action against its catalog argument model, runs the
matching store operation scoped to the requesting user and returns an
``ActionResult`` with a user-facing confirmation.

The executor never raises: validation failures, missing rows, store
errors and unknown action names all come back as failed results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from swung.core.clock import DATE_FORMAT, describe, format_timestamp, parse_date, parse_timestamp
from swung.core.errors import ErrorCode, StoreError
from swung.core.tool_catalog import (
    CATALOG,
    ActionType,
    CompleteTodoArgs,
    CreateAlarmArgs,
    CreateEventArgs,
    CreateTodoArgs,
    DeleteEventArgs,
    ListTodosArgs,
    ReadEventsArgs,
    UpdateEventArgs,
    UpdateTodoArgs,
    lookup,
)
from swung.data.db import ActionStore
from swung.data.models import Event

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass
class ActionResult:
    success: bool
    message: str
    action: str = ""
    error: ErrorCode | None = None
    entity: dict[str, Any] | None = None
    items: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error is not None:
            data["error"] = self.error.value
        if self.entity is not None:
            data["entity"] = self.entity
        if self.items is not None:
            data["items"] = self.items
        return data


def _failure(action: str, code: ErrorCode, message: str) -> ActionResult:
    return ActionResult(success=False, message=message, action=action, error=code)


def _describe_validation(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
        if err.get("type") == "missing":
            problems.append(f"{loc} is required")
        else:
            problems.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(problems)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class ActionExecutor:
    """Dispatches catalog actions to the store for one user at a time."""

    def __init__(self, store: ActionStore, default_reminder_minutes: int | None = None) -> None:
        if default_reminder_minutes is None:
            from swung.config import settings
            default_reminder_minutes = settings.DEFAULT_REMINDER_MINUTES
        self.store = store
        self.default_reminder_minutes = default_reminder_minutes
        self._handlers: dict[ActionType, Callable[..., ActionResult]] = {
            ActionType.CREATE_EVENT: self._create_event,
            ActionType.READ_EVENTS: self._read_events,
            ActionType.UPDATE_EVENT: self._update_event,
            ActionType.DELETE_EVENT: self._delete_event,
            ActionType.CREATE_TODO: self._create_todo,
            ActionType.COMPLETE_TODO: self._complete_todo,
            ActionType.LIST_TODOS: self._list_todos,
            ActionType.UPDATE_TODO: self._update_todo,
            ActionType.CREATE_ALARM: self._create_alarm,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No executor handler for: {sorted(a.value for a in missing)}")

    def execute(
        self,
        action_name: str,
        args: dict[str, Any] | None,
        user_id: int,
        now: datetime | None = None,
    ) -> ActionResult:
        action = lookup(action_name)
        if action is None:
            logger.warning("Unknown action '%s' for user %d", action_name, user_id)
            return _failure(
                action_name or "", ErrorCode.UNKNOWN_ACTION,
                "Sorry, I don't know how to do that yet.",
            )

        spec = CATALOG[action]
        try:
            parsed = spec.args_model.model_validate(args or {})
        except ValidationError as exc:
            detail = _describe_validation(exc)
            logger.warning("Invalid %s arguments (user %d): %s", action.value, user_id, detail)
            return _failure(
                action.value, ErrorCode.VALIDATION,
                f"I couldn't {action.value.replace('_', ' ')}: {detail}.",
            )

        now = now or self.store.db.now()
        logger.info("Executing %s for user %d", action.value, user_id)
        try:
            result = self._handlers[action](parsed, user_id, now)
        except StoreError as exc:
            logger.error("Store error during %s (user %d): %s", action.value, user_id, exc)
            return _failure(
                action.value, ErrorCode.STORE_ERROR,
                "Sorry, something went wrong saving that. Please try again.",
            )
        result.action = action.value
        return result

    # --- events ---

    def _create_event(self, args: CreateEventArgs, user_id: int, now: datetime) -> ActionResult:
        event = self.store.events.create(
            user_id,
            title=args.title,
            datetime=args.datetime,
            description=args.description,
            location=args.location,
        )

        reminder = args.reminder_minutes
        if reminder is None:
            reminder = self.default_reminder_minutes
        alarm_note = ""
        if reminder > 0:
            # Secondary write: the event stands even if this fails
            try:
                trigger = parse_timestamp(event.datetime) - timedelta(minutes=reminder)
                self.store.alarms.create(
                    user_id,
                    title=f"Reminder: {event.title}",
                    trigger_at=format_timestamp(trigger),
                    message=f"{event.title} starts in {reminder} minutes",
                    event_id=event.id,
                )
                alarm_note = f" I'll remind you {reminder} minutes before."
            except (StoreError, ValueError) as exc:
                logger.error("Reminder for event #%d not created: %s", event.id, exc)

        return ActionResult(
            success=True,
            message=f'Event "{event.title}" scheduled for {describe(event.datetime)}.{alarm_note}',
            entity=event.to_dict(),
        )

    def _event_window(self, args: ReadEventsArgs, now: datetime) -> tuple[str | None, str | None]:
        """Translate the read_events vocabulary into a [start, end) window."""
        today = now.date()
        query = args.query.strip().lower()

        def day_start(d: date) -> str:
            return f"{d.strftime(DATE_FORMAT)}T00:00:00"

        if query == "today":
            return day_start(today), day_start(today + timedelta(days=1))
        if query == "tomorrow":
            return day_start(today + timedelta(days=1)), day_start(today + timedelta(days=2))
        if query == "this week":
            return day_start(today), day_start(today + timedelta(days=8))
        if query in ("upcoming", "next", "future"):
            return format_timestamp(now), None
        if args.start_date or args.end_date:
            start = day_start(parse_date(args.start_date)) if args.start_date else None
            end = (
                day_start(parse_date(args.end_date) + timedelta(days=1))
                if args.end_date else None
            )
            return start, end
        try:
            day = parse_date(query)
        except ValueError:
            return None, None
        return day_start(day), day_start(day + timedelta(days=1))

    def _read_events(self, args: ReadEventsArgs, user_id: int, now: datetime) -> ActionResult:
        start, end = self._event_window(args, now)
        if start is None and end is None:
            events = self.store.events.list_all(user_id)
        else:
            events = self.store.events.list_between(user_id, start, end)
        return ActionResult(
            success=True,
            message=_summarize_events(events),
            items=[e.to_dict() for e in events],
        )

    def _update_event(self, args: UpdateEventArgs, user_id: int, now: datetime) -> ActionResult:
        changes = args.changes("event_id")
        if not changes:
            return _failure("", ErrorCode.VALIDATION, f"Tell me what to change about event #{args.event_id}.")
        event = self.store.events.update(user_id, args.event_id, **changes)
        if event is None:
            return _failure("", ErrorCode.NOT_FOUND, f"I couldn't find event #{args.event_id}.")
        return ActionResult(
            success=True,
            message=f'Event "{event.title}" updated, now on {describe(event.datetime)}.',
            entity=event.to_dict(),
        )

    def _delete_event(self, args: DeleteEventArgs, user_id: int, now: datetime) -> ActionResult:
        event = self.store.events.delete(user_id, args.event_id)
        if event is None:
            return _failure("", ErrorCode.NOT_FOUND, f"I couldn't find event #{args.event_id}.")
        return ActionResult(success=True, message=f'Event "{event.title}" deleted.')

    # --- to-dos ---

    def _create_todo(self, args: CreateTodoArgs, user_id: int, now: datetime) -> ActionResult:
        todo = self.store.todos.create(
            user_id,
            title=args.title,
            description=args.description,
            priority=args.priority,
            due_date=args.due_date,
        )
        due = f", due {todo.due_date}" if todo.due_date else ""
        return ActionResult(
            success=True,
            message=f'Added "{todo.title}" to your to-dos ({todo.priority} priority{due}).',
            entity=todo.to_dict(),
        )

    def _complete_todo(self, args: CompleteTodoArgs, user_id: int, now: datetime) -> ActionResult:
        todo = self.store.todos.toggle_complete(user_id, args.todo_id)
        if todo is None:
            return _failure("", ErrorCode.NOT_FOUND, f"I couldn't find to-do #{args.todo_id}.")
        verb = "completed" if todo.completed else "restored"
        return ActionResult(
            success=True,
            message=f'To-do "{todo.title}" {verb}!',
            entity=todo.to_dict(),
        )

    def _list_todos(self, args: ListTodosArgs, user_id: int, now: datetime) -> ActionResult:
        todos = self.store.todos.list_all(user_id, show_completed=args.show_completed)
        if todos:
            lines = "\n".join(
                f"{'✅' if t.completed else '•'} #{t.id} {t.title} [{t.priority}]"
                + (f" (due {t.due_date})" if t.due_date else "")
                for t in todos
            )
            message = f"You have {len(todos)} to-do(s):\n{lines}"
        else:
            message = "No to-dos found."
        return ActionResult(success=True, message=message, items=[t.to_dict() for t in todos])

    def _update_todo(self, args: UpdateTodoArgs, user_id: int, now: datetime) -> ActionResult:
        changes = args.changes("todo_id")
        if not changes:
            return _failure("", ErrorCode.VALIDATION, f"Tell me what to change about to-do #{args.todo_id}.")
        todo = self.store.todos.update(user_id, args.todo_id, **changes)
        if todo is None:
            return _failure("", ErrorCode.NOT_FOUND, f"I couldn't find to-do #{args.todo_id}.")
        return ActionResult(
            success=True,
            message=f'To-do "{todo.title}" updated.',
            entity=todo.to_dict(),
        )

    # --- alarms ---

    def _create_alarm(self, args: CreateAlarmArgs, user_id: int, now: datetime) -> ActionResult:
        alarm = self.store.alarms.create(
            user_id,
            title=args.title,
            trigger_at=args.trigger_at,
            message=args.message,
            call_user=args.call_user,
        )
        note = ""
        if alarm.trigger_at < format_timestamp(now):
            note = " That time has already passed, so it will go off right away."
        return ActionResult(
            success=True,
            message=f'Alarm "{alarm.title}" set for {describe(alarm.trigger_at)}.{note}',
            entity=alarm.to_dict(),
        )


def _summarize_events(events: list[Event]) -> str:
    if not events:
        return "No events found."
    lines = "\n".join(f"• #{e.id} {e.title}, {describe(e.datetime)}" for e in events)
    return f"Found {len(events)} event(s):\n{lines}"
