"""Tests for swung.core.executor: validated actions against a real store."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import patch

import pytest

from swung.core.errors import ErrorCode, StoreError
from swung.core.executor import ActionExecutor, ActionResult

NOW = datetime(2026, 2, 3, 14, 0, 0)


# ---------------------------------------------------------------------------
# Dispatch and validation
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_unknown_action(self, executor, user):
        result = executor.execute("create_task", {"title": "x"}, user.id, NOW)
        assert result.success is False
        assert result.error is ErrorCode.UNKNOWN_ACTION
        assert result.message

    def test_missing_required_field(self, executor, user):
        result = executor.execute("create_event", {"title": "Gym"}, user.id, NOW)
        assert result.success is False
        assert result.error is ErrorCode.VALIDATION
        assert "datetime is required" in result.message
        assert executor.store.events.list_all(user.id) == []

    def test_empty_arguments_rejected(self, executor, user):
        result = executor.execute("create_todo", {}, user.id, NOW)
        assert result.error is ErrorCode.VALIDATION
        assert result.message.startswith("I couldn't create todo")

    def test_store_error_is_reported(self, executor, user):
        with patch.object(executor.store.todos, "create", side_effect=StoreError("disk full")):
            result = executor.execute("create_todo", {"title": "Milk"}, user.id, NOW)
        assert result.success is False
        assert result.error is ErrorCode.STORE_ERROR
        assert result.action == "create_todo"

    def test_every_action_has_a_handler(self, store):
        ActionExecutor(store, default_reminder_minutes=0)

    def test_to_dict(self):
        result = ActionResult(success=False, message="nope", error=ErrorCode.NOT_FOUND)
        assert result.to_dict() == {"success": False, "message": "nope", "error": "not_found"}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestCreateEvent:
    def test_reminder_alarm_fifteen_minutes_before(self, executor, store, user):
        result = executor.execute(
            "create_event",
            {"title": "Dentist", "datetime": "2026-02-04T10:00:00", "reminder_minutes": 15},
            user.id, NOW,
        )

        assert result.success is True
        event_id = result.entity["id"]
        alarms = store.alarms.list_for_event(user.id, event_id)
        assert len(alarms) == 1
        assert alarms[0].trigger_at == "2026-02-04T09:45:00"
        assert alarms[0].title == "Reminder: Dentist"
        assert alarms[0].message == "Dentist starts in 15 minutes"
        assert "remind you 15 minutes before" in result.message

        executor.execute("delete_event", {"event_id": event_id}, user.id, NOW)
        assert store.alarms.list_active(user.id) == []

    def test_default_reminder_applies(self, executor, store, user):
        result = executor.execute(
            "create_event", {"title": "Gym", "datetime": "2026-02-04T07:30:00"}, user.id, NOW,
        )
        alarms = store.alarms.list_for_event(user.id, result.entity["id"])
        assert [a.trigger_at for a in alarms] == ["2026-02-04T07:15:00"]

    def test_zero_reminder_creates_no_alarm(self, executor, store, user):
        result = executor.execute(
            "create_event",
            {"title": "Gym", "datetime": "2026-02-04T07:30:00", "reminder_minutes": 0},
            user.id, NOW,
        )
        assert result.success is True
        assert store.alarms.list_active(user.id) == []
        assert "remind" not in result.message

    def test_reminder_failure_keeps_event(self, executor, store, user):
        with patch.object(store.alarms, "create", side_effect=StoreError("locked")):
            result = executor.execute(
                "create_event", {"title": "Gym", "datetime": "2026-02-04T07:30:00"}, user.id, NOW,
            )
        assert result.success is True
        assert [e.title for e in store.events.list_all(user.id)] == ["Gym"]
        assert store.alarms.list_active(user.id) == []

    def test_confirmation_message(self, executor, user):
        result = executor.execute(
            "create_event",
            {"title": "Dentist", "datetime": "2026-02-04T10:00:00", "reminder_minutes": 0},
            user.id, NOW,
        )
        assert result.message == 'Event "Dentist" scheduled for Wed, 04 Feb 2026 at 10:00.'


class TestReadEvents:
    @pytest.fixture
    def events(self, store, user):
        store.events.create(user.id, "Standup", "2026-02-03T09:00:00")      # earlier today
        store.events.create(user.id, "Review", "2026-02-03T16:00:00")       # later today
        store.events.create(user.id, "Dentist", "2026-02-04T10:00:00")      # tomorrow
        store.events.create(user.id, "Trip", "2026-02-10T08:00:00")         # next week
        store.events.create(user.id, "Conference", "2026-03-01T09:00:00")

    def _titles(self, result):
        return [item["title"] for item in result.items]

    @pytest.mark.parametrize(
        "args, expected",
        [
            ({"query": "today"}, ["Standup", "Review"]),
            ({"query": "Tomorrow"}, ["Dentist"]),
            ({"query": "this week"}, ["Standup", "Review", "Dentist", "Trip"]),
            ({"query": "upcoming"}, ["Review", "Dentist", "Trip", "Conference"]),
            ({"query": "2026-03-01"}, ["Conference"]),
            ({"query": "range", "start_date": "2026-02-04", "end_date": "2026-02-10"}, ["Dentist", "Trip"]),
            ({"query": "whatever"}, ["Standup", "Review", "Dentist", "Trip", "Conference"]),
        ],
    )
    def test_vocabulary(self, executor, user, events, args, expected):
        result = executor.execute("read_events", args, user.id, NOW)
        assert result.success is True
        assert self._titles(result) == expected

    def test_message_lists_events(self, executor, user, events):
        result = executor.execute("read_events", {"query": "tomorrow"}, user.id, NOW)
        assert result.message.startswith("Found 1 event(s):")
        assert "Dentist" in result.message

    def test_no_events(self, executor, user):
        result = executor.execute("read_events", {"query": "today"}, user.id, NOW)
        assert result.message == "No events found."
        assert result.items == []

    def test_other_users_events_hidden(self, executor, store, user, other_user):
        store.events.create(other_user.id, "Secret", "2026-02-03T18:00:00")
        result = executor.execute("read_events", {"query": "today"}, user.id, NOW)
        assert result.items == []


class TestUpdateDeleteEvent:
    def test_update_moves_event(self, executor, store, user):
        event = store.events.create(user.id, "Dentist", "2026-02-04T10:00:00")
        result = executor.execute(
            "update_event", {"event_id": event.id, "datetime": "2026-02-05T11:00:00"}, user.id, NOW,
        )
        assert result.success is True
        assert store.events.get(user.id, event.id).datetime == "2026-02-05T11:00:00"
        assert "Thu, 05 Feb 2026 at 11:00" in result.message

    def test_update_foreign_event_not_found(self, executor, store, user, other_user):
        event = store.events.create(other_user.id, "Theirs", "2026-02-04T10:00:00")
        result = executor.execute("update_event", {"event_id": event.id, "title": "Mine"}, user.id, NOW)
        assert result.error is ErrorCode.NOT_FOUND
        assert store.events.get(other_user.id, event.id).title == "Theirs"

    def test_update_without_changes_rejected(self, executor, store, user):
        event = store.events.create(user.id, "Dentist", "2026-02-04T10:00:00")
        result = executor.execute("update_event", {"event_id": event.id}, user.id, NOW)
        assert result.success is False
        assert result.error is ErrorCode.VALIDATION
        assert result.message == f"Tell me what to change about event #{event.id}."

    def test_update_null_title_alone_rejected(self, executor, store, user):
        event = store.events.create(user.id, "Dentist", "2026-02-04T10:00:00")
        result = executor.execute("update_event", {"event_id": event.id, "title": None}, user.id, NOW)
        assert result.error is ErrorCode.VALIDATION
        assert store.events.get(user.id, event.id).title == "Dentist"

    def test_update_clears_location(self, executor, store, user):
        event = store.events.create(user.id, "Dentist", "2026-02-04T10:00:00", location="Clinic")
        result = executor.execute("update_event", {"event_id": event.id, "location": None}, user.id, NOW)
        assert result.success is True
        assert store.events.get(user.id, event.id).location is None

    def test_delete(self, executor, store, user):
        event = store.events.create(user.id, "Dentist", "2026-02-04T10:00:00")
        result = executor.execute("delete_event", {"event_id": event.id}, user.id, NOW)
        assert result.message == 'Event "Dentist" deleted.'
        assert store.events.get(user.id, event.id) is None

    def test_delete_missing(self, executor, user):
        result = executor.execute("delete_event", {"event_id": 404}, user.id, NOW)
        assert result.success is False
        assert result.message == "I couldn't find event #404."

    def test_delete_foreign_event_not_found(self, executor, store, user, other_user):
        event = store.events.create(other_user.id, "Theirs", "2026-02-04T10:00:00")
        result = executor.execute("delete_event", {"event_id": event.id}, user.id, NOW)
        assert result.error is ErrorCode.NOT_FOUND
        assert store.events.get(other_user.id, event.id) is not None


# ---------------------------------------------------------------------------
# To-dos
# ---------------------------------------------------------------------------


class TestTodos:
    def test_create_with_defaults(self, executor, user):
        result = executor.execute("create_todo", {"title": "Buy milk"}, user.id, NOW)
        assert result.success is True
        assert result.entity["priority"] == "medium"
        assert result.message == 'Added "Buy milk" to your to-dos (medium priority).'

    def test_create_with_due_date(self, executor, user):
        result = executor.execute(
            "create_todo", {"title": "Taxes", "priority": "urgent", "due_date": "2026-02-07"}, user.id, NOW,
        )
        assert result.message == 'Added "Taxes" to your to-dos (urgent priority, due 2026-02-07).'

    def test_complete_twice_restores(self, executor, store, user):
        todo = store.todos.create(user.id, "Buy milk")
        first = executor.execute("complete_todo", {"todo_id": todo.id}, user.id, NOW)
        second = executor.execute("complete_todo", {"todo_id": todo.id}, user.id, NOW)

        assert first.message == 'To-do "Buy milk" completed!'
        assert second.message == 'To-do "Buy milk" restored!'
        restored = store.todos.get(user.id, todo.id)
        assert restored.completed is False
        assert restored.completed_at is None

    def test_complete_foreign_todo(self, executor, store, user, other_user):
        todo = store.todos.create(other_user.id, "Theirs")
        result = executor.execute("complete_todo", {"todo_id": todo.id}, user.id, NOW)
        assert result.error is ErrorCode.NOT_FOUND
        assert store.todos.get(other_user.id, todo.id).completed is False

    def test_list_hides_completed_and_orders_by_priority(self, executor, store, user):
        low = store.todos.create(user.id, "Water plants", priority="low")
        store.todos.create(user.id, "Pay rent", priority="urgent")
        done = store.todos.create(user.id, "Buy milk", priority="high")
        store.todos.toggle_complete(user.id, done.id)

        result = executor.execute("list_todos", {}, user.id, NOW)

        assert [item["title"] for item in result.items] == ["Pay rent", "Water plants"]
        assert result.message.startswith("You have 2 to-do(s):")
        assert f"#{low.id} Water plants [low]" in result.message

    def test_list_with_completed(self, executor, store, user):
        done = store.todos.create(user.id, "Buy milk")
        store.todos.toggle_complete(user.id, done.id)
        result = executor.execute("list_todos", {"show_completed": True}, user.id, NOW)
        assert len(result.items) == 1
        assert "✅" in result.message

    def test_list_empty(self, executor, user):
        assert executor.execute("list_todos", {}, user.id, NOW).message == "No to-dos found."

    def test_update(self, executor, store, user):
        todo = store.todos.create(user.id, "Buy milk")
        result = executor.execute(
            "update_todo", {"todo_id": todo.id, "priority": "high"}, user.id, NOW,
        )
        assert result.success is True
        assert store.todos.get(user.id, todo.id).priority == "high"

    def test_update_missing(self, executor, user):
        result = executor.execute("update_todo", {"todo_id": 99, "title": "x"}, user.id, NOW)
        assert result.error is ErrorCode.NOT_FOUND

    def test_update_clears_due_date(self, executor, store, user):
        todo = store.todos.create(user.id, "Taxes", due_date="2026-02-07")
        result = executor.execute("update_todo", {"todo_id": todo.id, "due_date": None}, user.id, NOW)
        assert result.success is True
        assert store.todos.get(user.id, todo.id).due_date is None

    def test_update_without_changes_rejected(self, executor, store, user):
        todo = store.todos.create(user.id, "Buy milk")
        result = executor.execute("update_todo", {"todo_id": todo.id, "priority": None}, user.id, NOW)
        assert result.error is ErrorCode.VALIDATION
        assert result.message == f"Tell me what to change about to-do #{todo.id}."
        assert store.todos.get(user.id, todo.id).priority == "medium"

    def test_update_foreign_todo_not_found(self, executor, store, user, other_user):
        todo = store.todos.create(other_user.id, "Theirs")
        result = executor.execute("update_todo", {"todo_id": todo.id, "title": "Mine"}, user.id, NOW)
        assert result.error is ErrorCode.NOT_FOUND
        assert store.todos.get(other_user.id, todo.id).title == "Theirs"


# ---------------------------------------------------------------------------
# Alarms
# ---------------------------------------------------------------------------


class TestCreateAlarm:
    def test_relative_alarm(self, executor, store, user):
        result = executor.execute(
            "create_alarm", {"title": "Call mom", "trigger_at": "2026-02-03T14:10:00"}, user.id, NOW,
        )
        assert result.success is True
        assert "mom" in result.message
        assert result.message == 'Alarm "Call mom" set for Tue, 03 Feb 2026 at 14:10.'
        [alarm] = store.alarms.list_active(user.id)
        assert alarm.trigger_at == "2026-02-03T14:10:00"
        assert alarm.is_pending

    def test_past_trigger_noted(self, executor, user):
        result = executor.execute(
            "create_alarm", {"title": "Late", "trigger_at": "2026-02-03T13:00:00"}, user.id, NOW,
        )
        assert result.success is True
        assert "already passed" in result.message

    def test_call_user_flag(self, executor, store, user):
        executor.execute(
            "create_alarm",
            {"title": "Wake up", "trigger_at": "2026-02-04T06:00:00", "call_user": True},
            user.id, NOW,
        )
        assert store.alarms.list_active(user.id)[0].call_user is True
