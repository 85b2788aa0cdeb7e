"""Tests for swung.bot.telegram_bot: Telegram bot handlers.

Tests the command handlers, free-text turns and authorization against a
real temp-file store. The LLM resolver and Telegram transport are mocked.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from swung.bot.telegram_bot import (
    _FALLBACK_REPLY,
    _close_store,
    _error_handler,
    _setup_alarm_scheduler,
    build_app,
    cmd_alarms,
    cmd_clear,
    cmd_deleteevent,
    cmd_deletetodo,
    cmd_done,
    cmd_events,
    cmd_history,
    cmd_registerpush,
    cmd_start,
    cmd_testpush,
    cmd_todos,
    handle_text,
)
from swung.config import settings
from swung.core.action_service import TurnResponse
from swung.core.errors import StoreError
from swung.core.executor import ActionExecutor


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_update(text="", user_id=12345, full_name="Asha Rao"):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.effective_user.full_name = full_name
    update.effective_user.username = "asha"
    processing = MagicMock()
    processing.delete = AsyncMock()
    update.message.reply_text = AsyncMock(return_value=processing)
    return update


def _make_context(store, args=None, **bot_data):
    """Create a mock context with the store and an executor in bot_data."""
    context = MagicMock()
    context.args = args or []
    context.bot_data = {
        "store": store,
        "executor": ActionExecutor(store, default_reminder_minutes=15),
        **bot_data,
    }
    return context


def _replies(update):
    return [c.args[0] for c in update.message.reply_text.await_args_list]


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorizedOnly:
    @pytest.mark.asyncio
    async def test_unauthorized_user_silently_ignored(self, store):
        update = _make_update(user_id=99999)
        await cmd_start(update, _make_context(store))
        update.message.reply_text.assert_not_called()
        assert store.users.get_by_telegram_id(99999) is None

    @pytest.mark.asyncio
    async def test_authorized_user_registered(self, store):
        update = _make_update()
        await cmd_start(update, _make_context(store))
        assert "Hi Asha Rao" in _replies(update)[0]
        assert store.users.get_by_telegram_id(12345).display_name == "Asha Rao"

    @pytest.mark.asyncio
    async def test_empty_allowlist_is_open(self, store):
        update = _make_update(user_id=99999)
        with patch.object(settings, "ALLOWED_USER_IDS", []):
            await cmd_start(update, _make_context(store))
        update.message.reply_text.assert_awaited_once()


# ---------------------------------------------------------------------------
# Free text
# ---------------------------------------------------------------------------


class TestHandleText:
    @pytest.mark.asyncio
    async def test_turn_goes_through_service(self, store):
        service = MagicMock()
        service.process_turn = AsyncMock(
            return_value=TurnResponse(success=True, message='Alarm "Call mom" set for Tue, 03 Feb 2026 at 14:10.'),
        )
        update = _make_update("remind me to call mom in 10 minutes")
        context = _make_context(store, service=service)

        await handle_text(update, context)

        user = store.users.get_by_telegram_id(12345)
        service.process_turn.assert_awaited_once_with("remind me to call mom in 10 minutes", user.id)
        assert _replies(update) == ["Processing...", 'Alarm "Call mom" set for Tue, 03 Feb 2026 at 14:10.']
        update.message.reply_text.return_value.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_long_reply_is_clipped(self, store):
        service = MagicMock()
        service.process_turn = AsyncMock(return_value=TurnResponse(success=True, message="x" * 5000))
        update = _make_update("list everything")
        await handle_text(update, _make_context(store, service=service))
        assert len(_replies(update)[-1]) == 4000

    @pytest.mark.asyncio
    async def test_user_lookup_failure_replies_without_turn(self, store):
        service = MagicMock()
        service.process_turn = AsyncMock()
        update = _make_update("hello")
        with patch.object(store.users, "get_or_create", side_effect=StoreError("database is locked")):
            await handle_text(update, _make_context(store, service=service))
        assert _replies(update) == [_FALLBACK_REPLY]
        service.process_turn.assert_not_called()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestTodoCommands:
    @pytest.mark.asyncio
    async def test_todos_lists_open_items(self, store, user):
        store.todos.create(user.id, "Buy milk", priority="high")
        update = _make_update("/todos")
        await cmd_todos(update, _make_context(store))
        assert "Buy milk [high]" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_done_toggles(self, store, user):
        todo = store.todos.create(user.id, "Buy milk")
        update = _make_update("/done")
        await cmd_done(update, _make_context(store, args=[f"#{todo.id}"]))
        assert _replies(update) == ['To-do "Buy milk" completed!']
        assert store.todos.get(user.id, todo.id).completed is True

    @pytest.mark.asyncio
    async def test_done_without_id_shows_usage(self, store):
        update = _make_update("/done")
        await cmd_done(update, _make_context(store))
        assert _replies(update)[0].startswith("Usage: /done")

    @pytest.mark.asyncio
    async def test_done_with_bad_id(self, store):
        update = _make_update("/done")
        await cmd_done(update, _make_context(store, args=["milk"]))
        assert "'milk' is not a valid ID" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_deletetodo_other_users_item(self, store, other_user):
        todo = store.todos.create(other_user.id, "Theirs")
        update = _make_update("/deletetodo")
        await cmd_deletetodo(update, _make_context(store, args=[str(todo.id)]))
        assert _replies(update) == [f"I couldn't find to-do #{todo.id}."]
        assert store.todos.get(other_user.id, todo.id) is not None


class TestEventAndAlarmCommands:
    @pytest.mark.asyncio
    async def test_events_lists_upcoming(self, store, user):
        store.events.create(user.id, "Dentist", "2026-02-04T10:00:00", location="Clinic")
        store.events.create(user.id, "Yesterday", "2026-02-02T10:00:00")
        update = _make_update("/events")
        await cmd_events(update, _make_context(store))
        text = _replies(update)[0]
        assert "Dentist @ Clinic" in text
        assert "Yesterday" not in text

    @pytest.mark.asyncio
    async def test_events_empty(self, store, user):
        update = _make_update("/events")
        await cmd_events(update, _make_context(store))
        assert _replies(update) == ["No upcoming events."]

    @pytest.mark.asyncio
    async def test_deleteevent_removes_reminder(self, store, user):
        event = store.events.create(user.id, "Dentist", "2026-02-04T10:00:00")
        store.alarms.create(user.id, "Reminder: Dentist", "2026-02-04T09:45:00", event_id=event.id)
        update = _make_update("/deleteevent")
        await cmd_deleteevent(update, _make_context(store, args=[str(event.id)]))
        assert _replies(update) == ['Event "Dentist" deleted.']
        assert store.alarms.list_active(user.id) == []

    @pytest.mark.asyncio
    async def test_alarms_lists_active(self, store, user):
        store.alarms.create(user.id, "Call mom", "2026-02-03T14:10:00")
        update = _make_update("/alarms")
        await cmd_alarms(update, _make_context(store))
        assert "Call mom" in _replies(update)[0]


class TestHistoryCommands:
    @pytest.mark.asyncio
    async def test_history_and_clear(self, store, user):
        store.chats.save(user.id, "user", "hello")
        store.chats.save(user.id, "assistant", "Hi!", {"type": "list_todos"})

        update = _make_update("/history")
        await cmd_history(update, _make_context(store))
        assert _replies(update)[0] == "You: hello\nSWUNG [list_todos]: Hi!"

        update = _make_update("/clear")
        await cmd_clear(update, _make_context(store))
        assert _replies(update) == ["Cleared 2 message(s) from your history."]
        assert store.chats.history(user.id) == []

    @pytest.mark.asyncio
    async def test_empty_history(self, store):
        update = _make_update("/history")
        await cmd_history(update, _make_context(store))
        assert _replies(update) == ["No conversation history yet."]

    @pytest.mark.asyncio
    async def test_history_store_failure_replies(self, store, user):
        update = _make_update("/history")
        with patch.object(store.chats, "history", side_effect=StoreError("database is locked")):
            await cmd_history(update, _make_context(store))
        assert _replies(update) == ["Couldn't load your history. Please try again."]

    @pytest.mark.asyncio
    async def test_clear_store_failure_replies(self, store, user):
        store.chats.save(user.id, "user", "hello")
        update = _make_update("/clear")
        with patch.object(store.chats, "clear", side_effect=StoreError("database is locked")):
            await cmd_clear(update, _make_context(store))
        assert _replies(update) == ["Couldn't clear your history. Please try again."]
        assert len(store.chats.history(user.id)) == 1


class TestPushCommands:
    @pytest.mark.asyncio
    async def test_registerpush(self, store, user):
        update = _make_update("/registerpush")
        await cmd_registerpush(update, _make_context(store, args=["fcm-token-1", "Android"]))
        [token] = store.push_tokens.list_for_user(user.id)
        assert token.token == "fcm-token-1"
        assert token.platform == "android"
        assert "android" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_registerpush_usage(self, store):
        update = _make_update("/registerpush")
        await cmd_registerpush(update, _make_context(store))
        assert _replies(update)[0].startswith("Usage: /registerpush")

    @pytest.mark.asyncio
    async def test_registerpush_store_failure_replies(self, store, user):
        update = _make_update("/registerpush")
        with patch.object(store.push_tokens, "register", side_effect=StoreError("database is locked")):
            await cmd_registerpush(update, _make_context(store, args=["fcm-token-1"]))
        assert _replies(update) == ["Couldn't register this device. Please try again."]

    @pytest.mark.asyncio
    async def test_testpush_goes_through_fanout(self, store, user):
        store.push_tokens.register(user.id, "fcm-token-1")
        fanout = MagicMock()
        fanout.notify = AsyncMock()
        update = _make_update("/testpush")

        await cmd_testpush(update, _make_context(store, fanout=fanout))

        alarm = fanout.notify.await_args.args[0]
        assert alarm.user_id == user.id
        assert alarm.title == "Test notification"
        assert _replies(update) == ["Sent a test push to 1 device(s)."]


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


class TestBuildApp:
    def test_bot_data_and_handlers(self, store):
        with patch("swung.bot.telegram_bot._setup_alarm_scheduler") as setup:
            app = build_app(store=store, resolver=MagicMock(), push=MagicMock())

        assert app.bot_data["store"] is store
        assert {"executor", "service", "fanout"} <= set(app.bot_data)
        assert len(app.handlers[0]) == 14
        assert app.error_handlers
        setup.assert_called_once()

    def test_scheduler_job_registered_once(self):
        app = MagicMock()
        scheduler = MagicMock()
        _setup_alarm_scheduler(app, scheduler)

        kwargs = app.job_queue.run_repeating.call_args.kwargs
        assert app.job_queue.run_repeating.call_args.args[0] is scheduler.run_job
        assert kwargs["interval"] == settings.ALARM_POLL_SECONDS
        assert kwargs["name"] == "alarm_scheduler"
        assert kwargs["job_kwargs"] == {"max_instances": 1, "coalesce": True}

    @pytest.mark.asyncio
    async def test_shutdown_closes_store(self):
        store = MagicMock()
        app = MagicMock()
        app.bot_data = {"store": store}
        await _close_store(app)
        store.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_error_handler_replies_to_the_chat(self):
        update = MagicMock()
        update.effective_message.reply_text = AsyncMock()
        context = MagicMock()
        context.error = StoreError("database is locked")
        await _error_handler(update, context)
        update.effective_message.reply_text.assert_awaited_once_with(_FALLBACK_REPLY)

    @pytest.mark.asyncio
    async def test_error_handler_without_message(self):
        context = MagicMock()
        context.error = RuntimeError("boom")
        await _error_handler(None, context)
