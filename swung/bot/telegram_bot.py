"""
SWUNG Assistant: Telegram Bot.

The chat front-end: free text goes through ``ActionService.process_turn``;
slash commands read and tidy the store directly. The same bot is the live
alarm channel and hosts the alarm scheduler on its job queue.

Security-first: when ALLOWED_USER_IDS is set, everyone else is silently
ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from swung.config import settings
from swung.core.clock import describe
from swung.data.db import ActionStore
from swung.data.models import Alarm, User

if TYPE_CHECKING:
    from swung.core.scheduler import AlarmScheduler

logger = logging.getLogger(__name__)

_MAX_MESSAGE_CHARS = 4000
_FALLBACK_REPLY = "Sorry, something went wrong on my side. Please try again."


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from users not on the allowlist.

    An empty ALLOWED_USER_IDS leaves the bot open.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        allowed = settings.ALLOWED_USER_IDS
        if user is None or (allowed and user.id not in allowed):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _store(context: ContextTypes.DEFAULT_TYPE) -> ActionStore:
    return context.bot_data["store"]


def _current_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> User:
    tg_user = update.effective_user
    name = tg_user.full_name or tg_user.username or str(tg_user.id)
    return _store(context).users.get_or_create(tg_user.id, name)


async def _id_arg(update: Update, context: ContextTypes.DEFAULT_TYPE, usage: str) -> int | None:
    """First command argument as an id, or None after replying with usage."""
    if not context.args:
        await update.message.reply_text(usage)
        return None
    try:
        return int(context.args[0].lstrip("#"))
    except ValueError:
        await update.message.reply_text(f"'{context.args[0]}' is not a valid ID.\n{usage}")
        return None


def _clip(text: str) -> str:
    if len(text) <= _MAX_MESSAGE_CHARS:
        return text
    return text[: _MAX_MESSAGE_CHARS - 1] + "…"


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start: register the user and say hello."""
    user = _current_user(update, context)
    await update.message.reply_text(
        f"Hi {user.display_name}, I'm SWUNG, your scheduling assistant!\n\n"
        "Just tell me what you need:\n"
        "• \"Meeting with Dan tomorrow at 3pm\"\n"
        "• \"Add buy milk to my to-dos\"\n"
        "• \"Remind me to call mom in 10 minutes\"\n"
        "• \"What's on this week?\"\n\n"
        "Type /help for the full command list.",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help: list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/events: upcoming events\n"
        "/todos: open to-dos (/todos all includes completed)\n"
        "/alarms: active alarms\n"
        "/done <id>: complete (or restore) a to-do\n"
        "/deletetodo <id>: delete a to-do\n"
        "/deleteevent <id>: delete an event and its reminders\n"
        "/deletealarm <id>: delete an alarm\n"
        "/history: recent conversation\n"
        "/clear: clear conversation history\n"
        "/registerpush <token> [platform]: register a device for push\n"
        "/testpush: send a test notification\n"
        "/help: show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /events: the nearest upcoming events."""
    store = _store(context)
    user = _current_user(update, context)
    try:
        events = store.events.list_upcoming(
            user.id, store.db.now_str(), settings.CONTEXT_EVENT_LIMIT,
        )
    except Exception as exc:
        logger.error("/events error: %s", exc)
        await update.message.reply_text("Couldn't load your events. Please try again.")
        return

    if not events:
        await update.message.reply_text("No upcoming events.")
        return

    lines = ["Upcoming events:\n"]
    for e in events:
        where = f" @ {e.location}" if e.location else ""
        lines.append(f"#{e.id}  {describe(e.datetime)}  {e.title}{where}")
    await update.message.reply_text(_clip("\n".join(lines)))


@authorized_only
async def cmd_todos(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /todos [all]: open to-dos by priority."""
    executor = context.bot_data["executor"]
    user = _current_user(update, context)
    show_completed = bool(context.args) and context.args[0].lower() == "all"
    result = executor.execute("list_todos", {"show_completed": show_completed}, user.id)
    await update.message.reply_text(_clip(result.message))


@authorized_only
async def cmd_alarms(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /alarms: active alarms, soonest first."""
    user = _current_user(update, context)
    try:
        alarms = _store(context).alarms.list_active(user.id)
    except Exception as exc:
        logger.error("/alarms error: %s", exc)
        await update.message.reply_text("Couldn't load your alarms. Please try again.")
        return

    if not alarms:
        await update.message.reply_text("No active alarms.")
        return

    lines = ["Active alarms:\n"]
    for a in alarms:
        lines.append(f"#{a.id}  {describe(a.trigger_at)}  {a.title}")
    await update.message.reply_text(_clip("\n".join(lines)))


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <id>: toggle a to-do."""
    todo_id = await _id_arg(update, context, "Usage: /done <todo_id>\nUse /todos to see IDs.")
    if todo_id is None:
        return
    user = _current_user(update, context)
    result = context.bot_data["executor"].execute("complete_todo", {"todo_id": todo_id}, user.id)
    await update.message.reply_text(result.message)


@authorized_only
async def cmd_deletetodo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletetodo <id>."""
    todo_id = await _id_arg(update, context, "Usage: /deletetodo <todo_id>")
    if todo_id is None:
        return
    user = _current_user(update, context)
    try:
        todo = _store(context).todos.delete(user.id, todo_id)
    except Exception as exc:
        logger.error("/deletetodo error: %s", exc)
        await update.message.reply_text("Something went wrong. Please try again.")
        return
    if todo is None:
        await update.message.reply_text(f"I couldn't find to-do #{todo_id}.")
        return
    await update.message.reply_text(f'🗑 To-do "{todo.title}" deleted.')


@authorized_only
async def cmd_deleteevent(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deleteevent <id>: linked reminders go with it."""
    event_id = await _id_arg(update, context, "Usage: /deleteevent <event_id>\nUse /events to see IDs.")
    if event_id is None:
        return
    user = _current_user(update, context)
    result = context.bot_data["executor"].execute("delete_event", {"event_id": event_id}, user.id)
    await update.message.reply_text(result.message)


@authorized_only
async def cmd_deletealarm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletealarm <id>."""
    alarm_id = await _id_arg(update, context, "Usage: /deletealarm <alarm_id>\nUse /alarms to see IDs.")
    if alarm_id is None:
        return
    user = _current_user(update, context)
    try:
        alarm = _store(context).alarms.delete(user.id, alarm_id)
    except Exception as exc:
        logger.error("/deletealarm error: %s", exc)
        await update.message.reply_text("Something went wrong. Please try again.")
        return
    if alarm is None:
        await update.message.reply_text(f"I couldn't find alarm #{alarm_id}.")
        return
    await update.message.reply_text(f'🗑 Alarm "{alarm.title}" deleted.')


@authorized_only
async def cmd_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /history: the latest conversation turns."""
    try:
        user = _current_user(update, context)
        messages = _store(context).chats.history(user.id, limit=settings.CHAT_HISTORY_LIMIT)
    except Exception as exc:
        logger.error("/history error: %s", exc)
        await update.message.reply_text("Couldn't load your history. Please try again.")
        return
    if not messages:
        await update.message.reply_text("No conversation history yet.")
        return

    lines = []
    for m in messages:
        who = "You" if m.role == "user" else "SWUNG"
        tag = f" [{m.action_type}]" if m.action_type else ""
        lines.append(f"{who}{tag}: {m.content}")
    # Keep the most recent lines when clipping
    text = "\n".join(lines)
    if len(text) > _MAX_MESSAGE_CHARS:
        text = "…" + text[-(_MAX_MESSAGE_CHARS - 1):]
    await update.message.reply_text(text)


@authorized_only
async def cmd_clear(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /clear: delete the user's chat history."""
    try:
        user = _current_user(update, context)
        removed = _store(context).chats.clear(user.id)
    except Exception as exc:
        logger.error("/clear error: %s", exc)
        await update.message.reply_text("Couldn't clear your history. Please try again.")
        return
    await update.message.reply_text(f"Cleared {removed} message(s) from your history.")


@authorized_only
async def cmd_registerpush(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /registerpush <token> [platform]."""
    if not context.args:
        await update.message.reply_text("Usage: /registerpush <token> [web|android|ios]")
        return
    token = context.args[0].strip()
    platform = context.args[1].strip().lower() if len(context.args) > 1 else "web"
    try:
        user = _current_user(update, context)
        _store(context).push_tokens.register(user.id, token, platform)
    except Exception as exc:
        logger.error("/registerpush error: %s", exc)
        await update.message.reply_text("Couldn't register this device. Please try again.")
        return
    await update.message.reply_text(f"✅ Device registered for push ({platform}).")


@authorized_only
async def cmd_testpush(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /testpush: run a synthetic alarm through the fan-out."""
    store = _store(context)
    try:
        user = _current_user(update, context)
        tokens = store.push_tokens.list_for_user(user.id)
    except Exception as exc:
        logger.error("/testpush error: %s", exc)
        await update.message.reply_text("Something went wrong. Please try again.")
        return
    alarm = Alarm(
        id=0,
        user_id=user.id,
        title="Test notification",
        trigger_at=store.db.now_str(),
        message="Notifications are working!",
    )
    await context.bot_data["fanout"].notify(alarm)
    if not tokens:
        await update.message.reply_text("No push devices registered; sent here only.")
    else:
        await update.message.reply_text(f"Sent a test push to {len(tokens)} device(s).")


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages: one conversational turn."""
    service = context.bot_data["service"]
    try:
        user = _current_user(update, context)
    except Exception as exc:
        logger.error("Text turn error for %s: %s", update.effective_user.id, exc)
        await update.message.reply_text(_FALLBACK_REPLY)
        return

    processing_msg = await update.message.reply_text("Processing...")
    response = await service.process_turn(update.message.text, user.id)
    await update.message.reply_text(_clip(response.message))
    try:
        await processing_msg.delete()
    except Exception:
        pass  # Non-critical if delete fails


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Last resort for exceptions a handler did not catch: log and reply once."""
    logger.error("Unhandled error in %s: %s", type(update).__name__, context.error, exc_info=context.error)
    message = getattr(update, "effective_message", None)
    if message is None:
        return
    try:
        await message.reply_text(_FALLBACK_REPLY)
    except Exception as exc:
        logger.warning("Could not send error reply: %s", exc)


async def _close_store(app: Application) -> None:
    store: ActionStore | None = app.bot_data.get("store")
    if store is not None:
        store.close()


def build_app(
    store: ActionStore | None = None,
    resolver: Any | None = None,
    push: Any | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Open ActionStore. Defaults to one on DATABASE_PATH.
        resolver: IntentResolver. Defaults to the configured LLM provider.
        push: PushChannel. Defaults to FCM when credentials exist.
    """
    from swung.adapters.telegram_notifier import TelegramNotifier
    from swung.core.action_service import ActionService
    from swung.core.executor import ActionExecutor
    from swung.core.fanout import NotificationFanout
    from swung.core.scheduler import AlarmScheduler

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_shutdown(_close_store)
        .build()
    )

    if store is None:
        store = ActionStore.open()

    if resolver is None:
        from swung.core.credentials import build_credential_provider
        from swung.core.resolver import IntentResolver
        resolver = IntentResolver(build_credential_provider())

    if push is None:
        from swung.adapters.fcm_push import build_push_channel
        push = build_push_channel()

    executor = ActionExecutor(store)
    live = TelegramNotifier(app.bot, store.users)
    fanout = NotificationFanout(store.push_tokens, live=live, push=push)

    # Store collaborators in bot_data for handler access
    app.bot_data["store"] = store
    app.bot_data["executor"] = executor
    app.bot_data["service"] = ActionService(store, resolver, executor)
    app.bot_data["fanout"] = fanout

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("events", cmd_events))
    app.add_handler(CommandHandler("todos", cmd_todos))
    app.add_handler(CommandHandler("alarms", cmd_alarms))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("deletetodo", cmd_deletetodo))
    app.add_handler(CommandHandler("deleteevent", cmd_deleteevent))
    app.add_handler(CommandHandler("deletealarm", cmd_deletealarm))
    app.add_handler(CommandHandler("history", cmd_history))
    app.add_handler(CommandHandler("clear", cmd_clear))
    app.add_handler(CommandHandler("registerpush", cmd_registerpush))
    app.add_handler(CommandHandler("testpush", cmd_testpush))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_error_handler(_error_handler)

    _setup_alarm_scheduler(app, AlarmScheduler(store.db, store.alarms, fanout))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_alarm_scheduler(app: Application, scheduler: AlarmScheduler) -> None:
    """Register the repeating alarm tick; one instance at a time."""
    app.job_queue.run_repeating(
        scheduler.run_job,
        interval=settings.ALARM_POLL_SECONDS,
        first=5,
        name="alarm_scheduler",
        job_kwargs={"max_instances": 1, "coalesce": True},
    )
    logger.info("Alarm scheduler every %ds (%s)", settings.ALARM_POLL_SECONDS, settings.TIMEZONE)


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting SWUNG assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
