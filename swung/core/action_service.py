"""
SWUNG Assistant: UI-Agnostic Action Service.

One conversational turn: log the user text, resolve it with the LLM,
execute the resulting action and log the reply. Front-ends (the Telegram
bot, an HTTP route) call ``process_turn`` with an already-authenticated
user id and render the returned ``TurnResponse`` in their own way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from swung.core.clock import format_timestamp
from swung.core.errors import ErrorCode
from swung.core.executor import ActionExecutor
from swung.core.resolver import (
    ActionRequest,
    IntentResolver,
    PlainMessage,
    ResolveError,
    ResolverContext,
)
from swung.data.db import ActionStore

logger = logging.getLogger(__name__)

_FALLBACK_MESSAGE = "Sorry, something went wrong on my side. Please try again."


# ---------------------------------------------------------------------------
# Response type
# ---------------------------------------------------------------------------


@dataclass
class TurnResponse:
    success: bool
    message: str
    action: dict[str, Any] | None = None           # {"type": name, **args}
    action_result: dict[str, Any] | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# ActionService
# ---------------------------------------------------------------------------


class ActionService:
    """Orchestrates resolve → execute → respond for one user turn.

    Returns a ``TurnResponse``, never raises and never sends messages itself.
    """

    def __init__(
        self,
        store: ActionStore,
        resolver: IntentResolver,
        executor: ActionExecutor | None = None,
        context_event_limit: int | None = None,
    ) -> None:
        if context_event_limit is None:
            from swung.config import settings
            context_event_limit = settings.CONTEXT_EVENT_LIMIT
        self._store = store
        self._resolver = resolver
        self._executor = executor or ActionExecutor(store)
        self._context_event_limit = context_event_limit

    async def process_turn(
        self, text: str, user_id: int, now: datetime | None = None,
    ) -> TurnResponse:
        """Handle one free-text turn for ``user_id``."""
        text = (text or "").strip()
        if not text:
            return TurnResponse(
                success=False,
                message="I didn't catch that. Could you say it again?",
                error=ErrorCode.VALIDATION.value,
            )

        try:
            return await self._process(text, user_id, now or self._store.db.now())
        except Exception as exc:
            logger.exception("Turn failed for user %d: %s", user_id, exc)
            return TurnResponse(success=False, message=_FALLBACK_MESSAGE, error="internal")

    async def _process(self, text: str, user_id: int, now: datetime) -> TurnResponse:
        self._log_chat(user_id, "user", text)

        outcome = await self._resolver.resolve(text, self._build_context(user_id, now), now)

        if isinstance(outcome, ResolveError):
            self._log_chat(user_id, "assistant", outcome.message)
            return TurnResponse(success=False, message=outcome.message, error=outcome.code.value)

        if isinstance(outcome, PlainMessage):
            self._log_chat(user_id, "assistant", outcome.message)
            return TurnResponse(success=True, message=outcome.message)

        return self._run_action(outcome, user_id, now)

    def _run_action(self, request: ActionRequest, user_id: int, now: datetime) -> TurnResponse:
        action = {"type": request.name, **request.args}
        result = self._executor.execute(request.name, request.args, user_id, now)
        message = result.message or request.message
        result_data = result.to_dict()

        self._log_chat(
            user_id, "assistant", message,
            {"type": request.name, "data": action, "result": result_data},
        )
        return TurnResponse(
            success=result.success,
            message=message,
            action=action,
            action_result=result_data,
            error=result.error.value if result.error else None,
        )

    def _build_context(self, user_id: int, now: datetime) -> ResolverContext:
        """Nearest upcoming events plus every open to-do; empty on store failure."""
        try:
            events = self._store.events.list_upcoming(
                user_id, format_timestamp(now), self._context_event_limit,
            )
            todos = self._store.todos.list_all(user_id, show_completed=False)
        except Exception as exc:
            logger.warning("Context lookup failed for user %d: %s", user_id, exc)
            return ResolverContext()
        return ResolverContext(events=events, todos=todos)

    def _log_chat(
        self, user_id: int, role: str, content: str, action_data: dict | None = None,
    ) -> None:
        try:
            self._store.chats.save(user_id, role, content, action_data)
        except Exception as exc:
            logger.warning("Could not save %s chat message for user %d: %s", role, user_id, exc)
