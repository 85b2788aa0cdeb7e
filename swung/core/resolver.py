"""
SWUNG Assistant: Intent Resolver.

Turns one user utterance into either a plain reply or exactly one
structured action request, using an LLM with the tool catalog attached.

The model never sees its own notion of "now": the caller passes the
current wall-clock time in the fixed zone and relative phrases
("in 10 minutes") are resolved against it. Every failure comes back as a
``ResolveError`` outcome; nothing raises past ``resolve()``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union
from zoneinfo import ZoneInfo

from swung.core.clock import format_timestamp, local_now
from swung.core.credentials import CredentialProvider
from swung.core.errors import ErrorCode, LLMError
from swung.core.llm import ChatClient
from swung.core.tool_catalog import CATALOG_VERSION, ActionType, lookup, tool_definitions
from swung.data.models import Event, Todo

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED_MESSAGE = "Please sign in with GitHub first."
AI_ERROR_MESSAGE = "Sorry, I had trouble understanding that. Could you try again?"


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class ResolverContext:
    """Bounded state the model may refer to by id."""

    events: list[Event] = field(default_factory=list)
    todos: list[Todo] = field(default_factory=list)


@dataclass
class PlainMessage:
    message: str


@dataclass
class ActionRequest:
    name: str                  # raw tool name; the executor rejects unknown names
    args: dict[str, Any]
    message: str
    tool_call_id: str = ""

    @property
    def action(self) -> ActionType | None:
        return lookup(self.name)


@dataclass
class ResolveError:
    code: ErrorCode
    message: str


ResolveOutcome = Union[PlainMessage, ActionRequest, ResolveError]


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are SWUNG, a helpful voice scheduling assistant. You help users manage their events, to-dos, reminders and alarms.

Current date/time: {now}
Timezone: {zone} (UTC{offset})

TERMINOLOGY RULES:
- "Events": scheduled items with a specific date/time (e.g. "Meeting tomorrow", "Exam on Monday"). They go on the calendar.
- "To-Dos": checklist items, things to be done (e.g. "Buy milk", "Clean room"). They go on the to-do list. NEVER call them "tasks".
- "Alarms": timed reminders.

When users say "Add to todo" or "I need to do X", create a TO-DO.
When users say "Schedule X" or "X at 5pm", create an EVENT.
When users say "Remind me to X in N minutes", create an ALARM.

Call at most ONE tool per reply. Always confirm actions back to the user in a natural, conversational way.

DATE/TIME RULES:
- The current date/time above is in {zone}.
- "Future" means any time after the current moment; even 1 minute from now is valid.
- For relative times ("in 5 minutes", "in 2 hours"), CALCULATE the exact datetime by adding to the current date/time above.
- "Today" means the current date. "Tomorrow" means the current date + 1 day.
- If no date is given, use TOMORROW.
- If no time is given, use 09:00 for morning, 14:00 for afternoon, 19:00 for evening, and 10:00 otherwise.
- Always use ISO 8601 without a timezone suffix: YYYY-MM-DDTHH:mm:ss (e.g. {example}).

Be concise and friendly."""


def _zone_label(tz_name: str, now: datetime) -> tuple[str, str]:
    offset = now.replace(tzinfo=ZoneInfo(tz_name)).strftime("%z")
    return tz_name, f"{offset[:3]}:{offset[3:]}" if offset else "+00:00"


def build_messages(
    text: str,
    context: ResolverContext,
    now: datetime,
    tz_name: str,
) -> list[dict[str, Any]]:
    """System instructions, bounded context and the user turn."""
    zone, offset = _zone_label(tz_name, now)
    system = _SYSTEM_PROMPT.format(
        now=now.strftime("%A, %Y-%m-%dT%H:%M:%S"),
        zone=zone,
        offset=offset,
        example=format_timestamp(now.replace(minute=30, second=0)),
    )
    messages: list[dict[str, Any]] = [{"role": "system", "content": system}]

    if context.events:
        lines = "\n".join(f'- ID:{e.id} "{e.title}" at {e.datetime}' for e in context.events)
        messages.append({"role": "system", "content": f"Current upcoming events:\n{lines}"})

    if context.todos:
        lines = "\n".join(
            f'- ID:{t.id} "{t.title}" (Priority: {t.priority or "medium"})' for t in context.todos
        )
        messages.append({"role": "system", "content": f"Current open to-dos:\n{lines}"})

    messages.append({"role": "user", "content": text})
    return messages


# ---------------------------------------------------------------------------
# Fallback confirmations
# ---------------------------------------------------------------------------

_TEMPLATES: dict[ActionType, str] = {
    ActionType.CREATE_EVENT: 'Got it! I\'ll create an event "{title}" for you.',
    ActionType.CREATE_ALARM: 'Setting a reminder "{title}" for you.',
    ActionType.CREATE_TODO: 'Added "{title}" to your To-Do list.',
    ActionType.READ_EVENTS: "Let me check your schedule{for_title}.",
    ActionType.LIST_TODOS: "Here are your to-dos.",
    ActionType.DELETE_EVENT: "I'll delete that event for you.",
    ActionType.UPDATE_EVENT: "I'll update that event for you.",
    ActionType.UPDATE_TODO: 'Updated to-do "{title}" for you.',
    ActionType.COMPLETE_TODO: "I'll update that to-do for you.",
}


def confirmation_for(name: str, args: dict[str, Any]) -> str:
    """Human-readable acknowledgment when the model gave no text."""
    title = str(args.get("title") or args.get("query") or "")
    action = lookup(name)
    template = _TEMPLATES.get(action) if action else None
    if template is None:
        return f"I'll {name.replace('_', ' ')} for you."
    return template.format(title=title, for_title=f" for {title}" if title else "")


def parse_arguments(raw: str | None) -> dict[str, Any]:
    """Decode a tool call's JSON arguments; anything unusable becomes ``{}``."""
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Malformed tool arguments (%s): %r", exc, raw[:200])
        return {}
    if not isinstance(data, dict):
        logger.warning("Tool arguments are not an object: %r", raw[:200])
        return {}
    return data


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class IntentResolver:
    """Owns the credential provider and chat client for one process."""

    def __init__(
        self,
        credentials: CredentialProvider,
        client: ChatClient | None = None,
        tz_name: str | None = None,
    ) -> None:
        if tz_name is None:
            from swung.config import settings
            tz_name = settings.TIMEZONE
        self.credentials = credentials
        self.client = client or ChatClient()
        self.tz_name = tz_name
        self._tools = tool_definitions()
        logger.info("Tool catalog v%s: %d tools", CATALOG_VERSION, len(self._tools))

    async def resolve(
        self,
        text: str,
        context: ResolverContext | None = None,
        now: datetime | None = None,
    ) -> ResolveOutcome:
        now = now or local_now(self.tz_name)
        context = context or ResolverContext()

        try:
            credential = await self.credentials.get()
        except Exception as exc:
            logger.error("Credential lookup failed: %s", exc)
            credential = None
        if credential is None:
            return ResolveError(ErrorCode.NOT_AUTHENTICATED, NOT_AUTHENTICATED_MESSAGE)

        messages = build_messages(text, context, now, self.tz_name)
        try:
            reply = await self.client.complete(credential, messages, self._tools)
        except LLMError as exc:
            logger.error("Model call failed for %r: %s", text[:80], exc)
            return ResolveError(ErrorCode.AI_ERROR, AI_ERROR_MESSAGE)
        except Exception as exc:
            logger.error("Unexpected error resolving %r: %s", text[:80], exc)
            return ResolveError(ErrorCode.AI_ERROR, AI_ERROR_MESSAGE)

        if reply.tool_calls:
            if len(reply.tool_calls) > 1:
                logger.warning(
                    "Model returned %d tool calls; using the first (%s)",
                    len(reply.tool_calls), reply.tool_calls[0].name,
                )
            call = reply.tool_calls[0]
            args = parse_arguments(call.arguments)
            if lookup(call.name) is None:
                logger.warning("Model requested unknown tool '%s'", call.name)
            message = reply.content or confirmation_for(call.name, args)
            logger.info("Resolved %r → %s", text[:80], call.name)
            return ActionRequest(name=call.name, args=args, message=message, tool_call_id=call.id)

        if not reply.content:
            logger.warning("Model returned neither text nor a tool call for %r", text[:80])
            return ResolveError(ErrorCode.AI_ERROR, AI_ERROR_MESSAGE)

        return PlainMessage(reply.content)
