"""
SWUNG Assistant: Notification Fan-out.

Best-effort delivery of a fired alarm (or an event) to every configured
channel: the live channel first, then push to each registered token of
the owning user. Tokens the push provider rejects as invalid are pruned.

``notify`` never raises; each channel failure is logged and the next
channel still runs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from swung.data.models import Alarm, Event

if TYPE_CHECKING:
    from swung.data.db import PushTokenDB
    from swung.ports.notification_port import LiveChannel, PushChannel

logger = logging.getLogger(__name__)


def alarm_payload(item: Alarm | Event) -> dict[str, Any]:
    """The ``alarm`` payload sent to live clients: {id, title, message, callUser}."""
    if isinstance(item, Alarm):
        return {
            "id": item.id,
            "title": item.title,
            "message": item.message or item.title,
            "callUser": item.call_user,
        }
    return {
        "id": item.id,
        "title": item.title,
        "message": item.description or f"{item.title} is starting now",
        "callUser": False,
    }


class NotificationFanout:
    """Delivers to a live channel and an optional push channel."""

    def __init__(
        self,
        push_tokens: PushTokenDB,
        live: LiveChannel | None = None,
        push: PushChannel | None = None,
    ) -> None:
        self._push_tokens = push_tokens
        self._live = live
        self._push = push

    async def notify(self, item: Alarm | Event) -> None:
        payload = alarm_payload(item)
        await self._send_live(item.user_id, payload)
        await self._send_push(item.user_id, payload)

    async def _send_live(self, user_id: int, payload: dict[str, Any]) -> None:
        if self._live is None:
            return
        try:
            await self._live.broadcast_alarm(user_id, payload)
            logger.info("Alarm #%s delivered live to user %d", payload["id"], user_id)
        except Exception as exc:
            logger.error("Live delivery of alarm #%s failed: %s", payload["id"], exc)

    async def _send_push(self, user_id: int, payload: dict[str, Any]) -> None:
        try:
            tokens = [t.token for t in self._push_tokens.list_for_user(user_id)]
        except Exception as exc:
            logger.error("Push token lookup failed for user %d: %s", user_id, exc)
            return

        if not tokens:
            logger.info("No push tokens for user %d; push skipped", user_id)
            return
        if self._push is None:
            logger.info("Push not configured; %d token(s) for user %d skipped", len(tokens), user_id)
            return

        try:
            result = await self._push.send(
                tokens,
                title=payload["title"],
                body=payload["message"],
                data={"alarmId": str(payload["id"]), "callUser": str(payload["callUser"]).lower()},
            )
        except Exception as exc:
            logger.error("Push for alarm #%s failed: %s", payload["id"], exc)
            return

        logger.info(
            "Push for alarm #%s: %d sent, %d failed",
            payload["id"], result.success_count, result.failure_count,
        )
        if result.invalid_tokens:
            try:
                self._push_tokens.remove(user_id, result.invalid_tokens)
            except Exception as exc:
                logger.error("Could not prune invalid tokens for user %d: %s", user_id, exc)
