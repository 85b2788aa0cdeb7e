"""Telegram live channel adapter: implements LiveChannel.

Wraps a telegram.Bot instance. The owner's chat is found through the
users table, so an alarm reaches only the user it belongs to.
"""

from __future__ import annotations

import logging
from typing import Any

from telegram import Bot

from swung.data.db import UserDB

logger = logging.getLogger(__name__)


def format_alarm(payload: dict[str, Any]) -> str:
    text = f"⏰ {payload.get('title') or 'Reminder'}"
    if payload.get("message"):
        text += f"\n{payload['message']}"
    if payload.get("callUser"):
        text += "\n📞 You asked me to call you for this one."
    return text


class TelegramNotifier:
    """Telegram implementation of LiveChannel."""

    def __init__(self, bot: Bot, users: UserDB) -> None:
        self._bot = bot
        self._users = users

    async def send_message(self, chat_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=chat_id, text=text)

    async def broadcast_alarm(self, user_id: int, payload: dict[str, Any]) -> None:
        user = self._users.get(user_id)
        if user is None:
            logger.warning("Alarm #%s has no Telegram chat (user %d unknown)", payload.get("id"), user_id)
            return
        await self.send_message(user.telegram_user_id, format_alarm(payload))
