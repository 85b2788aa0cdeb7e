"""
SWUNG Assistant: Alarm Scheduler.

A periodic tick that finds due alarms, hands each to the fan-out and
marks it fired. Ticks never overlap: the bot's job queue runs at most one
instance and ``tick`` itself holds a lock for the whole batch.

Firing is at most once. An alarm is marked fired even when its delivery
fails, and a fired alarm is never selected again.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from swung.core.clock import format_timestamp

if TYPE_CHECKING:
    from telegram.ext import ContextTypes

    from swung.core.fanout import NotificationFanout
    from swung.data.db import AlarmDB, Database

logger = logging.getLogger(__name__)


class AlarmScheduler:
    """Polls the alarm table on the store's fixed-zone clock."""

    def __init__(self, db: Database, alarms: AlarmDB, fanout: NotificationFanout) -> None:
        self._db = db
        self._alarms = alarms
        self._fanout = fanout
        self._lock = asyncio.Lock()

    async def tick(self, now: datetime | None = None) -> int:
        """Fire every due alarm, earliest first. Returns how many were fired."""
        if self._lock.locked():
            logger.warning("Previous alarm tick still running; skipping")
            return 0

        async with self._lock:
            now_str = format_timestamp(now or self._db.now())
            try:
                due = self._alarms.get_due(now_str)
            except Exception as exc:
                logger.error("Alarm scan failed: %s", exc)
                return 0

            fired = 0
            for alarm in due:
                logger.info("Alarm #%d '%s' due at %s (user %d)", alarm.id, alarm.title, alarm.trigger_at, alarm.user_id)
                try:
                    await self._fanout.notify(alarm)
                except Exception as exc:
                    logger.error("Fan-out for alarm #%d failed: %s", alarm.id, exc)
                try:
                    if self._alarms.mark_fired(alarm.id):
                        fired += 1
                except Exception as exc:
                    logger.error("Could not mark alarm #%d fired: %s", alarm.id, exc)
            return fired

    async def run_job(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Job-queue callback."""
        await self.tick()
