"""Fixed-zone clock: one timestamp convention for the whole system.

Every stored timestamp is a naive local time in the organizational
timezone, rendered as ``YYYY-MM-DDTHH:MM:SS``. "Now" is produced the same
way, so lexical comparison in SQL and datetime comparison in Python agree.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

Clock = Callable[[], datetime]


def _zone(tz_name: str | None) -> ZoneInfo:
    if tz_name is None:
        from swung.config import settings
        tz_name = settings.TIMEZONE
    return ZoneInfo(tz_name)


def local_now(tz_name: str | None = None) -> datetime:
    """Current wall-clock time in the fixed zone, naive, second precision."""
    return datetime.now(_zone(tz_name)).replace(tzinfo=None, microsecond=0)


def make_clock(tz_name: str) -> Clock:
    """Return a zero-argument clock bound to ``tz_name``."""
    zone = ZoneInfo(tz_name)

    def _now() -> datetime:
        return datetime.now(zone).replace(tzinfo=None, microsecond=0)

    return _now


def to_local(dt: datetime, tz_name: str | None = None) -> datetime:
    """Normalize a datetime to a naive local time in the fixed zone.

    Aware values are converted; naive values are assumed to be local already.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(_zone(tz_name)).replace(tzinfo=None)
    return dt.replace(microsecond=0)


def parse_timestamp(raw: str, tz_name: str | None = None) -> datetime:
    """Parse a lenient ISO-ish string into a naive local datetime.

    Accepts ``YYYY-MM-DDTHH:MM[:SS]``, a space separator, a trailing ``Z``
    or UTC offset, and a bare date (midnight).

    Raises ValueError on malformed input.
    """
    text = (raw or "").strip()
    if not text:
        raise ValueError("empty timestamp")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    return to_local(dt, tz_name)


def parse_date(raw: str) -> date:
    """Parse a date or timestamp string and keep only the date part."""
    text = (raw or "").strip()
    if not text:
        raise ValueError("empty date")
    if len(text) > 10:
        return parse_timestamp(text).date()
    return date.fromisoformat(text)


def format_timestamp(dt: datetime) -> str:
    return dt.strftime(TIMESTAMP_FORMAT)


def format_date(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def describe(dt: datetime | str) -> str:
    """Human-readable rendering for confirmation messages.

    >>> describe("2026-02-03T14:10:00")
    'Tue, 03 Feb 2026 at 14:10'
    """
    if isinstance(dt, str):
        dt = datetime.strptime(dt, TIMESTAMP_FORMAT)
    return dt.strftime("%a, %d %b %Y at %H:%M")
