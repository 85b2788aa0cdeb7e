"""
SWUNG Assistant: Action Store.

SQLite-backed persistence for users, events, to-dos, alarms, the chat log
and push tokens. One ``Database`` owns one connection for the lifetime of
the process (open at startup, close at shutdown); every statement goes
through its lock, so there is a single serialized write path.

Every row-scoped read or write is filtered by ``user_id``. A row owned by
someone else is reported exactly like a missing row (``None`` / ``False``).
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from swung.core.clock import Clock, format_timestamp, make_clock, parse_timestamp
from swung.core.errors import StoreError
from swung.data.models import (
    DEFAULT_PRIORITY,
    PRIORITIES,
    Alarm,
    ChatMessage,
    Event,
    PushToken,
    Todo,
    User,
)

logger = logging.getLogger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    telegram_user_id  INTEGER NOT NULL UNIQUE,
    display_name      TEXT    NOT NULL,
    created_at        TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL,
    title         TEXT    NOT NULL,
    description   TEXT,
    datetime      TEXT    NOT NULL,
    end_datetime  TEXT,
    location      TEXT,
    category      TEXT    NOT NULL DEFAULT 'general',
    color         TEXT    NOT NULL DEFAULT '#3b82f6',
    is_all_day    INTEGER NOT NULL DEFAULT 0,
    recurrence    TEXT,
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS alarms (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL,
    event_id      INTEGER,
    title         TEXT    NOT NULL,
    message       TEXT,
    trigger_at    TEXT    NOT NULL,
    repeat_type   TEXT    NOT NULL DEFAULT 'once',
    is_triggered  INTEGER NOT NULL DEFAULT 0,
    is_active     INTEGER NOT NULL DEFAULT 1,
    call_user     INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT    NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS todos (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL,
    title         TEXT    NOT NULL,
    description   TEXT,
    priority      TEXT    NOT NULL DEFAULT 'medium',
    due_date      TEXT,
    completed     INTEGER NOT NULL DEFAULT 0,
    completed_at  TEXT,
    category      TEXT,
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS chats (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL,
    role          TEXT    NOT NULL,
    content       TEXT    NOT NULL,
    action_type   TEXT,
    action_data   TEXT,
    created_at    TEXT    NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS push_tokens (
    user_id       INTEGER NOT NULL,
    token         TEXT    NOT NULL,
    platform      TEXT    NOT NULL DEFAULT 'web',
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    PRIMARY KEY (user_id, token),
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_events_user_datetime ON events(user_id, datetime);
CREATE INDEX IF NOT EXISTS idx_alarms_due ON alarms(is_active, is_triggered, trigger_at);
CREATE INDEX IF NOT EXISTS idx_todos_user_id ON todos(user_id);
CREATE INDEX IF NOT EXISTS idx_chats_user_id ON chats(user_id);
"""

# Rank used for "priority descending" ordering (text order would be wrong)
_PRIORITY_RANK_SQL = (
    "CASE priority "
    + " ".join(f"WHEN '{name}' THEN {rank}" for rank, name in enumerate(PRIORITIES, start=1))
    + " ELSE 0 END"
)


# ---------------------------------------------------------------------------
# Connection owner
# ---------------------------------------------------------------------------


class Database:
    """Owns the single SQLite connection and serializes access to it."""

    def __init__(
        self,
        db_path: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        if db_path is None or clock is None:
            from swung.config import settings
            db_path = db_path or settings.DATABASE_PATH
            clock = clock or make_clock(settings.TIMEZONE)

        self._db_path = db_path
        self._clock = clock
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> Database:
        """Open the connection and create the schema. Idempotent."""
        if self._conn is not None:
            return self
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(_SCHEMA)
        conn.commit()
        self._conn = conn
        logger.info("Database opened at %s", self._db_path)
        return self

    def close(self) -> None:
        """Flush and close the connection. Safe to call twice."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.commit()
            self._conn.close()
            self._conn = None
        logger.info("Database closed")

    def now(self) -> datetime:
        return self._clock()

    def now_str(self) -> str:
        return format_timestamp(self._clock())

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Database is not open")
        return self._conn

    @contextmanager
    def write(self) -> Iterator[sqlite3.Connection]:
        """Run statements in one transaction on the serialized write path."""
        with self._lock:
            conn = self._require()
            try:
                with conn:
                    yield conn
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    def fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            conn = self._require()
            try:
                return conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    def fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            conn = self._require()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc


def _build_update(fields: dict[str, Any], allowed: tuple[str, ...]) -> tuple[list[str], list[Any]]:
    """Turn a patch dict into SET clauses, keeping only allowed columns."""
    clauses: list[str] = []
    params: list[Any] = []
    for column in allowed:
        if column in fields:
            clauses.append(f"{column} = ?")
            params.append(fields[column])
    return clauses, params


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserDB:
    """Chat front-end users. ``users.id`` is the owner id of every other row."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            telegram_user_id=row["telegram_user_id"],
            display_name=row["display_name"],
            created_at=row["created_at"],
        )

    def get(self, user_id: int) -> User | None:
        row = self._db.fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    def get_by_telegram_id(self, telegram_user_id: int) -> User | None:
        row = self._db.fetchone(
            "SELECT * FROM users WHERE telegram_user_id = ?", (telegram_user_id,),
        )
        return self._row_to_user(row) if row else None

    def get_or_create(self, telegram_user_id: int, display_name: str) -> User:
        """Return the user for a Telegram id, registering it on first contact."""
        existing = self.get_by_telegram_id(telegram_user_id)
        if existing is not None:
            return existing

        now = self._db.now_str()
        with self._db.write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (telegram_user_id, display_name, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(telegram_user_id) DO NOTHING
                """,
                (telegram_user_id, display_name, now),
            )
            created = cursor.rowcount > 0
        user = self.get_by_telegram_id(telegram_user_id)
        if created:
            logger.info("User registered: #%d (telegram %d)", user.id, telegram_user_id)
        return user


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


_EVENT_COLUMNS = (
    "title", "datetime", "end_datetime", "description", "location",
    "category", "color", "is_all_day", "recurrence",
)


class EventDB:
    """Timed calendar entries."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            datetime=row["datetime"],
            end_datetime=row["end_datetime"],
            description=row["description"],
            location=row["location"],
            category=row["category"],
            color=row["color"],
            is_all_day=bool(row["is_all_day"]),
            recurrence=row["recurrence"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(
        self,
        user_id: int,
        title: str,
        datetime: str,
        end_datetime: str | None = None,
        description: str | None = None,
        location: str | None = None,
        category: str | None = None,
        color: str | None = None,
        is_all_day: bool = False,
        recurrence: str | None = None,
    ) -> Event:
        """Insert a new event and return it."""
        now = self._db.now_str()
        category = category or "general"
        color = color or "#3b82f6"
        with self._db.write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (user_id, title, datetime, end_datetime, description, location,
                     category, color, is_all_day, recurrence, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, title, datetime, end_datetime, description, location,
                    category, color, int(is_all_day), recurrence, now, now,
                ),
            )
            event_id = cursor.lastrowid

        logger.info("Event added: #%d '%s' at %s (user %d)", event_id, title, datetime, user_id)
        return Event(
            id=event_id,
            user_id=user_id,
            title=title,
            datetime=datetime,
            end_datetime=end_datetime,
            description=description,
            location=location,
            category=category,
            color=color,
            is_all_day=is_all_day,
            recurrence=recurrence,
            created_at=now,
            updated_at=now,
        )

    def get(self, user_id: int, event_id: int) -> Event | None:
        """Fetch one event owned by ``user_id``."""
        row = self._db.fetchone(
            "SELECT * FROM events WHERE id = ? AND user_id = ?", (event_id, user_id),
        )
        return self._row_to_event(row) if row else None

    def list_all(self, user_id: int) -> list[Event]:
        rows = self._db.fetchall(
            "SELECT * FROM events WHERE user_id = ? ORDER BY datetime ASC, id ASC",
            (user_id,),
        )
        return [self._row_to_event(r) for r in rows]

    def list_between(
        self, user_id: int, start: str | None = None, end: str | None = None,
    ) -> list[Event]:
        """Events with ``start <= datetime < end`` (either bound optional)."""
        query = "SELECT * FROM events WHERE user_id = ?"
        params: list = [user_id]
        if start is not None:
            query += " AND datetime >= ?"
            params.append(start)
        if end is not None:
            query += " AND datetime < ?"
            params.append(end)
        query += " ORDER BY datetime ASC, id ASC"
        rows = self._db.fetchall(query, params)
        return [self._row_to_event(r) for r in rows]

    def list_upcoming(self, user_id: int, since: str, limit: int) -> list[Event]:
        """The ``limit`` nearest events at or after ``since``."""
        rows = self._db.fetchall(
            """
            SELECT * FROM events
            WHERE user_id = ? AND datetime >= ?
            ORDER BY datetime ASC, id ASC
            LIMIT ?
            """,
            (user_id, since, limit),
        )
        return [self._row_to_event(r) for r in rows]

    def update(self, user_id: int, event_id: int, **fields: Any) -> Event | None:
        """Patch an event. Returns the updated row, or None if not owned/absent.

        When ``datetime`` changes, still-pending linked alarms move by the
        same delta so a reminder stays the same distance before its event.
        """
        existing = self.get(user_id, event_id)
        if existing is None:
            return None

        if "is_all_day" in fields:
            fields["is_all_day"] = int(bool(fields["is_all_day"]))
        clauses, params = _build_update(fields, _EVENT_COLUMNS)
        if not clauses:
            return existing

        now = self._db.now_str()
        clauses.append("updated_at = ?")
        params.append(now)
        params.extend([event_id, user_id])

        new_start = fields.get("datetime")
        with self._db.write() as conn:
            conn.execute(
                f"UPDATE events SET {', '.join(clauses)} WHERE id = ? AND user_id = ?",
                params,
            )
            if new_start and new_start != existing.datetime:
                self._shift_pending_alarms(conn, user_id, event_id, existing.datetime, new_start)

        logger.info("Event #%d updated (user %d): %s", event_id, user_id, sorted(fields))
        return self.get(user_id, event_id)

    @staticmethod
    def _shift_pending_alarms(
        conn: sqlite3.Connection, user_id: int, event_id: int, old_start: str, new_start: str,
    ) -> None:
        delta = parse_timestamp(new_start) - parse_timestamp(old_start)
        rows = conn.execute(
            """
            SELECT id, trigger_at FROM alarms
            WHERE event_id = ? AND user_id = ? AND is_active = 1 AND is_triggered = 0
            """,
            (event_id, user_id),
        ).fetchall()
        for row in rows:
            moved = format_timestamp(parse_timestamp(row["trigger_at"]) + delta)
            conn.execute("UPDATE alarms SET trigger_at = ? WHERE id = ?", (moved, row["id"]))
            logger.info("Alarm #%d moved to %s with its event #%d", row["id"], moved, event_id)

    def delete(self, user_id: int, event_id: int) -> Event | None:
        """Delete an event (linked alarms cascade). Returns the deleted row."""
        existing = self.get(user_id, event_id)
        if existing is None:
            return None
        with self._db.write() as conn:
            conn.execute(
                "DELETE FROM events WHERE id = ? AND user_id = ?", (event_id, user_id),
            )
        logger.info("Event #%d '%s' deleted (user %d)", event_id, existing.title, user_id)
        return existing


# ---------------------------------------------------------------------------
# To-dos
# ---------------------------------------------------------------------------


_TODO_COLUMNS = ("title", "description", "priority", "due_date", "category")


class TodoDB:
    """Checklist items."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_todo(row: sqlite3.Row) -> Todo:
        return Todo(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            priority=row["priority"],
            due_date=row["due_date"],
            completed=bool(row["completed"]),
            completed_at=row["completed_at"],
            category=row["category"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(
        self,
        user_id: int,
        title: str,
        description: str | None = None,
        priority: str | None = None,
        due_date: str | None = None,
        category: str | None = None,
    ) -> Todo:
        now = self._db.now_str()
        priority = priority or DEFAULT_PRIORITY
        with self._db.write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO todos
                    (user_id, title, description, priority, due_date, completed,
                     completed_at, category, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, NULL, ?, ?, ?)
                """,
                (user_id, title, description, priority, due_date, category, now, now),
            )
            todo_id = cursor.lastrowid

        logger.info("To-do added: #%d '%s' [%s] (user %d)", todo_id, title, priority, user_id)
        return Todo(
            id=todo_id,
            user_id=user_id,
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            category=category,
            created_at=now,
            updated_at=now,
        )

    def get(self, user_id: int, todo_id: int) -> Todo | None:
        row = self._db.fetchone(
            "SELECT * FROM todos WHERE id = ? AND user_id = ?", (todo_id, user_id),
        )
        return self._row_to_todo(row) if row else None

    def list_all(self, user_id: int, show_completed: bool = False) -> list[Todo]:
        """List to-dos: priority descending, then due date ascending (undated last)."""
        query = "SELECT * FROM todos WHERE user_id = ?"
        if not show_completed:
            query += " AND completed = 0"
        query += (
            f" ORDER BY {_PRIORITY_RANK_SQL} DESC,"
            " due_date IS NULL, due_date ASC, id DESC"
        )
        rows = self._db.fetchall(query, (user_id,))
        return [self._row_to_todo(r) for r in rows]

    def toggle_complete(self, user_id: int, todo_id: int) -> Todo | None:
        """Flip the completed flag. Applying it twice restores the original state."""
        existing = self.get(user_id, todo_id)
        if existing is None:
            return None

        now = self._db.now_str()
        with self._db.write() as conn:
            if existing.completed:
                conn.execute(
                    """
                    UPDATE todos SET completed = 0, completed_at = NULL, updated_at = ?
                    WHERE id = ? AND user_id = ?
                    """,
                    (now, todo_id, user_id),
                )
            else:
                conn.execute(
                    """
                    UPDATE todos SET completed = 1, completed_at = ?, updated_at = ?
                    WHERE id = ? AND user_id = ?
                    """,
                    (now, now, todo_id, user_id),
                )

        logger.info(
            "To-do #%d toggled %s -> %s (user %d)",
            todo_id, existing.completed, not existing.completed, user_id,
        )
        return self.get(user_id, todo_id)

    def update(self, user_id: int, todo_id: int, **fields: Any) -> Todo | None:
        existing = self.get(user_id, todo_id)
        if existing is None:
            return None

        clauses, params = _build_update(fields, _TODO_COLUMNS)
        if not clauses:
            return existing

        clauses.append("updated_at = ?")
        params.append(self._db.now_str())
        params.extend([todo_id, user_id])
        with self._db.write() as conn:
            conn.execute(
                f"UPDATE todos SET {', '.join(clauses)} WHERE id = ? AND user_id = ?",
                params,
            )
        logger.info("To-do #%d updated (user %d): %s", todo_id, user_id, sorted(fields))
        return self.get(user_id, todo_id)

    def delete(self, user_id: int, todo_id: int) -> Todo | None:
        existing = self.get(user_id, todo_id)
        if existing is None:
            return None
        with self._db.write() as conn:
            conn.execute("DELETE FROM todos WHERE id = ? AND user_id = ?", (todo_id, user_id))
        logger.info("To-do #%d '%s' deleted (user %d)", todo_id, existing.title, user_id)
        return existing


# ---------------------------------------------------------------------------
# Alarms
# ---------------------------------------------------------------------------


class AlarmDB:
    """One-shot reminders. Fired alarms are terminal and never re-selected."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_alarm(row: sqlite3.Row) -> Alarm:
        return Alarm(
            id=row["id"],
            user_id=row["user_id"],
            event_id=row["event_id"],
            title=row["title"],
            message=row["message"],
            trigger_at=row["trigger_at"],
            repeat_type=row["repeat_type"],
            is_triggered=bool(row["is_triggered"]),
            is_active=bool(row["is_active"]),
            call_user=bool(row["call_user"]),
            created_at=row["created_at"],
        )

    def create(
        self,
        user_id: int,
        title: str,
        trigger_at: str,
        message: str | None = None,
        event_id: int | None = None,
        call_user: bool = False,
        repeat_type: str = "once",
    ) -> Alarm:
        now = self._db.now_str()
        with self._db.write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO alarms
                    (user_id, event_id, title, message, trigger_at, repeat_type,
                     is_triggered, is_active, call_user, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, 1, ?, ?)
                """,
                (user_id, event_id, title, message, trigger_at, repeat_type, int(call_user), now),
            )
            alarm_id = cursor.lastrowid

        logger.info("Alarm added: #%d '%s' at %s (user %d)", alarm_id, title, trigger_at, user_id)
        return Alarm(
            id=alarm_id,
            user_id=user_id,
            event_id=event_id,
            title=title,
            message=message,
            trigger_at=trigger_at,
            repeat_type=repeat_type,
            call_user=call_user,
            created_at=now,
        )

    def get(self, user_id: int, alarm_id: int) -> Alarm | None:
        row = self._db.fetchone(
            "SELECT * FROM alarms WHERE id = ? AND user_id = ?", (alarm_id, user_id),
        )
        return self._row_to_alarm(row) if row else None

    def list_active(self, user_id: int) -> list[Alarm]:
        rows = self._db.fetchall(
            """
            SELECT * FROM alarms WHERE user_id = ? AND is_active = 1
            ORDER BY trigger_at ASC, id ASC
            """,
            (user_id,),
        )
        return [self._row_to_alarm(r) for r in rows]

    def list_for_event(self, user_id: int, event_id: int) -> list[Alarm]:
        rows = self._db.fetchall(
            "SELECT * FROM alarms WHERE user_id = ? AND event_id = ? ORDER BY id",
            (user_id, event_id),
        )
        return [self._row_to_alarm(r) for r in rows]

    def get_due(self, now: str) -> list[Alarm]:
        """All pending alarms with ``trigger_at <= now``, earliest first (every user).

        ``now`` must be a naive local timestamp in the same format as the
        stored values.
        """
        rows = self._db.fetchall(
            """
            SELECT * FROM alarms
            WHERE is_active = 1 AND is_triggered = 0 AND trigger_at <= ?
            ORDER BY trigger_at ASC, id ASC
            """,
            (now,),
        )
        return [self._row_to_alarm(r) for r in rows]

    def mark_fired(self, alarm_id: int) -> bool:
        """Move a pending alarm to the fired state. False if it was not pending."""
        with self._db.write() as conn:
            cursor = conn.execute(
                """
                UPDATE alarms SET is_triggered = 1, is_active = 0
                WHERE id = ? AND is_triggered = 0
                """,
                (alarm_id,),
            )
        fired = cursor.rowcount > 0
        if fired:
            logger.info("Alarm #%d marked fired", alarm_id)
        return fired

    def delete(self, user_id: int, alarm_id: int) -> Alarm | None:
        existing = self.get(user_id, alarm_id)
        if existing is None:
            return None
        with self._db.write() as conn:
            conn.execute("DELETE FROM alarms WHERE id = ? AND user_id = ?", (alarm_id, user_id))
        logger.info("Alarm #%d deleted (user %d)", alarm_id, user_id)
        return existing


# ---------------------------------------------------------------------------
# Chat log
# ---------------------------------------------------------------------------


class ChatDB:
    """Append-only chat history; only bulk clearing removes rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> ChatMessage:
        raw = row["action_data"]
        try:
            action_data = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            logger.warning("Chat #%d has unreadable action data", row["id"])
            action_data = None
        return ChatMessage(
            id=row["id"],
            user_id=row["user_id"],
            role=row["role"],
            content=row["content"],
            action_type=row["action_type"],
            action_data=action_data,
            created_at=row["created_at"],
        )

    def save(
        self,
        user_id: int,
        role: str,
        content: str,
        action_data: dict | None = None,
    ) -> ChatMessage:
        """Append one message. ``action_data["type"]`` becomes the action type."""
        now = self._db.now_str()
        action_type = action_data.get("type") if action_data else None
        encoded = json.dumps(action_data, default=str) if action_data else None
        with self._db.write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO chats (user_id, role, content, action_type, action_data, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, role, content, action_type, encoded, now),
            )
            message_id = cursor.lastrowid
        return ChatMessage(
            id=message_id,
            user_id=user_id,
            role=role,
            content=content,
            action_type=action_type,
            action_data=action_data,
            created_at=now,
        )

    def history(self, user_id: int, limit: int = 50, offset: int = 0) -> list[ChatMessage]:
        """Latest ``limit`` messages (skipping ``offset``), returned oldest first."""
        rows = self._db.fetchall(
            """
            SELECT * FROM (
                SELECT * FROM chats WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
            ) ORDER BY created_at ASC, id ASC
            """,
            (user_id, limit, offset),
        )
        return [self._row_to_message(r) for r in rows]

    def clear(self, user_id: int) -> int:
        with self._db.write() as conn:
            cursor = conn.execute("DELETE FROM chats WHERE user_id = ?", (user_id,))
        logger.info("Chat history cleared for user %d (%d messages)", user_id, cursor.rowcount)
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Push tokens
# ---------------------------------------------------------------------------


class PushTokenDB:
    """Registry of push tokens, unique per (user, token)."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_token(row: sqlite3.Row) -> PushToken:
        return PushToken(
            user_id=row["user_id"],
            token=row["token"],
            platform=row["platform"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def register(self, user_id: int, token: str, platform: str = "web") -> PushToken:
        """Upsert a token; re-registering refreshes ``updated_at`` and platform."""
        now = self._db.now_str()
        with self._db.write() as conn:
            conn.execute(
                """
                INSERT INTO push_tokens (user_id, token, platform, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, token) DO UPDATE SET
                    platform = excluded.platform,
                    updated_at = excluded.updated_at
                """,
                (user_id, token, platform, now, now),
            )
        logger.info("Push token registered for user %d (%s)", user_id, platform)
        row = self._db.fetchone(
            "SELECT * FROM push_tokens WHERE user_id = ? AND token = ?", (user_id, token),
        )
        return self._row_to_token(row)

    def list_for_user(self, user_id: int) -> list[PushToken]:
        rows = self._db.fetchall(
            "SELECT * FROM push_tokens WHERE user_id = ? ORDER BY created_at", (user_id,),
        )
        return [self._row_to_token(r) for r in rows]

    def remove(self, user_id: int, tokens: list[str]) -> int:
        """Delete the given tokens for a user. Returns the number removed."""
        if not tokens:
            return 0
        removed = 0
        with self._db.write() as conn:
            for token in tokens:
                cursor = conn.execute(
                    "DELETE FROM push_tokens WHERE user_id = ? AND token = ?", (user_id, token),
                )
                removed += cursor.rowcount
        logger.info("Pruned %d push token(s) for user %d", removed, user_id)
        return removed


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class ActionStore:
    """Typed CRUD over every entity kind, sharing one ``Database``."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.users = UserDB(db)
        self.events = EventDB(db)
        self.todos = TodoDB(db)
        self.alarms = AlarmDB(db)
        self.chats = ChatDB(db)
        self.push_tokens = PushTokenDB(db)

    @classmethod
    def open(cls, db_path: str | None = None, clock: Clock | None = None) -> ActionStore:
        return cls(Database(db_path, clock).open())

    def close(self) -> None:
        self.db.close()
