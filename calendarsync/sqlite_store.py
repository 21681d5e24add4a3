"""SQLite-backed event store."""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from .event_store import apply_event_data
from .exceptions import EventStoreError
from .models import CalendarEvent, EventData, EventStatus
from .timezone_utils import ensure_utc

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = (
    "id",
    "calendar_id",
    "external_id",
    "title",
    "description",
    "location",
    "start_time",
    "end_time",
    "is_all_day",
    "status",
    "recurrence_rule",
    "recurring_event_id",
    "original_start_time",
    "created_at",
    "updated_at",
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS calendars (
        id TEXT PRIMARY KEY,
        last_sync_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        calendar_id TEXT NOT NULL REFERENCES calendars(id) ON DELETE CASCADE,
        external_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        location TEXT,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        is_all_day INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'confirmed',
        recurrence_rule TEXT,
        recurring_event_id TEXT,
        original_start_time TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (calendar_id, external_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_calendar ON events(calendar_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_time ON events(start_time, end_time)",
)


def _to_db_time(dt: Optional[datetime]) -> Optional[str]:
    return ensure_utc(dt).isoformat() if dt is not None else None


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteEventStore:
    """EventStore persisted in a SQLite database file."""

    def __init__(self, database_path: Union[Path, str]):
        """Initialize the store.

        Args:
            database_path: Path to the SQLite database file; parent
                directories are created on first use
        """
        self.database_path = Path(database_path)
        self._initialized = False
        self._initialization_lock: Optional[asyncio.Lock] = None

        logger.debug("SQLite event store configured (lazy): %s", self.database_path)

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        if self._initialization_lock is None:
            self._initialization_lock = asyncio.Lock()

        async with self._initialization_lock:
            # Double-check after acquiring lock
            if self._initialized:
                return
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                async with aiosqlite.connect(str(self.database_path)) as db:
                    # WAL keeps readers unblocked while a sync writes
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.execute("PRAGMA synchronous=NORMAL")
                    for statement in _SCHEMA:
                        await db.execute(statement)
                    await db.commit()
            except aiosqlite.Error as e:
                raise EventStoreError(f"Failed to initialize database {self.database_path}: {e}") from e
            self._initialized = True
            logger.info("Event database initialized at %s", self.database_path)

    async def _connect(self) -> aiosqlite.Connection:
        await self._ensure_initialized()
        db = await aiosqlite.connect(str(self.database_path))
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
        return db

    async def list_by_calendar(self, calendar_id: str) -> list[CalendarEvent]:
        db = await self._connect()
        try:
            async with db.execute(
                f"SELECT {', '.join(_EVENT_COLUMNS)} FROM events WHERE calendar_id = ? "
                "ORDER BY start_time",
                (calendar_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise EventStoreError(f"Failed to list events for calendar {calendar_id}: {e}") from e
        finally:
            await db.close()
        return [self._row_to_event(row) for row in rows]

    async def upsert_by_external_id(self, calendar_id: str, data: EventData) -> CalendarEvent:
        db = await self._connect()
        try:
            event = await self._write_event_data(db, calendar_id, data)
            await db.commit()
        except aiosqlite.Error as e:
            raise EventStoreError(
                f"Failed to upsert event {data.external_id} in calendar {calendar_id}: {e}"
            ) from e
        finally:
            await db.close()
        return event

    async def apply_snapshot(
        self,
        calendar_id: str,
        upserts: Sequence[EventData],
        keep_external_ids: Iterable[str],
        synced_at: datetime,
    ) -> int:
        keep = set(keep_external_ids)
        db = await self._connect()
        try:
            for data in upserts:
                await self._write_event_data(db, calendar_id, data)
            stale = await self._stale_event_ids(db, calendar_id, keep)
            if stale:
                await db.executemany("DELETE FROM events WHERE id = ?", stale)
            await self._write_sync_time(db, calendar_id, synced_at)
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise EventStoreError(f"Failed to apply snapshot for calendar {calendar_id}: {e}") from e
        finally:
            await db.close()

        logger.debug(
            "Applied snapshot to calendar %s: %d written, %d deleted",
            calendar_id,
            len(upserts),
            len(stale),
        )
        return len(stale)

    async def insert_event(self, event: CalendarEvent) -> None:
        """Insert a fully-formed event (override instances from other providers, fixtures)."""
        db = await self._connect()
        try:
            await db.execute("INSERT OR IGNORE INTO calendars (id) VALUES (?)", (event.calendar_id,))
            placeholders = ", ".join("?" for _ in _EVENT_COLUMNS)
            await db.execute(
                f"INSERT INTO events ({', '.join(_EVENT_COLUMNS)}) VALUES ({placeholders})",
                self._event_to_row(event),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise EventStoreError(f"Failed to insert event {event.external_id}: {e}") from e
        finally:
            await db.close()

    async def delete_missing(self, calendar_id: str, keep_external_ids: Iterable[str]) -> int:
        keep = set(keep_external_ids)
        db = await self._connect()
        try:
            stale = await self._stale_event_ids(db, calendar_id, keep)
            if stale:
                await db.executemany("DELETE FROM events WHERE id = ?", stale)
                await db.commit()
        except aiosqlite.Error as e:
            raise EventStoreError(f"Failed to delete stale events for {calendar_id}: {e}") from e
        finally:
            await db.close()

        if stale:
            logger.debug("Deleted %d stale events from calendar %s", len(stale), calendar_id)
        return len(stale)

    async def mark_synced(self, calendar_id: str, synced_at: datetime) -> None:
        db = await self._connect()
        try:
            await self._write_sync_time(db, calendar_id, synced_at)
            await db.commit()
        except aiosqlite.Error as e:
            raise EventStoreError(f"Failed to record sync time for {calendar_id}: {e}") from e
        finally:
            await db.close()

    async def last_synced(self, calendar_id: str) -> Optional[datetime]:
        db = await self._connect()
        try:
            async with db.execute(
                "SELECT last_sync_at FROM calendars WHERE id = ?", (calendar_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise EventStoreError(f"Failed to read sync time for {calendar_id}: {e}") from e
        finally:
            await db.close()
        return _from_db_time(row["last_sync_at"]) if row else None

    async def delete_calendar(self, calendar_id: str) -> int:
        db = await self._connect()
        try:
            async with db.execute(
                "SELECT COUNT(*) FROM events WHERE calendar_id = ?", (calendar_id,)
            ) as cursor:
                row = await cursor.fetchone()
            # Events go with the calendar row via ON DELETE CASCADE
            await db.execute("DELETE FROM calendars WHERE id = ?", (calendar_id,))
            await db.commit()
        except aiosqlite.Error as e:
            raise EventStoreError(f"Failed to delete calendar {calendar_id}: {e}") from e
        finally:
            await db.close()
        return int(row[0]) if row else 0

    async def _write_event_data(
        self, db: aiosqlite.Connection, calendar_id: str, data: EventData
    ) -> CalendarEvent:
        """Insert or update one event on ``db`` without committing."""
        existing = await self._fetch_one(db, calendar_id, data.external_id)
        event = apply_event_data(calendar_id, data, existing)
        await db.execute("INSERT OR IGNORE INTO calendars (id) VALUES (?)", (calendar_id,))
        if existing is None:
            placeholders = ", ".join("?" for _ in _EVENT_COLUMNS)
            await db.execute(
                f"INSERT INTO events ({', '.join(_EVENT_COLUMNS)}) VALUES ({placeholders})",
                self._event_to_row(event),
            )
        else:
            await db.execute(
                """
                UPDATE events SET title = ?, description = ?, location = ?,
                    start_time = ?, end_time = ?, is_all_day = ?, status = ?,
                    recurrence_rule = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    event.title,
                    event.description,
                    event.location,
                    _to_db_time(event.start_time),
                    _to_db_time(event.end_time),
                    int(event.is_all_day),
                    EventStatus(event.status).value,
                    event.recurrence_rule,
                    _to_db_time(event.updated_at),
                    event.id,
                ),
            )
        return event

    async def _stale_event_ids(
        self, db: aiosqlite.Connection, calendar_id: str, keep: set[str]
    ) -> list[tuple[str]]:
        async with db.execute(
            "SELECT id, external_id FROM events WHERE calendar_id = ?", (calendar_id,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [(row["id"],) for row in rows if row["external_id"] not in keep]

    async def _write_sync_time(
        self, db: aiosqlite.Connection, calendar_id: str, synced_at: datetime
    ) -> None:
        await db.execute(
            """
            INSERT INTO calendars (id, last_sync_at) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET last_sync_at = excluded.last_sync_at
            """,
            (calendar_id, _to_db_time(synced_at)),
        )

    async def _fetch_one(
        self, db: aiosqlite.Connection, calendar_id: str, external_id: str
    ) -> Optional[CalendarEvent]:
        async with db.execute(
            f"SELECT {', '.join(_EVENT_COLUMNS)} FROM events "
            "WHERE calendar_id = ? AND external_id = ?",
            (calendar_id, external_id),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_event(row) if row else None

    def _event_to_row(self, event: CalendarEvent) -> tuple[Any, ...]:
        return (
            event.id,
            event.calendar_id,
            event.external_id,
            event.title,
            event.description,
            event.location,
            _to_db_time(event.start_time),
            _to_db_time(event.end_time),
            int(event.is_all_day),
            EventStatus(event.status).value,
            event.recurrence_rule,
            event.recurring_event_id,
            _to_db_time(event.original_start_time),
            _to_db_time(event.created_at),
            _to_db_time(event.updated_at),
        )

    def _row_to_event(self, row: Any) -> CalendarEvent:
        return CalendarEvent(
            id=row["id"],
            calendar_id=row["calendar_id"],
            external_id=row["external_id"],
            title=row["title"],
            description=row["description"],
            location=row["location"],
            start_time=_from_db_time(row["start_time"]),
            end_time=_from_db_time(row["end_time"]),
            is_all_day=bool(row["is_all_day"]),
            status=EventStatus(row["status"]),
            recurrence_rule=row["recurrence_rule"],
            recurring_event_id=row["recurring_event_id"],
            original_start_time=_from_db_time(row["original_start_time"]),
            created_at=_from_db_time(row["created_at"]),
            updated_at=_from_db_time(row["updated_at"]),
        )
