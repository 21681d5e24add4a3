"""Event store interface and an in-memory implementation.

The sync reconciler is the only writer. Stores are keyed by calendar and,
within a calendar, by the source-assigned ``external_id``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional, Protocol

from .models import CalendarEvent, EventData
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)


class EventStore(Protocol):
    """Protocol for persisted calendar event storage."""

    async def list_by_calendar(self, calendar_id: str) -> list[CalendarEvent]:
        """Return every persisted event owned by ``calendar_id``."""
        ...

    async def upsert_by_external_id(self, calendar_id: str, data: EventData) -> CalendarEvent:
        """Update the event with ``data.external_id`` in place, or insert it.

        Updates preserve the event's local ``id`` and ``created_at``.

        Returns:
            The persisted event after the write
        """
        ...

    async def delete_missing(self, calendar_id: str, keep_external_ids: Iterable[str]) -> int:
        """Delete events of ``calendar_id`` whose external_id is not in ``keep_external_ids``.

        Returns:
            Number of deleted events
        """
        ...

    async def apply_snapshot(
        self,
        calendar_id: str,
        upserts: Sequence[EventData],
        keep_external_ids: Iterable[str],
        synced_at: datetime,
    ) -> int:
        """Write one reconciliation result as a single all-or-nothing change.

        Upserts ``upserts`` (as ``upsert_by_external_id`` would), deletes events
        whose external_id is not in ``keep_external_ids`` and records
        ``synced_at``. If anything fails, none of it is applied.

        Returns:
            Number of deleted events

        Raises:
            EventStoreError: The change could not be applied
        """
        ...

    async def mark_synced(self, calendar_id: str, synced_at: datetime) -> None:
        """Record the time of the last successful sync of ``calendar_id``."""
        ...

    async def last_synced(self, calendar_id: str) -> Optional[datetime]:
        """Time of the last successful sync, or None if never synced."""
        ...

    async def delete_calendar(self, calendar_id: str) -> int:
        """Delete a calendar together with all of its events.

        Returns:
            Number of deleted events
        """
        ...


def apply_event_data(
    calendar_id: str, data: EventData, existing: Optional[CalendarEvent] = None
) -> CalendarEvent:
    """Build the event that results from writing ``data`` over ``existing``."""
    fields = data.model_dump(include=set(EventData.MUTABLE_FIELDS))
    if existing is None:
        return CalendarEvent(calendar_id=calendar_id, external_id=data.external_id, **fields)
    return existing.model_copy(update={**fields, "updated_at": now_utc()})


class InMemoryEventStore:
    """Dict-backed EventStore, for tests and embedding without a database."""

    def __init__(self) -> None:
        self._events: dict[str, dict[str, CalendarEvent]] = {}
        self._synced: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    async def list_by_calendar(self, calendar_id: str) -> list[CalendarEvent]:
        return list(self._events.get(calendar_id, {}).values())

    async def upsert_by_external_id(self, calendar_id: str, data: EventData) -> CalendarEvent:
        async with self._lock:
            calendar = self._events.setdefault(calendar_id, {})
            event = apply_event_data(calendar_id, data, calendar.get(data.external_id))
            calendar[data.external_id] = event
            return event

    async def delete_missing(self, calendar_id: str, keep_external_ids: Iterable[str]) -> int:
        keep = set(keep_external_ids)
        async with self._lock:
            calendar = self._events.get(calendar_id, {})
            stale = [external_id for external_id in calendar if external_id not in keep]
            for external_id in stale:
                del calendar[external_id]
        if stale:
            logger.debug("Deleted %d stale events from calendar %s", len(stale), calendar_id)
        return len(stale)

    async def apply_snapshot(
        self,
        calendar_id: str,
        upserts: Sequence[EventData],
        keep_external_ids: Iterable[str],
        synced_at: datetime,
    ) -> int:
        keep = set(keep_external_ids)
        async with self._lock:
            # Staged on a copy; the live calendar is only replaced once everything succeeded
            staged = dict(self._events.get(calendar_id, {}))
            for data in upserts:
                staged[data.external_id] = apply_event_data(calendar_id, data, staged.get(data.external_id))
            stale = [external_id for external_id in staged if external_id not in keep]
            for external_id in stale:
                del staged[external_id]
            self._events[calendar_id] = staged
            self._synced[calendar_id] = synced_at
        return len(stale)

    async def mark_synced(self, calendar_id: str, synced_at: datetime) -> None:
        self._synced[calendar_id] = synced_at

    async def last_synced(self, calendar_id: str) -> Optional[datetime]:
        return self._synced.get(calendar_id)

    async def delete_calendar(self, calendar_id: str) -> int:
        async with self._lock:
            removed = self._events.pop(calendar_id, {})
            self._synced.pop(calendar_id, None)
        return len(removed)

    def add(self, event: CalendarEvent) -> None:
        """Seed an event directly, bypassing reconciliation (overrides, fixtures)."""
        self._events.setdefault(event.calendar_id, {})[event.external_id] = event
