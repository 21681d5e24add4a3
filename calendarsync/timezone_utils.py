"""Datetime normalisation helpers for calendarsync.

Every instant that crosses a module boundary is a timezone-aware UTC
datetime. Floating ICS times and all-day dates are resolved against the
host's local wall clock, which is a deliberate simplification: there is no
VTIMEZONE or TZID resolution.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, date, datetime, time, timedelta

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def now_utc() -> datetime:
    """Return the current time as an aware UTC datetime.

    Honors CALSYNC_TEST_TIME (any ISO-8601 string) so tests can freeze time.
    """
    test_time = os.environ.get("CALSYNC_TEST_TIME")
    if test_time:
        try:
            return ensure_utc(datetime.fromisoformat(test_time.replace("Z", "+00:00")))
        except ValueError:
            logger.warning("Invalid CALSYNC_TEST_TIME=%r; using wall clock", test_time)
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Normalise a datetime to aware UTC; naive values are taken to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def local_to_utc(dt: datetime) -> datetime:
    """Interpret a naive datetime as local wall-clock time and convert to UTC."""
    if dt.tzinfo is not None:
        return dt.astimezone(UTC)
    return dt.astimezone().astimezone(UTC)


def local_midnight_utc(day: date) -> datetime:
    """Return local midnight of ``day`` as an aware UTC instant."""
    return local_to_utc(datetime.combine(day, time.min))


def local_date(dt: datetime) -> date:
    """Calendar date of an instant in the host's local timezone."""
    return ensure_utc(dt).astimezone().date()


def is_same_local_day(first: datetime, second: datetime) -> bool:
    """True when both instants fall on the same local calendar day."""
    return local_date(first) == local_date(second)


def to_iso_z(dt: datetime) -> str:
    """ISO-8601 UTC string with millisecond precision and a ``Z`` suffix."""
    utc = ensure_utc(dt)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def epoch_millis(dt: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return (ensure_utc(dt) - _EPOCH) // timedelta(milliseconds=1)
