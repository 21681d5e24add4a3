"""Shared fixtures for calendarsync tests."""

import time
from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Optional

import pytest

from calendarsync.models import CalendarEvent


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests touching SQLite or several components")


@pytest.fixture(autouse=True)
def utc_local_timezone(monkeypatch: pytest.MonkeyPatch) -> Generator[None, Any, None]:
    """Pin the process timezone to UTC.

    Floating ICS times, all-day dates and same-day override matching all use
    the host's local timezone; pinning it keeps those tests deterministic.
    """
    monkeypatch.setenv("TZ", "UTC")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear CALSYNC_* variables that would leak host configuration into tests."""
    for name in (
        "CALSYNC_TEST_TIME",
        "CALSYNC_DEBUG",
        "CALSYNC_LOG_LEVEL",
        "CALSYNC_DATABASE_PATH",
        "CALSYNC_REQUEST_TIMEOUT",
        "CALSYNC_MAX_RETRIES",
        "CALSYNC_RETRY_BACKOFF_FACTOR",
        "CALSYNC_USER_AGENT",
        "CALSYNC_DEFAULT_WINDOW_DAYS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight fetcher settings."""
    return SimpleNamespace(
        request_timeout=5,
        max_retries=2,
        retry_backoff_factor=1.5,
        user_agent="calendarsync-test/1.0",
    )


@pytest.fixture
def make_event() -> Callable[..., CalendarEvent]:
    """Factory for CalendarEvent records with one-hour defaults."""

    def _make(
        external_id: str,
        start: datetime,
        end: Optional[datetime] = None,
        title: Optional[str] = None,
        calendar_id: str = "cal-1",
        **kwargs: Any,
    ) -> CalendarEvent:
        return CalendarEvent(
            calendar_id=calendar_id,
            external_id=external_id,
            title=title or external_id,
            start_time=start,
            end_time=end or start + timedelta(hours=1),
            **kwargs,
        )

    return _make


WEEKLY_STANDUP_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calendarsync tests//EN
BEGIN:VEVENT
UID:standup@example.com
SUMMARY:Standup
DESCRIPTION:Daily sync\\, short
LOCATION:Room 1
DTSTART:20240101T090000Z
DTEND:20240101T093000Z
RRULE:FREQ=WEEKLY;COUNT=3;BYDAY=MO
END:VEVENT
BEGIN:VEVENT
UID:review@example.com
SUMMARY:Design review
DTSTART:20240103T150000Z
DTEND:20240103T160000Z
STATUS:TENTATIVE
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def weekly_standup_ics() -> str:
    """Feed with one weekly master (three Mondays) and one single event."""
    return WEEKLY_STANDUP_ICS
