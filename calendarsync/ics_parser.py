"""ICS feed parser.

Reads the VEVENT subset calendarsync understands (UID, SUMMARY, DESCRIPTION,
LOCATION, DTSTART, DTEND, RRULE, STATUS) into RawEvent records. The document
is parsed with icalendar; each VEVENT is then converted independently, so a
malformed one is logged and dropped while the rest of the document is kept.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from icalendar import Calendar, Component
from pydantic import ValidationError

from .exceptions import MalformedEventError
from .models import EventStatus, ICSParseResult, RawEvent
from .timezone_utils import local_midnight_utc, local_to_utc

logger = logging.getLogger(__name__)


class ICSProperty(str, Enum):
    """VEVENT properties the parser extracts; anything else is ignored."""

    UID = "UID"
    SUMMARY = "SUMMARY"
    DESCRIPTION = "DESCRIPTION"
    LOCATION = "LOCATION"
    DTSTART = "DTSTART"
    DTEND = "DTEND"
    RRULE = "RRULE"
    STATUS = "STATUS"


_REQUIRED_TEXT = (ICSProperty.UID, ICSProperty.SUMMARY)


def to_utc_instant(value: Union[date, datetime]) -> datetime:
    """Resolve a decoded DTSTART/DTEND value to an aware UTC instant.

    Dates become local midnight and floating datetimes are read as local
    wall-clock time. Aware datetimes (``Z`` or a TZID icalendar could
    resolve) are converted to UTC.
    """
    if isinstance(value, datetime):
        return local_to_utc(value)
    return local_midnight_utc(value)


def read_instant(component: Component, prop: ICSProperty) -> tuple[datetime, bool]:
    """Read a date or date-time property as ``(utc_instant, is_date)``.

    Raises:
        ValueError: If the property is missing, failed to parse, is not a
            date or date-time, or is a date-time labelled ``VALUE=DATE``
    """
    ical_value = component.get(prop.value)
    if ical_value is None:
        raise ValueError(f"missing required {prop.value}")

    # Broken properties raise BrokenCalendarProperty (a ValueError) on .dt
    value = getattr(ical_value, "dt", None)
    if not isinstance(value, date):
        raise ValueError(f"{prop.value} is not a date or date-time: {value!r}")

    params = getattr(ical_value, "params", {}) or {}
    declared_date = str(params.get("VALUE", "")).upper() == "DATE"
    if declared_date and isinstance(value, datetime):
        raise ValueError(f"{prop.value} is declared VALUE=DATE but carries a time")

    return to_utc_instant(value), not isinstance(value, datetime)


def map_status(value: Optional[str]) -> EventStatus:
    """Map an ICS STATUS to EventStatus; unknown or absent means confirmed."""
    normalized = (value or "").strip().lower()
    if normalized == EventStatus.TENTATIVE.value:
        return EventStatus.TENTATIVE
    if normalized == EventStatus.CANCELLED.value:
        return EventStatus.CANCELLED
    return EventStatus.CONFIRMED


def _text(component: Component, prop: ICSProperty) -> Optional[str]:
    value = component.get(prop.value)
    if value is None:
        return None
    return str(value)


def _rrule_text(component: Component) -> Optional[str]:
    rrule_prop: Any = component.get(ICSProperty.RRULE.value)
    if rrule_prop is None:
        return None
    if isinstance(rrule_prop, list):
        rrule_prop = rrule_prop[0]
    # Unparseable rules are kept verbatim; the expander decides what to do with them
    rule = rrule_prop.to_ical().decode("utf-8").strip()
    return rule or None


class ICSParser:
    """Parser for the VEVENT subset of an ICS document."""

    def parse(self, raw: Union[str, bytes]) -> list[RawEvent]:
        """Parse ICS text into RawEvents, dropping malformed VEVENTs."""
        return self.parse_with_report(raw).events

    def parse_with_report(self, raw: Union[str, bytes]) -> ICSParseResult:
        """Parse ICS text and report how many VEVENTs were dropped and why.

        A document icalendar cannot read at all yields ``success=False`` and
        no events.
        """
        result = ICSParseResult()
        try:
            calendars = Calendar.from_ical(self._normalize(raw), multiple=True)
        except ValueError as e:
            logger.warning("Failed to parse ICS document: %s", e)
            result.success = False
            result.error_message = str(e)
            return result

        for calendar in calendars:
            for component in calendar.walk("VEVENT"):
                result.total_components += 1
                try:
                    result.events.append(self._build_event(component))
                except MalformedEventError as e:
                    result.skipped_count += 1
                    result.warnings.append(str(e))
                    logger.warning("Skipping malformed VEVENT (uid=%s): %s", e.uid or "<none>", e)

        logger.debug(
            "Parsed %d VEVENTs: %d kept, %d skipped",
            result.total_components,
            result.event_count,
            result.skipped_count,
        )
        return result

    def _normalize(self, raw: Union[str, bytes]) -> bytes:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        return raw.lstrip("\ufeff").encode("utf-8")

    def _build_event(self, component: Component) -> RawEvent:
        """Turn one VEVENT component into a RawEvent.

        Raises:
            MalformedEventError: If a required property is missing or invalid
        """
        uid = (_text(component, ICSProperty.UID) or "").strip()
        for prop in _REQUIRED_TEXT:
            if not (_text(component, prop) or "").strip():
                raise MalformedEventError(f"missing required {prop.value}", uid=uid or None)

        try:
            dtstart, is_all_day = read_instant(component, ICSProperty.DTSTART)
            dtend, _ = read_instant(component, ICSProperty.DTEND)
        except ValueError as e:
            raise MalformedEventError(f"invalid date value: {e}", uid=uid) from e

        try:
            return RawEvent(
                uid=uid,
                summary=_text(component, ICSProperty.SUMMARY),
                description=_text(component, ICSProperty.DESCRIPTION),
                location=_text(component, ICSProperty.LOCATION),
                dtstart=dtstart,
                dtend=dtend,
                is_all_day=is_all_day,
                rrule=_rrule_text(component),
                status=map_status(_text(component, ICSProperty.STATUS)),
            )
        except ValidationError as e:
            raise MalformedEventError(f"invalid event: {e.errors()[0]['msg']}", uid=uid) from e


def parse_ics(raw: Union[str, bytes]) -> list[RawEvent]:
    """Parse ICS text into RawEvents (convenience wrapper around ICSParser)."""
    return ICSParser().parse(raw)
