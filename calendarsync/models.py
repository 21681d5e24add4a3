"""Data models for calendar sync and recurrence expansion."""

import re
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from .timezone_utils import ensure_utc, now_utc

# BYDAY entries: optional signed ordinal followed by a two-letter weekday
_BYDAY_PATTERN = re.compile(r"^[+-]?\d{0,2}(MO|TU|WE|TH|FR|SA|SU)$")


class EventStatus(str, Enum):
    """Event confirmation status."""

    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class RecurrenceFrequency(str, Enum):
    """Frequencies accepted by the RRULE builder."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RawEvent(BaseModel):
    """One VEVENT as read from an ICS feed, before it is bound to a calendar."""

    uid: str = Field(..., min_length=1, description="Source-assigned UID")
    summary: str = Field(..., min_length=1, description="Event title")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    dtstart: datetime = Field(..., description="Start instant (UTC)")
    dtend: datetime = Field(..., description="End instant (UTC)")
    is_all_day: bool = Field(default=False, description="Date-only event flag")
    rrule: Optional[str] = Field(default=None, description="RRULE value, without the RRULE: prefix")
    status: EventStatus = Field(default=EventStatus.CONFIRMED, description="Mapped STATUS")

    @field_validator("dtstart", "dtend")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_bounds(self) -> "RawEvent":
        if self.dtend < self.dtstart:
            raise ValueError(f"DTEND {self.dtend.isoformat()} precedes DTSTART {self.dtstart.isoformat()}")
        return self


class EventData(BaseModel):
    """Mutable fields the sync reconciler writes for one external event."""

    external_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    status: EventStatus = EventStatus.CONFIRMED
    recurrence_rule: Optional[str] = None

    MUTABLE_FIELDS: ClassVar[tuple[str, ...]] = (
        "title",
        "description",
        "location",
        "start_time",
        "end_time",
        "is_all_day",
        "status",
        "recurrence_rule",
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_raw_event(cls, raw: RawEvent) -> "EventData":
        """Map a parsed VEVENT onto the persisted field names."""
        return cls(
            external_id=raw.uid,
            title=raw.summary,
            description=raw.description or None,
            location=raw.location or None,
            start_time=raw.dtstart,
            end_time=raw.dtend,
            is_all_day=raw.is_all_day,
            status=raw.status,
            recurrence_rule=raw.rrule or None,
        )

    def differs_from(self, event: "CalendarEvent") -> bool:
        """True when writing this data would change ``event``."""
        return any(getattr(self, name) != getattr(event, name) for name in self.MUTABLE_FIELDS)


class CalendarEvent(BaseModel):
    """Calendar event: a standalone event, a recurring master, or an override instance."""

    # Identity
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Local event ID")
    calendar_id: str = Field(..., description="Owning calendar ID")
    external_id: str = Field(..., description="Source-assigned ID, unique per calendar")

    # Display
    title: str = Field(..., description="Event title")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")

    # Time bounds
    start_time: datetime = Field(..., description="Start instant (UTC)")
    end_time: datetime = Field(..., description="End instant (UTC)")
    is_all_day: bool = Field(default=False, description="All-day event flag")

    status: EventStatus = Field(default=EventStatus.CONFIRMED, description="Event status")

    # Recurrence
    recurrence_rule: Optional[str] = Field(default=None, description="RRULE for recurring masters")
    recurring_event_id: Optional[str] = Field(
        default=None, description="external_id of the master this override belongs to"
    )
    original_start_time: Optional[datetime] = Field(
        default=None, description="Start the overridden occurrence had under the rule"
    )

    # Bookkeeping
    created_at: datetime = Field(default_factory=now_utc, description="Creation time")
    updated_at: datetime = Field(default_factory=now_utc, description="Last update time")

    # Set only on transient occurrences synthesized during expansion
    is_recurrence_instance: bool = Field(
        default=False, description="True if generated from RRULE expansion"
    )
    original_event_id: Optional[str] = Field(
        default=None, description="Local ID of the master an expanded occurrence came from"
    )

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("original_start_time")
    @classmethod
    def _optional_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_invariants(self) -> "CalendarEvent":
        if self.recurrence_rule and self.recurring_event_id:
            raise ValueError("an event cannot be both a recurring master and an override instance")
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self

    @field_serializer(
        "start_time", "end_time", "created_at", "updated_at", "original_start_time",
        when_used="unless-none",
    )
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime fields to ISO format."""
        return dt.isoformat()

    @property
    def is_master(self) -> bool:
        """Event anchors a recurring series."""
        return bool(self.recurrence_rule)

    @property
    def is_override(self) -> bool:
        """Event replaces one occurrence of a recurring series."""
        return bool(self.recurring_event_id)

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def overlaps(self, range_start: datetime, range_end: datetime) -> bool:
        """Closed-interval overlap test against ``[range_start, range_end]``."""
        return self.start_time <= range_end and self.end_time >= range_start


class RRuleOptions(BaseModel):
    """Structured input for building an RRULE string."""

    frequency: RecurrenceFrequency
    interval: int = Field(default=1, ge=1)
    until: Optional[datetime] = None
    count: Optional[int] = Field(default=None, ge=1)
    by_day: list[str] = Field(default_factory=list)
    by_month_day: list[int] = Field(default_factory=list)

    @field_validator("by_day")
    @classmethod
    def _check_by_day(cls, value: list[str]) -> list[str]:
        normalized = [day.strip().upper() for day in value]
        for day in normalized:
            if not _BYDAY_PATTERN.match(day):
                raise ValueError(f"invalid BYDAY entry: {day!r}")
        return normalized

    @field_validator("by_month_day")
    @classmethod
    def _check_by_month_day(cls, value: list[int]) -> list[int]:
        for day in value:
            if day == 0 or not -31 <= day <= 31:
                raise ValueError(f"invalid BYMONTHDAY entry: {day}")
        return value


class ICSParseResult(BaseModel):
    """Result of parsing one ICS document."""

    success: bool = Field(default=True, description="False when the document itself could not be read")
    events: list[RawEvent] = Field(default_factory=list, description="Successfully parsed events")
    total_components: int = Field(default=0, description="VEVENT blocks seen")
    skipped_count: int = Field(default=0, description="VEVENT blocks dropped as malformed")
    warnings: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def event_count(self) -> int:
        return len(self.events)


class FetchResponse(BaseModel):
    """Successful response from a calendar source."""

    content: str
    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    fetch_time: datetime = Field(default_factory=now_utc)

    # HTTP caching metadata
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def content_length(self) -> int:
        return len(self.content.encode("utf-8"))

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


class SyncResult(BaseModel):
    """Net effect of one reconciliation run."""

    calendar_id: str
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = Field(default=0, description="Feed events dropped as malformed")
    synced_at: datetime = Field(default_factory=now_utc)

    @property
    def has_changes(self) -> bool:
        return bool(self.inserted or self.updated or self.deleted)
