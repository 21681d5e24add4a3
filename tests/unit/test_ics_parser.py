"""Unit tests for calendarsync.ics_parser."""

from datetime import date, datetime, timedelta, timezone

import pytest
from icalendar import Calendar, Event

from calendarsync.ics_parser import ICSParser, ICSProperty, parse_ics, read_instant, to_utc_instant
from calendarsync.models import EventStatus

pytestmark = pytest.mark.unit


def _wrap(*vevents: str) -> str:
    body = "\r\n".join(vevents)
    return f"BEGIN:VCALENDAR\r\nVERSION:2.0\r\n{body}\r\nEND:VCALENDAR\r\n"


def _vevent(*lines: str) -> str:
    return "\r\n".join(("BEGIN:VEVENT", *lines, "END:VEVENT"))


class TestInstants:
    """Tests for DTSTART/DTEND conversion (host timezone pinned to UTC)."""

    def test_floating_datetime_uses_local_time(self) -> None:
        assert to_utc_instant(datetime(2024, 1, 1, 9, 0)) == datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def test_aware_datetime_converted_to_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        assert to_utc_instant(datetime(2024, 1, 1, 11, 0, tzinfo=plus_two)) == datetime(
            2024, 1, 1, 9, 0, tzinfo=timezone.utc
        )

    def test_date_is_local_midnight(self) -> None:
        assert to_utc_instant(date(2024, 1, 5)) == datetime(2024, 1, 5, tzinfo=timezone.utc)

    def test_read_instant_reports_date_values(self) -> None:
        event = Event()
        event.add("dtstart", date(2024, 1, 5))
        event.add("dtend", datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc))

        assert read_instant(event, ICSProperty.DTSTART) == (datetime(2024, 1, 5, tzinfo=timezone.utc), True)
        assert read_instant(event, ICSProperty.DTEND) == (
            datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc),
            False,
        )

    def test_read_instant_missing_property_raises(self) -> None:
        with pytest.raises(ValueError, match="DTEND"):
            read_instant(Event(), ICSProperty.DTEND)


class TestICSParser:
    """Tests for ICSParser."""

    def setup_method(self) -> None:
        self.parser = ICSParser()

    def test_parse_when_feed_valid_then_all_fields_mapped(self, weekly_standup_ics: str) -> None:
        events = self.parser.parse(weekly_standup_ics)

        assert [e.uid for e in events] == ["standup@example.com", "review@example.com"]
        standup, review = events
        assert standup.summary == "Standup"
        assert standup.description == "Daily sync, short"
        assert standup.location == "Room 1"
        assert standup.dtstart == datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        assert standup.dtend == datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)
        assert standup.rrule == "FREQ=WEEKLY;COUNT=3;BYDAY=MO"
        assert standup.status == EventStatus.CONFIRMED
        assert review.rrule is None
        assert review.status == EventStatus.TENTATIVE

    def test_parse_when_event_malformed_then_only_that_event_dropped(self) -> None:
        ics = _wrap(
            _vevent("UID:good-1", "SUMMARY:Good", "DTSTART:20240101T090000Z", "DTEND:20240101T100000Z"),
            _vevent("UID:no-start", "SUMMARY:Broken", "DTEND:20240101T100000Z"),
            _vevent("UID:bad-date", "SUMMARY:Broken", "DTSTART:2024-01-01", "DTEND:20240101T100000Z"),
            _vevent("UID:good-2", "SUMMARY:Also good", "DTSTART:20240102T090000Z", "DTEND:20240102T100000Z"),
        )

        result = self.parser.parse_with_report(ics)

        assert [e.uid for e in result.events] == ["good-1", "good-2"]
        assert result.total_components == 4
        assert result.skipped_count == 2
        assert len(result.warnings) == 2

    def test_parse_when_end_before_start_then_dropped(self) -> None:
        ics = _wrap(
            _vevent("UID:backwards", "SUMMARY:Backwards", "DTSTART:20240101T100000Z", "DTEND:20240101T090000Z")
        )
        result = self.parser.parse_with_report(ics)
        assert result.events == []
        assert result.skipped_count == 1

    def test_parse_when_missing_summary_then_dropped(self) -> None:
        ics = _wrap(_vevent("UID:untitled", "DTSTART:20240101T090000Z", "DTEND:20240101T100000Z"))
        assert self.parser.parse(ics) == []

    def test_parse_when_all_day_then_flagged_and_midnight_bounds(self) -> None:
        ics = _wrap(
            _vevent(
                "UID:holiday",
                "SUMMARY:Holiday",
                "DTSTART;VALUE=DATE:20240105",
                "DTEND;VALUE=DATE:20240106",
            )
        )
        (event,) = self.parser.parse(ics)
        assert event.is_all_day is True
        assert event.dtstart == datetime(2024, 1, 5, tzinfo=timezone.utc)
        assert event.dtend == datetime(2024, 1, 6, tzinfo=timezone.utc)

    def test_parse_when_alarm_nested_then_alarm_properties_ignored(self) -> None:
        ics = _wrap(
            _vevent(
                "UID:with-alarm",
                "SUMMARY:Dentist",
                "DESCRIPTION:Bring forms",
                "DTSTART:20240101T090000Z",
                "DTEND:20240101T100000Z",
                "BEGIN:VALARM",
                "ACTION:DISPLAY",
                "DESCRIPTION:Reminder",
                "TRIGGER:-PT15M",
                "END:VALARM",
            )
        )
        (event,) = self.parser.parse(ics)
        assert event.description == "Bring forms"

    def test_parse_when_folded_summary_then_unfolded(self) -> None:
        ics = _wrap(
            _vevent(
                "UID:folded",
                "SUMMARY:A very long meeting ti",
                " tle that was folded",
                "DTSTART:20240101T090000Z",
                "DTEND:20240101T100000Z",
            )
        )
        (event,) = self.parser.parse(ics)
        assert event.summary == "A very long meeting title that was folded"

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("CANCELLED", EventStatus.CANCELLED),
            ("tentative", EventStatus.TENTATIVE),
            ("CONFIRMED", EventStatus.CONFIRMED),
            ("NEEDS-ACTION", EventStatus.CONFIRMED),
        ],
    )
    def test_parse_status_mapping(self, status: str, expected: EventStatus) -> None:
        ics = _wrap(
            _vevent(
                "UID:s",
                "SUMMARY:S",
                "DTSTART:20240101T090000Z",
                "DTEND:20240101T100000Z",
                f"STATUS:{status}",
            )
        )
        (event,) = self.parser.parse(ics)
        assert event.status == expected

    def test_parse_when_bytes_with_bom_then_decoded(self) -> None:
        ics = _wrap(
            _vevent("UID:bom", "SUMMARY:Caf\u00e9", "DTSTART:20240101T090000Z", "DTEND:20240101T100000Z")
        )
        (event,) = self.parser.parse(("\ufeff" + ics).encode("utf-8"))
        assert event.summary == "Caf\u00e9"

    def test_parse_when_no_events_then_empty(self) -> None:
        assert self.parser.parse("BEGIN:VCALENDAR\nEND:VCALENDAR\n") == []
        assert self.parser.parse("") == []

    def test_parse_when_feed_generated_by_icalendar_then_events_read(self) -> None:
        cal = Calendar()
        cal.add("prodid", "-//calendarsync tests//EN")
        cal.add("version", "2.0")

        event = Event()
        event.add("uid", "generated-1")
        event.add("summary", "Planning, phase; one")
        event.add("description", "First line\nSecond line")
        event.add("dtstart", datetime(2024, 3, 4, 14, 0, tzinfo=timezone.utc))
        event.add("dtend", datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc))
        event.add("rrule", {"freq": "weekly", "count": 4})
        cal.add_component(event)

        (parsed,) = parse_ics(cal.to_ical())

        assert parsed.uid == "generated-1"
        assert parsed.summary == "Planning, phase; one"
        assert parsed.description == "First line\nSecond line"
        assert parsed.dtstart == datetime(2024, 3, 4, 14, 0, tzinfo=timezone.utc)
        assert parsed.rrule is not None
        assert "FREQ=WEEKLY" in parsed.rrule
        assert "COUNT=4" in parsed.rrule

    def test_parse_when_bare_date_without_value_param_then_all_day(self) -> None:
        ics = _wrap(_vevent("UID:bare", "SUMMARY:Offsite", "DTSTART:20240105", "DTEND:20240106"))

        (event,) = self.parser.parse(ics)

        assert event.is_all_day is True
        assert event.dtstart == datetime(2024, 1, 5, tzinfo=timezone.utc)

    def test_parse_when_date_param_carries_time_then_dropped(self) -> None:
        ics = _wrap(
            _vevent(
                "UID:mislabelled",
                "SUMMARY:Mislabelled",
                "DTSTART;VALUE=DATE:20240101T090000",
                "DTEND;VALUE=DATE:20240101T100000",
            ),
            _vevent("UID:fine", "SUMMARY:Fine", "DTSTART:20240101T090000Z", "DTEND:20240101T100000Z"),
        )

        result = self.parser.parse_with_report(ics)

        assert [e.uid for e in result.events] == ["fine"]
        assert result.skipped_count == 1

    def test_parse_when_tzid_known_then_converted_to_utc(self) -> None:
        ics = _wrap(
            _vevent(
                "UID:berlin",
                "SUMMARY:Berlin",
                "DTSTART;TZID=Europe/Berlin:20240115T100000",
                "DTEND;TZID=Europe/Berlin:20240115T110000",
            )
        )

        (event,) = self.parser.parse(ics)

        assert event.dtstart == datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
        assert event.dtend == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_parse_when_escaped_text_then_unescaped(self) -> None:
        ics = _wrap(
            _vevent(
                "UID:escaped",
                "SUMMARY:Budget\\; Q1\\, Q2",
                "DESCRIPTION:Agenda\\nItem one",
                "LOCATION:C:\\\\rooms",
                "DTSTART:20240101T090000Z",
                "DTEND:20240101T100000Z",
            )
        )

        (event,) = self.parser.parse(ics)

        assert event.summary == "Budget; Q1, Q2"
        assert event.description == "Agenda\nItem one"
        assert event.location == "C:\\rooms"

    def test_parse_when_document_unreadable_then_reported(self) -> None:
        result = self.parser.parse_with_report("this is not a calendar\nat all")

        assert result.success is False
        assert result.error_message
        assert result.events == []
