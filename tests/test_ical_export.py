"""Tests for availability export as iCalendar."""

from icalendar import Calendar

from bookholiday.domain.blocked_ranges import BlockSource
from bookholiday.domain.ical_export import export_availability_ics
from bookholiday.domain.ical_feed import parse_feed
from tests.helpers import FIXED_NOW, d, make_range


def _events(payload: bytes):
    return list(Calendar.from_ical(payload).walk("VEVENT"))


class TestExport:
    def test_exports_bookings_and_holds_only(self):
        payload = export_availability_ics(
            "P",
            [
                make_range("2024-06-01", "2024-06-05", property_id="P", ref="b1"),
                make_range("2024-06-10", "2024-06-12", property_id="P",
                           source=BlockSource.HOLD, ref="h1"),
                make_range("2024-07-01", "2024-07-05", property_id="P",
                           source=BlockSource.EXTERNAL_FEED, ref="airbnb-1"),
            ],
            generated_at=FIXED_NOW,
        )
        events = _events(payload)

        assert [str(e["UID"]) for e in events] == [
            "property-P-booking-b1@bookholiday",
            "property-P-booking-h1@bookholiday",
        ]
        assert [str(e["STATUS"]) for e in events] == ["CONFIRMED", "TENTATIVE"]
        assert all(str(e["TRANSP"]) == "OPAQUE" for e in events)

    def test_all_day_dates_end_exclusive(self):
        payload = export_availability_ics(
            "P", [make_range("2024-06-01", "2024-06-05", property_id="P", ref="b1")]
        )
        (event,) = _events(payload)
        assert event["DTSTART"].dt == d("2024-06-01")
        assert event["DTEND"].dt == d("2024-06-05")
        assert b"DTSTART;VALUE=DATE:20240601" in payload

    def test_calendar_headers(self):
        payload = export_availability_ics("P", [])
        cal = Calendar.from_ical(payload)
        assert str(cal["PRODID"]) == "-//bookholiday//availability//EN"
        assert str(cal["VERSION"]) == "2.0"

    def test_export_can_be_imported_back(self):
        payload = export_availability_ics(
            "P",
            [
                make_range("2024-06-05", "2024-06-08", property_id="P", ref="b2"),
                make_range("2024-06-01", "2024-06-05", property_id="P", ref="b1"),
            ],
        )
        parsed = parse_feed(payload, property_id="other", fetched_at=FIXED_NOW)
        assert [(r.start, r.end) for r in parsed.ranges] == [
            (d("2024-06-01"), d("2024-06-05")),
            (d("2024-06-05"), d("2024-06-08")),
        ]
