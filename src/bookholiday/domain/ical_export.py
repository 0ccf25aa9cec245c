"""Availability export as an iCalendar feed.

Other channels (Airbnb, VRBO...) import this feed to block the nights we
sold. Only BOOKING and HOLD ranges are exported; re-exporting ranges we
imported from those channels would echo their own blocks back to them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from icalendar import Calendar, Event

from bookholiday.domain.blocked_ranges import BlockedRange, BlockSource
from bookholiday.infra.time import utc_now

PRODUCT_ID = "-//bookholiday//availability//EN"
UID_DOMAIN = "bookholiday"


def export_availability_ics(
    property_id: str,
    ranges: Iterable[BlockedRange],
    *,
    generated_at: datetime | None = None,
) -> bytes:
    """Render reserved ranges of a property as an iCalendar document.

    Each range becomes an all-day, opaque VEVENT whose DTEND is the
    check-out day (exclusive, as in the index).
    """
    stamp = generated_at or utc_now()

    cal = Calendar()
    cal.add("prodid", PRODUCT_ID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("x-wr-calname", f"Property {property_id} availability")

    for blocked in sorted(ranges, key=lambda r: (r.start, r.end, r.source_ref)):
        if blocked.source not in (BlockSource.BOOKING, BlockSource.HOLD):
            continue
        event = Event()
        event.add("uid", f"property-{property_id}-booking-{blocked.source_ref}@{UID_DOMAIN}")
        event.add("dtstamp", stamp)
        event.add("dtstart", blocked.start)
        event.add("dtend", blocked.end)
        event.add("summary", "Unavailable")
        event.add("status", "CONFIRMED" if blocked.source == BlockSource.BOOKING else "TENTATIVE")
        event.add("transp", "OPAQUE")
        cal.add_component(event)

    return cal.to_ical()
