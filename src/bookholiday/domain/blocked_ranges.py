"""Blocked ranges and the booking source adapter.

A BlockedRange is one reason a property cannot be booked for an interval:
a confirmed booking, a pending payment hold, or an event from an external
calendar feed.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum

from bookholiday.domain.intervals import Interval
from bookholiday.infra.time import utc_now


class BlockSource(str, Enum):
    """Where a blocked range came from."""

    BOOKING = "BOOKING"
    HOLD = "HOLD"
    EXTERNAL_FEED = "EXTERNAL_FEED"


# Sources reserved through the resolver; these may never overlap each other.
RESERVED_SOURCES = frozenset({BlockSource.BOOKING, BlockSource.HOLD})


@dataclass(frozen=True)
class BlockedRange:
    """An interval blocked for one property.

    Attributes:
        interval: Blocked nights [start, end).
        property_id: Owning property.
        source: BOOKING, HOLD or EXTERNAL_FEED.
        source_ref: Booking reference, or feed event UID.
        created_at: When the block was created (hold age is measured from it).
        reason: Short free-text tag (feed SUMMARY, "booking", "hold").
    """

    interval: Interval
    property_id: str
    source: BlockSource
    source_ref: str
    created_at: datetime
    reason: str | None = None

    @property
    def start(self) -> date:
        return self.interval.start

    @property
    def end(self) -> date:
        return self.interval.end

    @property
    def is_reserved(self) -> bool:
        return self.source in RESERVED_SOURCES

    def as_booking(self) -> "BlockedRange":
        """Return a copy converted to BOOKING, keeping ref and interval."""
        return replace(self, source=BlockSource.BOOKING, reason="booking")

    def to_dict(self) -> dict:
        return {
            "start": self.interval.start.isoformat(),
            "end": self.interval.end.isoformat(),
            "property_id": self.property_id,
            "source": self.source.value,
            "source_ref": self.source_ref,
            "created_at": self.created_at.isoformat(),
            "reason": self.reason,
        }


def block_for_booking(
    *,
    property_id: str,
    booking_ref: str,
    start: date,
    end: date,
    confirmed: bool,
    created_at: datetime | None = None,
) -> BlockedRange:
    """Convert one booking into a BlockedRange.

    Confirmed bookings block as BOOKING, pending ones as HOLD.

    Raises:
        InvalidRangeError: If start >= end.
    """
    source = BlockSource.BOOKING if confirmed else BlockSource.HOLD
    return BlockedRange(
        interval=Interval(start, end),
        property_id=property_id,
        source=source,
        source_ref=booking_ref,
        created_at=created_at or utc_now(),
        reason="booking" if confirmed else "hold",
    )
