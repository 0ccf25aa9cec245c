"""Tests for blocked ranges and the booking source adapter."""

from datetime import datetime, timezone

import pytest

from bookholiday.domain.blocked_ranges import (
    RESERVED_SOURCES,
    BlockSource,
    block_for_booking,
)
from bookholiday.domain.intervals import InvalidRangeError
from tests.helpers import d, make_range


class TestBlockForBooking:
    def test_confirmed_booking_blocks_as_booking(self):
        blocked = block_for_booking(
            property_id="p1",
            booking_ref="p1~abc",
            start=d("2024-06-01"),
            end=d("2024-06-05"),
            confirmed=True,
        )
        assert blocked.source == BlockSource.BOOKING
        assert blocked.source_ref == "p1~abc"
        assert blocked.reason == "booking"
        assert blocked.is_reserved

    def test_pending_booking_blocks_as_hold(self):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        blocked = block_for_booking(
            property_id="p1",
            booking_ref="p1~abc",
            start=d("2024-06-01"),
            end=d("2024-06-05"),
            confirmed=False,
            created_at=created,
        )
        assert blocked.source == BlockSource.HOLD
        assert blocked.created_at == created
        assert blocked.is_reserved

    def test_invalid_dates_raise(self):
        with pytest.raises(InvalidRangeError):
            block_for_booking(
                property_id="p1",
                booking_ref="p1~abc",
                start=d("2024-06-05"),
                end=d("2024-06-05"),
                confirmed=True,
            )

    def test_created_at_defaults_to_now(self):
        blocked = block_for_booking(
            property_id="p1",
            booking_ref="r",
            start=d("2024-06-01"),
            end=d("2024-06-02"),
            confirmed=False,
        )
        assert blocked.created_at.tzinfo == timezone.utc


class TestBlockedRange:
    def test_external_is_not_reserved(self):
        assert BlockSource.EXTERNAL_FEED not in RESERVED_SOURCES
        assert not make_range("2024-06-01", "2024-06-03", source=BlockSource.EXTERNAL_FEED).is_reserved

    def test_as_booking_keeps_ref_and_interval(self):
        hold = make_range("2024-06-01", "2024-06-03", source=BlockSource.HOLD, ref="h1")
        booked = hold.as_booking()
        assert booked.source == BlockSource.BOOKING
        assert booked.source_ref == "h1"
        assert booked.interval == hold.interval
        assert hold.source == BlockSource.HOLD

    def test_to_dict(self):
        data = make_range("2024-06-01", "2024-06-03", ref="b1", reason="booking").to_dict()
        assert data["start"] == "2024-06-01"
        assert data["end"] == "2024-06-03"
        assert data["source"] == "BOOKING"
        assert data["source_ref"] == "b1"
        assert data["property_id"] == "p1"
