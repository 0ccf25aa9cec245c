"""Tests for the hold expiry sweep."""

import threading
from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest

from bookholiday.domain.conflict_resolver import ConflictResolver, ReservationMode
from bookholiday.domain.expire_holds import expire_property_holds, sweep_expired_holds
from bookholiday.domain.property_registry import PropertyRegistry
from bookholiday.infra.block_store import MemoryBlockStore
from bookholiday.infra.time import utc_now
from tests.helpers import d

TTL = timedelta(minutes=15)


def _hold(resolver, start, end, property_id="P"):
    result = resolver.check_and_reserve(property_id, d(start), d(end), 2, ReservationMode.HOLD)
    assert result.accepted
    return result.booking_ref


class TestExpirePropertyHolds:
    def test_expired_hold_released_and_rejected_request_now_accepted(self, resolver, registry):
        _hold(resolver, "2024-06-01", "2024-06-05")
        retry = resolver.check_and_reserve("P", d("2024-06-03"), d("2024-06-06"), 2)
        assert retry.reason == "unavailable"

        released = expire_property_holds(
            registry, "P", hold_ttl=TTL, now=utc_now() + timedelta(minutes=16)
        )

        assert len(released) == 1
        retry = resolver.check_and_reserve("P", d("2024-06-03"), d("2024-06-06"), 2)
        assert retry.accepted

    def test_young_hold_kept(self, resolver, registry):
        _hold(resolver, "2024-06-01", "2024-06-05")
        released = expire_property_holds(
            registry, "P", hold_ttl=TTL, now=utc_now() + timedelta(minutes=5)
        )
        assert released == []

    def test_bookings_never_expire(self, resolver, registry):
        resolver.check_and_reserve("P", d("2024-06-01"), d("2024-06-05"), 2, ReservationMode.INSTANT)
        released = expire_property_holds(
            registry, "P", hold_ttl=TTL, now=utc_now() + timedelta(days=30)
        )
        assert released == []

    def test_confirmed_hold_not_released(self, resolver, registry):
        ref = _hold(resolver, "2024-06-01", "2024-06-05")
        resolver.confirm(ref)
        released = expire_property_holds(
            registry, "P", hold_ttl=TTL, now=utc_now() + timedelta(hours=1)
        )
        assert released == []

    def test_logs_hold_expired(self, resolver, registry):
        ref = _hold(resolver, "2024-06-01", "2024-06-05")
        with patch("bookholiday.domain.expire_holds.logger") as mock_logger:
            expire_property_holds(
                registry, "P", hold_ttl=TTL, now=utc_now() + timedelta(minutes=16)
            )
        message = mock_logger.info.call_args[0][0]
        fields = mock_logger.info.call_args[1]["extra"]["extra_fields"]
        assert message == "HOLD_EXPIRED"
        assert fields["booking_ref"] == ref
        assert fields["start"] == "2024-06-01"


class TestSweepExpiredHolds:
    def test_sweeps_all_properties(self, resolver, registry):
        _hold(resolver, "2024-06-01", "2024-06-05", property_id="A")
        _hold(resolver, "2024-06-01", "2024-06-05", property_id="B")
        _hold(resolver, "2024-06-10", "2024-06-12", property_id="B")

        result = sweep_expired_holds(registry, hold_ttl=TTL, now=utc_now() + timedelta(minutes=20))

        assert result == {"status": "ok", "expired": 3, "properties": 2, "skipped": 0}

    def test_nothing_to_sweep(self, registry):
        result = sweep_expired_holds(registry, hold_ttl=TTL)
        assert result == {"status": "ok", "expired": 0, "properties": 0, "skipped": 0}

    def test_busy_property_skipped(self):
        registry = PropertyRegistry(lock_timeout_seconds=0.05)
        resolver = ConflictResolver(registry, today=lambda: date(2024, 1, 1))
        _hold(resolver, "2024-06-01", "2024-06-05", property_id="A")
        _hold(resolver, "2024-06-01", "2024-06-05", property_id="B")

        entered = threading.Event()
        release = threading.Event()

        def hold_lock():
            with registry.locked("A"):
                entered.set()
                release.wait(2)

        t = threading.Thread(target=hold_lock)
        t.start()
        try:
            assert entered.wait(2)
            result = sweep_expired_holds(
                registry, hold_ttl=TTL, now=utc_now() + timedelta(minutes=20)
            )
        finally:
            release.set()
            t.join(2)

        assert result["expired"] == 1
        assert result["skipped"] == 1


@pytest.mark.parametrize("minutes,expected", [(14, 0), (15, 1), (60, 1)])
def test_ttl_boundary(resolver, registry, minutes, expected):
    _hold(resolver, "2024-06-01", "2024-06-05")
    with registry.locked("P") as index:
        created = index.reserved()[0].created_at
    released = expire_property_holds(
        registry, "P", hold_ttl=TTL, now=created + timedelta(minutes=minutes)
    )
    assert len(released) == expected


class TestStoreGuard:
    def _store(self):
        store = MagicMock(spec=MemoryBlockStore)
        store.shared = False
        store.load.return_value = ([], None)
        store.expired_hold_property_ids.return_value = []
        return store

    def test_hold_kept_when_store_no_longer_has_expired_hold(self):
        store = self._store()
        store.expire_hold.return_value = False
        registry = PropertyRegistry(store)
        resolver = ConflictResolver(registry, today=lambda: date(2024, 1, 1))
        ref = _hold(resolver, "2024-06-01", "2024-06-05")

        released = expire_property_holds(
            registry, "P", hold_ttl=TTL, now=utc_now() + timedelta(hours=1)
        )

        assert released == []
        with registry.locked("P") as index:
            assert index.find(ref) is not None

    def test_store_delete_is_bounded_by_cutoff(self):
        store = self._store()
        store.expire_hold.return_value = True
        registry = PropertyRegistry(store)
        resolver = ConflictResolver(registry, today=lambda: date(2024, 1, 1))
        ref = _hold(resolver, "2024-06-01", "2024-06-05")
        now = utc_now() + timedelta(hours=1)

        assert expire_property_holds(registry, "P", hold_ttl=TTL, now=now) == [ref]
        store.expire_hold.assert_called_once_with("P", ref, now - TTL)

    def test_sweep_visits_properties_reported_by_store(self):
        store = self._store()
        store.expired_hold_property_ids.return_value = ["remote"]
        registry = PropertyRegistry(store)
        now = utc_now()

        sweep_expired_holds(registry, hold_ttl=TTL, now=now)

        store.expired_hold_property_ids.assert_called_once_with(now - TTL)
        assert registry.property_ids() == ["remote"]
