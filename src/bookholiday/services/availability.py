"""Availability service - the public face of the availability core.

Wires the property registry, conflict resolver, feed syncer and hold sweep
together from AvailabilitySettings, and exposes the operations the booking,
payment-webhook and property-management handlers call.

A module-level instance is built lazily from the environment; tests swap
it with set_availability_service().
"""

from __future__ import annotations

import threading
from datetime import date, datetime

from bookholiday.domain.blocked_ranges import BlockedRange
from bookholiday.domain.conflict_resolver import (
    ConflictResolver,
    ReservationMode,
    ReservationResult,
)
from bookholiday.domain.expire_holds import sweep_expired_holds
from bookholiday.domain.feed_sync import FeedSyncer, FeedSyncStatus, SyncResult
from bookholiday.domain.ical_export import export_availability_ics
from bookholiday.domain.intervals import Interval
from bookholiday.domain.property_registry import PropertyProfile, PropertyRegistry
from bookholiday.infra.block_store import BlockStore, create_block_store
from bookholiday.infra.settings import AvailabilitySettings, load_settings


class AvailabilityService:
    """Facade over the availability core for one process."""

    def __init__(
        self,
        settings: AvailabilitySettings | None = None,
        *,
        store: BlockStore | None = None,
        resolver: ConflictResolver | None = None,
        syncer: FeedSyncer | None = None,
    ) -> None:
        self.settings = settings or AvailabilitySettings()
        if resolver is not None:
            self.registry = resolver.registry
        else:
            self.registry = PropertyRegistry(
                store if store is not None else create_block_store(self.settings.store),
                lock_timeout_seconds=self.settings.lock_timeout_seconds,
            )
        self.resolver = resolver or ConflictResolver(
            self.registry,
            property_timezone=self.settings.property_timezone,
            hold_ttl=self.settings.hold_ttl,
        )
        self.syncer = syncer or FeedSyncer(self.registry, self.settings)

    # ── bookings ──────────────────────────────────────────────────────────

    def check_and_reserve(
        self,
        property_id: str,
        start: date,
        end: date,
        guests: int,
        mode: ReservationMode | None = None,
    ) -> ReservationResult:
        return self.resolver.check_and_reserve(property_id, start, end, guests, mode)

    def confirm(self, booking_ref: str) -> BlockedRange:
        return self.resolver.confirm(booking_ref)

    def cancel(self, booking_ref: str) -> bool:
        return self.resolver.cancel(booking_ref)

    def change_dates(self, booking_ref: str, start: date, end: date) -> ReservationResult:
        return self.resolver.change_dates(booking_ref, start, end)

    def configure_property(
        self,
        property_id: str,
        *,
        max_guests: int | None = None,
        instant_booking: bool = False,
    ) -> PropertyProfile:
        profile = PropertyProfile(max_guests=max_guests, instant_booking=instant_booking)
        self.registry.configure(property_id, profile)
        return profile

    def sweep_expired_holds(self, now: datetime | None = None) -> dict:
        return sweep_expired_holds(self.registry, hold_ttl=self.settings.hold_ttl, now=now)

    # ── calendar reads ────────────────────────────────────────────────────

    def query_blocks(self, property_id: str, start: date, end: date) -> list[Interval]:
        return self.resolver.query_blocks(property_id, start, end)

    def is_free(self, property_id: str, start: date, end: date) -> bool:
        return self.resolver.is_free(property_id, start, end)

    def export_ics(self, property_id: str) -> bytes:
        with self.registry.locked(property_id) as index:
            ranges = index.reserved()
        return export_availability_ics(property_id, ranges)

    def blocked_property_ids(self, start: date, end: date) -> list[str]:
        """Properties with any block overlapping [start, end) (search filter)."""
        window = Interval(start, end)
        blocked: list[str] = []
        for property_id in self.registry.property_ids():
            with self.registry.locked(property_id) as index:
                if not index.is_free(window):
                    blocked.append(property_id)
        return blocked

    # ── external feeds ────────────────────────────────────────────────────

    def register_external_feed(self, property_id: str, url: str) -> bool:
        return self.syncer.register_external_feed(property_id, url)

    def sync_now(self, property_id: str, *, force: bool = False) -> SyncResult:
        return self.syncer.sync_now(property_id, force=force)

    def sync_stale(self) -> list[SyncResult]:
        return self.syncer.sync_stale()

    def sync_status(self, property_id: str) -> FeedSyncStatus:
        return self.syncer.sync_status(property_id)

    def feed_urls(self, property_id: str) -> list[str]:
        return self.syncer.feed_urls(property_id)


_service: AvailabilityService | None = None
_service_lock = threading.Lock()


def get_availability_service() -> AvailabilityService:
    """Get the process-wide service, building it from the environment once."""
    global _service
    with _service_lock:
        if _service is None:
            _service = AvailabilityService(load_settings())
        return _service


def set_availability_service(service: AvailabilityService | None) -> None:
    """Replace the process-wide service (None rebuilds it on next access)."""
    global _service
    with _service_lock:
        _service = service
