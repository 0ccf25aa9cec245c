"""Hold expiry sweep - releases dates of holds whose payment never arrived.

For each property, under the property lock:
1. Select HOLD ranges whose age >= hold TTL (re-evaluated inside the lock,
   so a hold confirmed meanwhile is never released)
2. Delete each from the store, only while it is still an expired HOLD
   there, then from the index
3. Log one HOLD_EXPIRED line per released hold

The sweep covers the properties loaded in this process plus every
property the store reports with an expired hold, so holds created by
another process sharing the store are released too.

A property whose lock cannot be acquired is skipped and retried on the
next sweep.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from bookholiday.domain.availability_index import AvailabilityIndex
from bookholiday.domain.intervals import Interval, overlaps
from bookholiday.domain.property_registry import LockTimeoutError, PropertyRegistry
from bookholiday.infra.time import utc_now
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context

logger = get_logger(__name__)


def release_expired_holds(
    registry: PropertyRegistry,
    index: AvailabilityIndex,
    *,
    hold_ttl: timedelta,
    now: datetime,
    within: Interval | None = None,
    keep_ref: str | None = None,
) -> list[str]:
    """Release expired holds of an index whose property lock is held.

    Args:
        within: Only release holds overlapping this interval.
        keep_ref: Never release this hold.

    Returns:
        Booking references of the released holds.
    """
    property_id = index.property_id
    cutoff = now - hold_ttl
    released: list[str] = []

    candidates = index.expired_holds(now, hold_ttl)
    if within is not None:
        candidates = [h for h in candidates if overlaps(h.interval, within)]
    if keep_ref is not None:
        candidates = [h for h in candidates if h.source_ref != keep_ref]

    for hold in candidates:
        if not registry.store.expire_hold(property_id, hold.source_ref, cutoff):
            continue
        index.remove(hold.source_ref)
        released.append(hold.source_ref)
        logger.info(
            "HOLD_EXPIRED",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id,
                    booking_ref=hold.source_ref,
                    start=hold.start,
                    end=hold.end,
                    age_seconds=int((now - hold.created_at).total_seconds()),
                )
            },
        )
    return released


def expire_property_holds(
    registry: PropertyRegistry,
    property_id: str,
    *,
    hold_ttl: timedelta,
    now: datetime | None = None,
) -> list[str]:
    """Release expired holds of one property.

    Returns:
        Booking references of the released holds.

    Raises:
        LockTimeoutError: If the property lock is not acquired in time.
    """
    now = now or utc_now()
    with registry.locked(property_id) as index:
        return release_expired_holds(registry, index, hold_ttl=hold_ttl, now=now)


def sweep_expired_holds(
    registry: PropertyRegistry,
    *,
    hold_ttl: timedelta,
    now: datetime | None = None,
) -> dict:
    """Release expired holds across every loaded or stored property.

    Returns:
        {"status": "ok", "expired": int, "properties": int, "skipped": int}
    """
    now = now or utc_now()
    expired = 0
    touched = 0
    skipped = 0

    property_ids = set(registry.property_ids())
    property_ids.update(registry.store.expired_hold_property_ids(now - hold_ttl))

    for property_id in sorted(property_ids):
        try:
            released = expire_property_holds(
                registry, property_id, hold_ttl=hold_ttl, now=now
            )
        except LockTimeoutError:
            skipped += 1
            continue

        if released:
            expired += len(released)
            touched += 1

    return {"status": "ok", "expired": expired, "properties": touched, "skipped": skipped}
