"""Per-property availability state: index, lock and booking profile.

One PropertyRegistry owns every AvailabilityIndex of the process. Each
property gets one mutual-exclusion lock; booking acceptance, confirmation,
cancellation, feed replacement and the hold sweep all run under it, so
decisions for one property are totally ordered by lock acquisition.

Indexes are created lazily on first access and hydrated from the block
store while the property lock is held. A shared store (Postgres) is the
source of truth across processes: its own property lock is taken too and
the index is reloaded every time.
"""

from __future__ import annotations

import secrets
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from bookholiday.domain.availability_index import AvailabilityIndex
from bookholiday.infra.block_store import BlockStore, MemoryBlockStore, StoreLockTimeoutError
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context

logger = get_logger(__name__)

_REF_SEPARATOR = "~"


class LockTimeoutError(Exception):
    """The property lock could not be acquired in time. Retryable."""

    def __init__(self, property_id: str, timeout: float) -> None:
        self.property_id = property_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for property {property_id}")


@dataclass(frozen=True)
class PropertyProfile:
    """Booking rules of a property.

    Attributes:
        max_guests: Guest limit, None for unlimited.
        instant_booking: Reserve as BOOKING instead of HOLD when the
            request does not choose a mode.
    """

    max_guests: int | None = None
    instant_booking: bool = False


@dataclass
class _PropertyEntry:
    index: AvailabilityIndex
    lock: threading.Lock = field(default_factory=threading.Lock)
    profile: PropertyProfile = field(default_factory=PropertyProfile)
    hydrated: bool = False


def make_booking_ref(property_id: str) -> str:
    """New booking reference; carries the property id so it can be routed."""
    return f"{property_id}{_REF_SEPARATOR}{secrets.token_urlsafe(12)}"


def property_of_ref(booking_ref: str) -> str | None:
    """Property id encoded in a booking reference, or None if malformed."""
    property_id, sep, token = booking_ref.rpartition(_REF_SEPARATOR)
    if not sep or not property_id or not token:
        return None
    return property_id


class PropertyRegistry:
    """Lazily created, lock-guarded availability indexes keyed by property."""

    def __init__(
        self,
        store: BlockStore | None = None,
        lock_timeout_seconds: float = 5.0,
    ) -> None:
        self.store: BlockStore = store if store is not None else MemoryBlockStore()
        self.lock_timeout_seconds = lock_timeout_seconds
        self._entries: dict[str, _PropertyEntry] = {}
        self._entries_lock = threading.Lock()

    def _entry(self, property_id: str) -> _PropertyEntry:
        with self._entries_lock:
            entry = self._entries.get(property_id)
            if entry is None:
                entry = _PropertyEntry(index=AvailabilityIndex(property_id))
                self._entries[property_id] = entry
            return entry

    def _hydrate(self, entry: _PropertyEntry) -> None:
        ranges, synced_at = self.store.load(entry.index.property_id)
        entry.index.load(ranges)
        entry.index.last_external_sync_at = synced_at
        if ranges and not entry.hydrated:
            logger.info(
                "availability index hydrated",
                extra={
                    "extra_fields": safe_log_context(
                        property_id=entry.index.property_id,
                        ranges=len(ranges),
                    )
                },
            )
        entry.hydrated = True

    def _timeout(self, property_id: str, wait: float) -> LockTimeoutError:
        logger.warning(
            "property lock timeout",
            extra={"extra_fields": safe_log_context(property_id=property_id, timeout=wait)},
        )
        return LockTimeoutError(property_id, wait)

    @contextmanager
    def locked(
        self,
        property_id: str,
        timeout: float | None = None,
    ) -> Iterator[AvailabilityIndex]:
        """Hold the property lock and yield its index.

        With a shared store the store-level lock is taken as well and the
        index is re-read from the store, so the yielded index reflects
        writes made by other processes.

        Args:
            property_id: Property identifier.
            timeout: Max seconds to wait (default: lock_timeout_seconds).

        Raises:
            LockTimeoutError: If the lock is not acquired within timeout.
        """
        wait = self.lock_timeout_seconds if timeout is None else timeout
        entry = self._entry(property_id)

        if not entry.lock.acquire(timeout=wait):
            raise self._timeout(property_id, wait)

        try:
            with ExitStack() as stack:
                try:
                    stack.enter_context(self.store.property_lock(property_id, wait))
                except StoreLockTimeoutError as e:
                    raise self._timeout(property_id, wait) from e
                if self.store.shared or not entry.hydrated:
                    self._hydrate(entry)
                yield entry.index
        finally:
            entry.lock.release()

    def profile(self, property_id: str) -> PropertyProfile:
        return self._entry(property_id).profile

    def configure(self, property_id: str, profile: PropertyProfile) -> None:
        self._entry(property_id).profile = profile

    def property_ids(self) -> list[str]:
        """Properties that have an index in this process."""
        with self._entries_lock:
            return sorted(self._entries)
