"""Backing store for availability indexes and feed registrations.

Selected via AVAILABILITY_STORE:
- memory (default): the in-process index is the only copy (dev/tests)
- postgres: shared by every process. The store is authoritative: each
  property decision runs under a Postgres advisory lock and re-reads the
  property's ranges, and every index write goes through to Postgres first.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator, Protocol

from psycopg2 import errors as pg_errors

from bookholiday.domain.blocked_ranges import BlockedRange
from bookholiday.infra.db import txn
from bookholiday.infra.repositories import blocked_ranges_repository, feeds_repository


class StoreConflictError(Exception):
    """The store rejected a reserved range (overlap or duplicate ref).

    Happens when another process reserved the dates first.
    """


class StoreLockTimeoutError(Exception):
    """The store-level property lock was not acquired in time."""


class BlockStore(Protocol):
    """Persistence operations used by the registry, resolver and feed sync.

    shared is True when other processes write to the same store; the
    registry then re-reads a property under property_lock before every
    decision instead of trusting its cached index.
    """

    shared: bool

    def property_lock(self, property_id: str, timeout: float) -> Iterator[None]:
        """Context manager serializing a property across processes.

        Raises:
            StoreLockTimeoutError: If not acquired within timeout seconds.
        """
        ...

    def load(self, property_id: str) -> tuple[list[BlockedRange], datetime | None]:
        """Return (ranges, last_external_sync_at) for a property."""
        ...

    def insert_range(self, blocked: BlockedRange) -> None: ...

    def delete_ref(self, property_id: str, source_ref: str) -> int: ...

    def expire_hold(self, property_id: str, source_ref: str, cutoff: datetime) -> bool: ...

    def expired_hold_property_ids(self, cutoff: datetime) -> list[str]: ...

    def mark_booked(self, property_id: str, source_ref: str) -> bool: ...

    def reschedule(self, property_id: str, source_ref: str, start: date, end: date) -> bool: ...

    def replace_external(
        self,
        property_id: str,
        ranges: Iterable[BlockedRange],
        synced_at: datetime,
    ) -> None: ...

    def add_feed_url(self, property_id: str, url: str) -> bool: ...

    def property_feed_urls(self, property_id: str) -> list[str]: ...

    def feed_urls(self) -> dict[str, list[str]]: ...


class MemoryBlockStore:
    """No-op range persistence; keeps feed registrations in a dict."""

    shared = False

    def __init__(self) -> None:
        self._feeds: dict[str, list[str]] = {}

    @contextmanager
    def property_lock(self, property_id: str, timeout: float) -> Iterator[None]:
        yield

    def load(self, property_id: str) -> tuple[list[BlockedRange], datetime | None]:
        return [], None

    def insert_range(self, blocked: BlockedRange) -> None:
        pass

    def delete_ref(self, property_id: str, source_ref: str) -> int:
        return 0

    def expire_hold(self, property_id: str, source_ref: str, cutoff: datetime) -> bool:
        # The caller's index is the only copy
        return True

    def expired_hold_property_ids(self, cutoff: datetime) -> list[str]:
        return []

    def mark_booked(self, property_id: str, source_ref: str) -> bool:
        return False

    def reschedule(self, property_id: str, source_ref: str, start: date, end: date) -> bool:
        return False

    def replace_external(
        self,
        property_id: str,
        ranges: Iterable[BlockedRange],
        synced_at: datetime,
    ) -> None:
        pass

    def add_feed_url(self, property_id: str, url: str) -> bool:
        urls = self._feeds.setdefault(property_id, [])
        if url in urls:
            return False
        urls.append(url)
        return True

    def property_feed_urls(self, property_id: str) -> list[str]:
        return list(self._feeds.get(property_id, []))

    def feed_urls(self) -> dict[str, list[str]]:
        return {pid: list(urls) for pid, urls in self._feeds.items()}


class PostgresBlockStore:
    """Write-through persistence in Postgres (one short transaction per call).

    property_lock holds its own transaction open for the duration of the
    decision; the writes made under it commit independently.
    """

    shared = True

    @contextmanager
    def property_lock(self, property_id: str, timeout: float) -> Iterator[None]:
        with txn() as cur:
            try:
                blocked_ranges_repository.lock_property(cur, property_id, timeout)
            except pg_errors.LockNotAvailable as e:
                raise StoreLockTimeoutError(
                    f"advisory lock of property {property_id} not acquired in {timeout}s"
                ) from e
            yield

    def load(self, property_id: str) -> tuple[list[BlockedRange], datetime | None]:
        with txn() as cur:
            ranges = blocked_ranges_repository.load_blocked_ranges(cur, property_id)
            synced_at = blocked_ranges_repository.get_last_external_sync(cur, property_id)
        return ranges, synced_at

    def insert_range(self, blocked: BlockedRange) -> None:
        try:
            with txn() as cur:
                blocked_ranges_repository.insert_blocked_range(cur, blocked)
        except (pg_errors.ExclusionViolation, pg_errors.UniqueViolation) as e:
            raise StoreConflictError(
                f"store rejected {blocked.source.value} {blocked.source_ref}"
            ) from e

    def delete_ref(self, property_id: str, source_ref: str) -> int:
        with txn() as cur:
            return blocked_ranges_repository.delete_blocked_ranges(
                cur, property_id=property_id, source_ref=source_ref
            )

    def expire_hold(self, property_id: str, source_ref: str, cutoff: datetime) -> bool:
        with txn() as cur:
            return blocked_ranges_repository.delete_expired_hold(
                cur, property_id=property_id, source_ref=source_ref, cutoff=cutoff
            )

    def expired_hold_property_ids(self, cutoff: datetime) -> list[str]:
        with txn() as cur:
            return blocked_ranges_repository.list_properties_with_expired_holds(cur, cutoff)

    def mark_booked(self, property_id: str, source_ref: str) -> bool:
        with txn() as cur:
            return blocked_ranges_repository.convert_hold_to_booking(
                cur, property_id=property_id, source_ref=source_ref
            )

    def reschedule(self, property_id: str, source_ref: str, start: date, end: date) -> bool:
        try:
            with txn() as cur:
                return blocked_ranges_repository.update_reserved_dates(
                    cur, property_id=property_id, source_ref=source_ref, start=start, end=end
                )
        except pg_errors.ExclusionViolation as e:
            raise StoreConflictError(f"store rejected new dates of {source_ref}") from e

    def replace_external(
        self,
        property_id: str,
        ranges: Iterable[BlockedRange],
        synced_at: datetime,
    ) -> None:
        with txn() as cur:
            blocked_ranges_repository.replace_external_ranges(
                cur, property_id=property_id, ranges=ranges, synced_at=synced_at
            )

    def add_feed_url(self, property_id: str, url: str) -> bool:
        with txn() as cur:
            return feeds_repository.insert_feed_url(cur, property_id=property_id, url=url)

    def property_feed_urls(self, property_id: str) -> list[str]:
        with txn() as cur:
            return feeds_repository.list_feed_urls(cur, property_id)

    def feed_urls(self) -> dict[str, list[str]]:
        with txn() as cur:
            return feeds_repository.list_all_feeds(cur)


def create_block_store(kind: str) -> BlockStore:
    """Build the store named by AVAILABILITY_STORE.

    Raises:
        ValueError: If kind is unknown.
    """
    if kind == "memory":
        return MemoryBlockStore()
    if kind == "postgres":
        return PostgresBlockStore()
    raise ValueError(f"Unknown AVAILABILITY_STORE: {kind}")
