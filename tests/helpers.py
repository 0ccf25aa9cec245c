"""Shared test helper functions for availability tests.

This module contains helper functions that can be imported by both conftest.py
and individual test files. These are NOT fixtures - they are regular functions.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, timezone

from bookholiday.domain.blocked_ranges import BlockedRange, BlockSource
from bookholiday.domain.intervals import Interval, overlaps
from bookholiday.infra.block_store import StoreConflictError, StoreLockTimeoutError

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def d(value: str) -> date:
    """Shorthand for date.fromisoformat."""
    return date.fromisoformat(value)


def make_range(
    start: str,
    end: str,
    *,
    property_id: str = "p1",
    source: BlockSource = BlockSource.BOOKING,
    ref: str | None = None,
    created_at: datetime = FIXED_NOW,
    reason: str | None = None,
) -> BlockedRange:
    """Build a BlockedRange from ISO date strings."""
    return BlockedRange(
        interval=Interval(d(start), d(end)),
        property_id=property_id,
        source=source,
        source_ref=ref or f"{source.value.lower()}-{start}-{end}",
        created_at=created_at,
        reason=reason,
    )


def ics(*events: str) -> bytes:
    """Wrap VEVENT bodies into a VCALENDAR payload (CRLF line endings)."""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//test//feed//EN"]
    for body in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(line.strip() for line in body.strip().splitlines())
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return ("\r\n".join(lines) + "\r\n").encode()


def vevent(uid: str | None, start: str, end: str | None = None, **props: str) -> str:
    """One all-day VEVENT body with VALUE=DATE start/end."""
    lines = []
    if uid is not None:
        lines.append(f"UID:{uid}")
    lines.append(f"DTSTART;VALUE=DATE:{start.replace('-', '')}")
    if end is not None:
        lines.append(f"DTEND;VALUE=DATE:{end.replace('-', '')}")
    for key, value in props.items():
        lines.append(f"{key.upper()}:{value}")
    return "\n".join(lines)


class FakeFetcher:
    """Feed fetcher returning canned payloads or raising canned errors per URL.

    responses maps url -> list of bytes / Exception, consumed in order; the
    last entry repeats once the list is exhausted.
    """

    def __init__(self, responses: dict[str, list]) -> None:
        self.responses = {url: list(items) for url, items in responses.items()}
        self.calls: list[str] = []

    def __call__(self, url: str, timeout: float = 10.0) -> bytes:
        self.calls.append(url)
        items = self.responses[url]
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        return item


class SharedStore:
    """In-process store shared by several registries, like one Postgres.

    Applies the same rules as the blocked_ranges schema: reserved ranges
    never overlap, refs are unique per property, and expiry only deletes a
    row that is still an old HOLD.
    """

    shared = True

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, BlockedRange]] = {}
        self.synced: dict[str, datetime] = {}
        self.feeds: dict[str, list[str]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def property_lock(self, property_id: str, timeout: float):
        with self._locks_guard:
            lock = self._locks.setdefault(property_id, threading.Lock())
        if not lock.acquire(timeout=timeout):
            raise StoreLockTimeoutError(property_id)
        try:
            yield
        finally:
            lock.release()

    def _rows(self, property_id: str) -> dict[str, BlockedRange]:
        return self.rows.setdefault(property_id, {})

    def _check_reserved(self, property_id: str, interval: Interval, ignore_ref: str) -> None:
        for other in self._rows(property_id).values():
            if other.is_reserved and other.source_ref != ignore_ref and overlaps(other.interval, interval):
                raise StoreConflictError(f"{ignore_ref} overlaps {other.source_ref}")

    def get(self, property_id: str, source_ref: str) -> BlockedRange | None:
        return self._rows(property_id).get(source_ref)

    def load(self, property_id: str):
        ranges = sorted(
            self._rows(property_id).values(),
            key=lambda r: (r.start, r.end, r.source_ref),
        )
        return ranges, self.synced.get(property_id)

    def insert_range(self, blocked: BlockedRange) -> None:
        rows = self._rows(blocked.property_id)
        if blocked.source_ref in rows:
            raise StoreConflictError(f"duplicate ref {blocked.source_ref}")
        if blocked.is_reserved:
            self._check_reserved(blocked.property_id, blocked.interval, blocked.source_ref)
        rows[blocked.source_ref] = blocked

    def delete_ref(self, property_id: str, source_ref: str) -> int:
        rows = self._rows(property_id)
        current = rows.get(source_ref)
        if current is None or not current.is_reserved:
            return 0
        del rows[source_ref]
        return 1

    def expire_hold(self, property_id: str, source_ref: str, cutoff: datetime) -> bool:
        rows = self._rows(property_id)
        current = rows.get(source_ref)
        if current is None or current.source != BlockSource.HOLD or current.created_at > cutoff:
            return False
        del rows[source_ref]
        return True

    def expired_hold_property_ids(self, cutoff: datetime) -> list[str]:
        return sorted(
            property_id
            for property_id, rows in self.rows.items()
            if any(r.source == BlockSource.HOLD and r.created_at <= cutoff for r in rows.values())
        )

    def mark_booked(self, property_id: str, source_ref: str) -> bool:
        rows = self._rows(property_id)
        current = rows.get(source_ref)
        if current is None or current.source != BlockSource.HOLD:
            return False
        rows[source_ref] = current.as_booking()
        return True

    def reschedule(self, property_id: str, source_ref: str, start: date, end: date) -> bool:
        rows = self._rows(property_id)
        current = rows.get(source_ref)
        if current is None or not current.is_reserved:
            return False
        interval = Interval(start, end)
        self._check_reserved(property_id, interval, source_ref)
        rows[source_ref] = replace(current, interval=interval)
        return True

    def replace_external(self, property_id: str, ranges, synced_at: datetime) -> None:
        kept = {ref: r for ref, r in self._rows(property_id).items() if r.is_reserved}
        for blocked in ranges:
            if blocked.source_ref in kept:
                raise StoreConflictError(f"duplicate ref {blocked.source_ref}")
            kept[blocked.source_ref] = blocked
        self.rows[property_id] = kept
        self.synced[property_id] = synced_at

    def add_feed_url(self, property_id: str, url: str) -> bool:
        urls = self.feeds.setdefault(property_id, [])
        if url in urls:
            return False
        urls.append(url)
        return True

    def property_feed_urls(self, property_id: str) -> list[str]:
        return list(self.feeds.get(property_id, []))

    def feed_urls(self) -> dict[str, list[str]]:
        return {pid: list(urls) for pid, urls in self.feeds.items()}
