"""Per-property availability index.

Holds every blocked range of one property, sorted by start date:
- BOOKING and HOLD ranges never overlap each other (reserved set);
- EXTERNAL_FEED ranges are stored coalesced (no two overlap or touch).

All sources block a new booking. The index itself is not thread-safe:
callers mutate it only while holding the property lock handed out by
PropertyRegistry.
"""

from __future__ import annotations

import bisect
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Iterable

from bookholiday.domain.blocked_ranges import BlockedRange, BlockSource
from bookholiday.domain.intervals import Interval, coalesce, intersection, overlaps
from bookholiday.infra.time import utc_now


class RangeConflictError(Exception):
    """A reserved range overlaps another reserved range.

    Indicates a race past the property lock; the index is left unchanged.
    """

    def __init__(self, new: BlockedRange, existing: BlockedRange) -> None:
        self.new = new
        self.existing = existing
        super().__init__(
            f"{new.source.value} {new.source_ref} "
            f"({new.start.isoformat()} to {new.end.isoformat()}) conflicts with "
            f"{existing.source.value} {existing.source_ref} "
            f"({existing.start.isoformat()} to {existing.end.isoformat()})"
        )


def _sort_key(r: BlockedRange) -> tuple[date, date, str]:
    return (r.start, r.end, r.source_ref)


def merge_external(ranges: Iterable[BlockedRange], property_id: str) -> list[BlockedRange]:
    """Coalesce EXTERNAL_FEED ranges so that none overlap or touch.

    A merged range keeps the earliest created_at, joins the refs of its
    parts with "+" and keeps the first non-empty reason. A ref already
    used by an earlier merged range gets "@<start date>" appended, so refs
    stay unique per property (the same UID can appear in disjoint events).
    """
    groups: list[list[BlockedRange]] = []
    for r in sorted(ranges, key=_sort_key):
        if groups and r.start <= max(g.end for g in groups[-1]):
            groups[-1].append(r)
        else:
            groups.append([r])

    merged: list[BlockedRange] = []
    used: set[str] = set()
    for group in groups:
        (interval,) = coalesce(g.interval for g in group)
        refs: list[str] = []
        for g in group:
            if g.source_ref not in refs:
                refs.append(g.source_ref)
        source_ref = "+".join(refs)
        if source_ref in used:
            source_ref = f"{source_ref}@{interval.start.isoformat()}"
        used.add(source_ref)
        merged.append(
            BlockedRange(
                interval=interval,
                property_id=property_id,
                source=BlockSource.EXTERNAL_FEED,
                source_ref=source_ref,
                created_at=min(g.created_at for g in group),
                reason=next((g.reason for g in group if g.reason), None),
            )
        )
    return merged


class AvailabilityIndex:
    """Blocked ranges of a single property."""

    def __init__(self, property_id: str) -> None:
        self.property_id = property_id
        self.last_external_sync_at: datetime | None = None
        self._ranges: list[BlockedRange] = []

    def __len__(self) -> int:
        return len(self._ranges)

    @property
    def ranges(self) -> list[BlockedRange]:
        """Snapshot of all ranges, sorted by start."""
        return list(self._ranges)

    def reserved(self) -> list[BlockedRange]:
        return [r for r in self._ranges if r.is_reserved]

    def external(self) -> list[BlockedRange]:
        return [r for r in self._ranges if r.source == BlockSource.EXTERNAL_FEED]

    def find(self, source_ref: str) -> BlockedRange | None:
        for r in self._ranges:
            if r.source_ref == source_ref:
                return r
        return None

    def overlapping(self, interval: Interval, ignore_ref: str | None = None) -> list[BlockedRange]:
        """All ranges that share at least one night with interval."""
        # Ranges are sorted by start; nothing starting at/after interval.end can overlap
        cutoff = bisect.bisect_left([r.start for r in self._ranges], interval.end)
        return [
            r
            for r in self._ranges[:cutoff]
            if overlaps(r.interval, interval) and r.source_ref != ignore_ref
        ]

    def is_free(self, interval: Interval, ignore_ref: str | None = None) -> bool:
        """True iff no range of any source (other than ignore_ref) overlaps interval."""
        return not self.overlapping(interval, ignore_ref)

    def conflicts(self, interval: Interval, ignore_ref: str | None = None) -> list[Interval]:
        """The unavailable sub-ranges of interval, coalesced."""
        parts = [
            intersection(r.interval, interval)
            for r in self.overlapping(interval, ignore_ref)
        ]
        return coalesce(p for p in parts if p is not None)

    def blocks_between(self, start: date, end: date) -> list[Interval]:
        """Coalesced union of blocks overlapping [start, end), not clipped."""
        window = Interval(start, end)
        return coalesce(r.interval for r in self.overlapping(window))

    def add(self, blocked: BlockedRange) -> None:
        """Insert a range.

        Raises:
            ValueError: If the range belongs to another property or its
                source_ref is already present.
            RangeConflictError: If a BOOKING/HOLD range overlaps an existing
                BOOKING/HOLD range. The index is not modified.
        """
        if blocked.property_id != self.property_id:
            raise ValueError(
                f"range for property {blocked.property_id} added to index of {self.property_id}"
            )
        if blocked.is_reserved:
            if self.find(blocked.source_ref) is not None:
                raise ValueError(f"source_ref {blocked.source_ref} already present")
            for existing in self.overlapping(blocked.interval):
                if existing.is_reserved:
                    raise RangeConflictError(blocked, existing)

        bisect.insort(self._ranges, blocked, key=_sort_key)

    def remove(self, source_ref: str) -> bool:
        """Remove every range with this source_ref. Returns whether any was removed."""
        kept = [r for r in self._ranges if r.source_ref != source_ref]
        removed = len(kept) != len(self._ranges)
        self._ranges = kept
        return removed

    def convert_hold(self, source_ref: str) -> BlockedRange | None:
        """Turn a HOLD into a BOOKING in place (same ref, same interval).

        Returns:
            The BOOKING range, or None if no range has this ref. A range that
            already is a BOOKING is returned unchanged.
        """
        for i, r in enumerate(self._ranges):
            if r.source_ref != source_ref:
                continue
            if r.source == BlockSource.HOLD:
                self._ranges[i] = r.as_booking()
            return self._ranges[i]
        return None

    def reschedule(self, source_ref: str, interval: Interval) -> BlockedRange:
        """Move a BOOKING/HOLD range to new dates in one step.

        Raises:
            KeyError: If no reserved range has this ref.
            RangeConflictError: If the new dates overlap another reserved
                range. The index is not modified.
        """
        current = self.find(source_ref)
        if current is None or not current.is_reserved:
            raise KeyError(source_ref)
        moved = replace(current, interval=interval)
        for existing in self.overlapping(interval, ignore_ref=source_ref):
            if existing.is_reserved:
                raise RangeConflictError(moved, existing)
        self._ranges = sorted(
            [moved if r.source_ref == source_ref else r for r in self._ranges],
            key=_sort_key,
        )
        return moved

    def replace_external(
        self,
        ranges: Iterable[BlockedRange],
        synced_at: datetime | None = None,
    ) -> list[BlockedRange]:
        """Swap the whole EXTERNAL_FEED subset for the given ranges.

        Input ranges are coalesced first. Returns the stored ranges.
        """
        incoming = list(ranges)
        for r in incoming:
            if r.source != BlockSource.EXTERNAL_FEED:
                raise ValueError(f"replace_external got a {r.source.value} range")
            if r.property_id != self.property_id:
                raise ValueError(f"feed range for property {r.property_id}")

        merged = merge_external(incoming, self.property_id)
        self._ranges = sorted(self.reserved() + merged, key=_sort_key)
        self.last_external_sync_at = synced_at or utc_now()
        return merged

    def expired_holds(self, now: datetime, ttl: timedelta) -> list[BlockedRange]:
        """HOLD ranges whose age is at least ttl."""
        return [
            r
            for r in self._ranges
            if r.source == BlockSource.HOLD and now - r.created_at >= ttl
        ]

    def load(self, ranges: Iterable[BlockedRange]) -> None:
        """Replace the whole content (used to hydrate from the block store)."""
        ranges = list(ranges)
        reserved = [r for r in ranges if r.is_reserved]
        external = [r for r in ranges if not r.is_reserved]
        fresh = AvailabilityIndex(self.property_id)
        for r in reserved:
            fresh.add(r)
        self._ranges = sorted(
            fresh._ranges + merge_external(external, self.property_id), key=_sort_key
        )
