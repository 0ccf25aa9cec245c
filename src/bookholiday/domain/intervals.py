"""Half-open date interval model.

An Interval is [start, end): start is the first blocked night (check-in
day), end is the check-out day and is NOT blocked.

Overlap formula:  (a.start < b.end) AND (b.start < a.end)
Strict inequality allows check-out day == check-in day (touching dates are OK).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable


class InvalidRangeError(ValueError):
    """Raised when an interval is malformed (start >= end) or cannot be merged."""


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open date range [start, end)."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if not isinstance(self.start, date) or not isinstance(self.end, date):
            raise InvalidRangeError("start and end must be dates")
        if self.start >= self.end:
            raise InvalidRangeError(
                f"start must be before end ({self.start.isoformat()} >= {self.end.isoformat()})"
            )

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def overlaps(a: Interval, b: Interval) -> bool:
    """True iff a and b share at least one night."""
    return a.start < b.end and b.start < a.end


def adjacent(a: Interval, b: Interval) -> bool:
    """True iff one interval ends exactly where the other starts."""
    return a.end == b.start or b.end == a.start


def merge(a: Interval, b: Interval) -> Interval:
    """Return the union of two overlapping or adjacent intervals.

    Raises:
        InvalidRangeError: If a and b neither overlap nor touch.
    """
    if not (overlaps(a, b) or adjacent(a, b)):
        raise InvalidRangeError("cannot merge disjoint intervals")
    return Interval(min(a.start, b.start), max(a.end, b.end))


def intersection(a: Interval, b: Interval) -> Interval | None:
    """Return the shared part of a and b, or None if they do not overlap."""
    if not overlaps(a, b):
        return None
    return Interval(max(a.start, b.start), min(a.end, b.end))


def subtract(a: Interval, b: Interval) -> list[Interval]:
    """Return the parts of a not covered by b (zero, one or two intervals)."""
    if not overlaps(a, b):
        return [a]

    remainder: list[Interval] = []
    if a.start < b.start:
        remainder.append(Interval(a.start, b.start))
    if b.end < a.end:
        remainder.append(Interval(b.end, a.end))
    return remainder


def coalesce(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and merge intervals into a minimal list.

    No two intervals in the result overlap or touch.
    """
    result: list[Interval] = []
    for current in sorted(intervals):
        if result and (overlaps(result[-1], current) or result[-1].end == current.start):
            result[-1] = merge(result[-1], current)
        else:
            result.append(current)
    return result
