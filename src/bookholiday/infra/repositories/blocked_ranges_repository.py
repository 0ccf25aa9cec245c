"""Blocked ranges repository - persistence for the availability index.

Uses raw SQL with psycopg2 (no ORM).
The blocked_ranges table carries an exclusion constraint on
(property_id, daterange) for BOOKING/HOLD rows, so a reserved overlap is
also rejected by the database.
"""

from datetime import date, datetime
from typing import Iterable

from psycopg2.extensions import cursor as PgCursor

from bookholiday.domain.blocked_ranges import BlockedRange, BlockSource
from bookholiday.domain.intervals import Interval


def lock_property(cur: PgCursor, property_id: str, timeout_seconds: float) -> None:
    """Take the transaction-scoped advisory lock of a property.

    Released on commit/rollback. Waits at most timeout_seconds, then
    raises psycopg2.errors.LockNotAvailable.
    """
    timeout_ms = max(1, int(timeout_seconds * 1000))
    cur.execute("SELECT set_config('lock_timeout', %s, true)", (f"{timeout_ms}ms",))
    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (property_id,))


def insert_blocked_range(cur: PgCursor, blocked: BlockedRange) -> None:
    """Insert one blocked range.

    Args:
        cur: Database cursor (within transaction).
        blocked: Range to insert.
    """
    cur.execute(
        """
        INSERT INTO blocked_ranges (
            property_id, source, source_ref, start_date, end_date,
            reason, created_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (
            blocked.property_id,
            blocked.source.value,
            blocked.source_ref,
            blocked.start,
            blocked.end,
            blocked.reason,
            blocked.created_at,
        ),
    )


def delete_blocked_ranges(cur: PgCursor, *, property_id: str, source_ref: str) -> int:
    """Delete the BOOKING/HOLD rows of a property with the given source_ref.

    Returns:
        Number of rows deleted.
    """
    cur.execute(
        """
        DELETE FROM blocked_ranges
        WHERE property_id = %s AND source_ref = %s
          AND source IN ('BOOKING', 'HOLD')
        """,
        (property_id, source_ref),
    )
    return cur.rowcount


def delete_expired_hold(
    cur: PgCursor,
    *,
    property_id: str,
    source_ref: str,
    cutoff: datetime,
) -> bool:
    """Delete a HOLD row only if it is still a HOLD created at/before cutoff.

    A hold confirmed by another process in the meantime is left alone.

    Returns:
        True if the hold was deleted.
    """
    cur.execute(
        """
        DELETE FROM blocked_ranges
        WHERE property_id = %s AND source_ref = %s
          AND source = 'HOLD' AND created_at <= %s
        """,
        (property_id, source_ref, cutoff),
    )
    return cur.rowcount > 0


def list_properties_with_expired_holds(cur: PgCursor, cutoff: datetime) -> list[str]:
    """Properties owning at least one HOLD created at/before cutoff."""
    cur.execute(
        """
        SELECT DISTINCT property_id FROM blocked_ranges
        WHERE source = 'HOLD' AND created_at <= %s
        ORDER BY property_id
        """,
        (cutoff,),
    )
    return [row[0] for row in cur.fetchall()]


def convert_hold_to_booking(cur: PgCursor, *, property_id: str, source_ref: str) -> bool:
    """Flip a HOLD row to BOOKING in place (single UPDATE, no delete+insert).

    Returns:
        True if a HOLD row was converted.
    """
    cur.execute(
        """
        UPDATE blocked_ranges
        SET source = 'BOOKING', reason = 'booking'
        WHERE property_id = %s AND source_ref = %s AND source = 'HOLD'
        """,
        (property_id, source_ref),
    )
    return cur.rowcount > 0


def update_reserved_dates(
    cur: PgCursor,
    *,
    property_id: str,
    source_ref: str,
    start: date,
    end: date,
) -> bool:
    """Move a BOOKING/HOLD row to new dates with a single UPDATE.

    The exclusion constraint checks the new dates against every other
    reserved row; the old dates stay blocked until commit.

    Returns:
        True if a row was updated.
    """
    cur.execute(
        """
        UPDATE blocked_ranges
        SET start_date = %s, end_date = %s
        WHERE property_id = %s AND source_ref = %s
          AND source IN ('BOOKING', 'HOLD')
        """,
        (start, end, property_id, source_ref),
    )
    return cur.rowcount > 0


def replace_external_ranges(
    cur: PgCursor,
    *,
    property_id: str,
    ranges: Iterable[BlockedRange],
    synced_at: datetime,
) -> None:
    """Swap the EXTERNAL_FEED rows of a property and record the sync time.

    Must run in the same transaction as the caller's other writes so the
    swap is atomic.
    """
    cur.execute(
        """
        DELETE FROM blocked_ranges
        WHERE property_id = %s AND source = 'EXTERNAL_FEED'
        """,
        (property_id,),
    )
    for blocked in ranges:
        insert_blocked_range(cur, blocked)

    cur.execute(
        """
        INSERT INTO property_sync_state (property_id, last_external_sync_at)
        VALUES (%s, %s)
        ON CONFLICT (property_id) DO UPDATE
        SET last_external_sync_at = EXCLUDED.last_external_sync_at
        """,
        (property_id, synced_at),
    )


def load_blocked_ranges(cur: PgCursor, property_id: str) -> list[BlockedRange]:
    """Load every blocked range of a property, ordered by start date."""
    cur.execute(
        """
        SELECT source, source_ref, start_date, end_date, reason, created_at
        FROM blocked_ranges
        WHERE property_id = %s
        ORDER BY start_date, end_date, source_ref
        """,
        (property_id,),
    )
    return [
        BlockedRange(
            interval=Interval(start_date, end_date),
            property_id=property_id,
            source=BlockSource(source),
            source_ref=source_ref,
            created_at=created_at,
            reason=reason,
        )
        for source, source_ref, start_date, end_date, reason, created_at in cur.fetchall()
    ]


def get_last_external_sync(cur: PgCursor, property_id: str) -> datetime | None:
    """Return the last successful external sync time, or None."""
    cur.execute(
        "SELECT last_external_sync_at FROM property_sync_state WHERE property_id = %s",
        (property_id,),
    )
    row = cur.fetchone()
    return row[0] if row else None
