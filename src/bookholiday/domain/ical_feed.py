"""External calendar feed adapter.

Parses iCalendar text (as exported by Airbnb, Booking.com, VRBO, Google
Calendar...) into EXTERNAL_FEED blocked ranges.

Tolerance rules:
- A VEVENT that fails to parse is skipped and logged; the rest of the
  feed is still used.
- Missing UID: a stable synthetic ref is derived from the dates.
- Missing DTEND: DURATION is used if present, else one day.
- Datetime values: start floors to its date, end ceils to the next date
  when it carries a time of day (over-block rather than under-block).
- STATUS:CANCELLED and TRANSP:TRANSPARENT events do not block.
- Recurring events (RRULE/RDATE) block every occurrence up to the
  recurrence horizon, minus EXDATEs and occurrences overridden by a
  RECURRENCE-ID event of the same UID. Each occurrence gets the ref
  "<uid>@<start date>". A rule that cannot be expanded still blocks its
  first occurrence.

A payload that is not a calendar at all raises FeedParseError so that the
caller can keep its previous set of ranges.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar

from bookholiday.domain.blocked_ranges import BlockedRange, BlockSource
from bookholiday.domain.intervals import Interval, InvalidRangeError
from bookholiday.infra.time import utc_now
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context

logger = get_logger(__name__)

RECURRENCE_HORIZON_DAYS = 730


class FeedParseError(Exception):
    """Raised when a feed payload cannot be parsed as a calendar."""


class _SkipEvent(Exception):
    """Internal: the event does not block (cancelled / transparent)."""


@dataclass(frozen=True)
class ParsedFeed:
    """Result of parsing one feed.

    Attributes:
        ranges: Blocking ranges, one per usable VEVENT occurrence.
        skipped: Number of VEVENTs that failed to parse.
        ignored: Number of VEVENTs that parsed but do not block.
    """

    ranges: list[BlockedRange]
    skipped: int = 0
    ignored: int = 0


def _floor_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _ceil_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date()
        return value.date() + timedelta(days=1)
    return value


def _event_bounds(event) -> tuple[date | datetime, date | datetime]:
    dtstart = event.get("DTSTART")
    if dtstart is None:
        raise InvalidRangeError("missing DTSTART")

    start_value = dtstart.dt
    dtend = event.get("DTEND")
    if dtend is not None:
        end_value = dtend.dt
    elif event.get("DURATION") is not None:
        end_value = start_value + event.get("DURATION").dt
    else:
        # RFC 5545: an all-day event without DTEND lasts one day
        end_value = _floor_date(start_value) + timedelta(days=1)
    return start_value, end_value


def _as_rule_datetime(value: date | datetime, like: datetime) -> datetime:
    """Coerce a DATE/DATE-TIME value to the awareness of the rule start."""
    if not isinstance(value, datetime):
        return datetime.combine(value, time(), tzinfo=like.tzinfo)
    if like.tzinfo is None:
        return value.replace(tzinfo=None)
    if value.tzinfo is None:
        return value.replace(tzinfo=like.tzinfo)
    return value


def _date_values(event, name: str) -> list[date | datetime]:
    prop = event.get(name)
    if prop is None:
        return []
    props = prop if isinstance(prop, list) else [prop]
    return [v.dt for p in props for v in p.dts]


def _occurrence_starts(
    event,
    start_value: date | datetime,
    horizon_end: date,
    overridden: list[date | datetime],
) -> list[datetime]:
    if isinstance(start_value, datetime):
        rule_start = start_value
    else:
        rule_start = datetime.combine(start_value, time())
    rules = rruleset()
    rrule = event.get("RRULE")
    if rrule is not None:
        rules.rrule(rrulestr(rrule.to_ical().decode(), dtstart=rule_start))
    else:
        rules.rdate(rule_start)
    for value in _date_values(event, "RDATE"):
        rules.rdate(_as_rule_datetime(value, rule_start))
    for value in _date_values(event, "EXDATE") + overridden:
        rules.exdate(_as_rule_datetime(value, rule_start))

    before = datetime.combine(horizon_end, time(), tzinfo=rule_start.tzinfo)
    return rules.between(rule_start, before, inc=True)


def _event_ranges(
    event,
    property_id: str,
    fetched_at: datetime,
    horizon_end: date,
    overridden: list[date | datetime],
) -> list[BlockedRange]:
    status = str(event.get("STATUS", "")).upper()
    transp = str(event.get("TRANSP", "")).upper()
    if status == "CANCELLED" or transp == "TRANSPARENT":
        raise _SkipEvent()

    start_value, end_value = _event_bounds(event)
    first = Interval(_floor_date(start_value), _ceil_date(end_value))

    uid = event.get("UID")
    uid = str(uid).strip() if uid else ""
    summary = event.get("SUMMARY")

    def _blocked(interval: Interval, source_ref: str) -> BlockedRange:
        return BlockedRange(
            interval=interval,
            property_id=property_id,
            source=BlockSource.EXTERNAL_FEED,
            source_ref=source_ref,
            created_at=fetched_at,
            reason=str(summary) if summary else None,
        )

    if event.get("RRULE") is None and event.get("RDATE") is None:
        ref = uid or f"nouid-{first.start.isoformat()}-{first.end.isoformat()}"
        return [_blocked(first, ref)]

    length = end_value - start_value
    try:
        starts = _occurrence_starts(event, start_value, horizon_end, overridden)
    except (ValueError, TypeError) as e:
        logger.warning(
            "recurring feed event not expanded, blocking first occurrence",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id, uid=uid, error=str(e)
                )
            },
        )
        intervals = [first]
    else:
        intervals = [
            Interval(_floor_date(s), _ceil_date(s + length)) for s in starts
        ]

    prefix = uid or "nouid"
    return [_blocked(i, f"{prefix}@{i.start.isoformat()}") for i in intervals]


def _overridden_occurrences(calendar) -> dict[str, list[date | datetime]]:
    """RECURRENCE-ID values per UID (occurrences replaced by their own VEVENT)."""
    overridden: dict[str, list[date | datetime]] = {}
    for event in calendar.walk("VEVENT"):
        recurrence_id = event.get("RECURRENCE-ID")
        uid = event.get("UID")
        if recurrence_id is not None and uid:
            overridden.setdefault(str(uid).strip(), []).append(recurrence_id.dt)
    return overridden


def parse_feed(
    payload: bytes | str,
    *,
    property_id: str,
    fetched_at: datetime | None = None,
    horizon_days: int = RECURRENCE_HORIZON_DAYS,
) -> ParsedFeed:
    """Parse an iCalendar payload into EXTERNAL_FEED blocked ranges.

    Args:
        payload: Raw feed body.
        property_id: Property the feed belongs to.
        fetched_at: Fetch timestamp, used as created_at of every range.
        horizon_days: Recurring events are expanded up to this many days
            after fetched_at.

    Returns:
        ParsedFeed with the usable ranges and skip counters.

    Raises:
        FeedParseError: If payload is not an iCalendar VCALENDAR.
    """
    fetched_at = fetched_at or utc_now()
    horizon_end = fetched_at.date() + timedelta(days=horizon_days)

    try:
        calendar = Calendar.from_ical(payload)
    except (ValueError, IndexError, KeyError) as e:
        raise FeedParseError(f"invalid calendar payload: {e}") from e

    if getattr(calendar, "name", None) != "VCALENDAR":
        raise FeedParseError("payload is not a VCALENDAR")

    overridden = _overridden_occurrences(calendar)
    ranges: list[BlockedRange] = []
    skipped = 0
    ignored = 0

    for event in calendar.walk("VEVENT"):
        uid = str(event.get("UID", "")).strip()
        # An override carries RECURRENCE-ID and never its own RRULE
        event_overrides = [] if event.get("RECURRENCE-ID") is not None else overridden.get(uid, [])
        try:
            ranges.extend(
                _event_ranges(event, property_id, fetched_at, horizon_end, event_overrides)
            )
        except _SkipEvent:
            ignored += 1
        except (InvalidRangeError, ValueError, TypeError, AttributeError) as e:
            skipped += 1
            logger.warning(
                "feed event skipped",
                extra={
                    "extra_fields": safe_log_context(
                        property_id=property_id,
                        uid=uid,
                        error=str(e),
                    )
                },
            )

    return ParsedFeed(ranges=ranges, skipped=skipped, ignored=ignored)
