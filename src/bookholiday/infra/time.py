"""Time utilities for consistent timestamp handling."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def local_today(tz_name: str = "UTC") -> date:
    """Return today's calendar date in the given IANA timezone."""
    return utc_now().astimezone(ZoneInfo(tz_name)).date()
