"""Availability service settings.

All values come from environment variables with safe defaults, so the
service runs locally with no configuration (in-memory store, no scheduler).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

StoreKind = Literal["memory", "postgres"]


@dataclass(frozen=True)
class AvailabilitySettings:
    """Tunables for holds, locking and external feed sync.

    Attributes:
        hold_ttl: How long a HOLD blocks dates pending payment.
        lock_timeout_seconds: Max wait for a property lock before LockTimeoutError.
        feed_ttl: A feed synced more recently than this is considered fresh.
        feed_fetch_timeout_seconds: HTTP timeout per feed fetch.
        feed_max_attempts: Fetch/parse attempts per feed before giving up.
        feed_retry_base_seconds: Base of the exponential backoff between attempts.
        sync_interval_seconds: Refresh scheduler period.
        scheduler_enabled: Start the refresh scheduler with the worker app.
        property_timezone: Timezone used to decide what "today" is.
        store: Backing store kind.
    """

    hold_ttl: timedelta = timedelta(minutes=15)
    lock_timeout_seconds: float = 5.0
    feed_ttl: timedelta = timedelta(hours=3)
    feed_fetch_timeout_seconds: float = 10.0
    feed_max_attempts: int = 3
    feed_retry_base_seconds: float = 2.0
    sync_interval_seconds: float = 900.0
    scheduler_enabled: bool = False
    property_timezone: str = "UTC"
    store: StoreKind = "memory"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> AvailabilitySettings:
    """Read AvailabilitySettings from the environment.

    Raises:
        ValueError: If a numeric variable is malformed or out of range.
    """
    store = os.environ.get("AVAILABILITY_STORE", "memory").strip().lower()
    if store not in ("memory", "postgres"):
        raise ValueError(f"AVAILABILITY_STORE must be memory or postgres, got {store!r}")

    max_attempts = int(_env_float("FEED_MAX_ATTEMPTS", 3))
    if max_attempts < 1:
        raise ValueError("FEED_MAX_ATTEMPTS must be at least 1")

    hold_ttl_minutes = _env_float("HOLD_TTL_MINUTES", 15)
    if hold_ttl_minutes <= 0:
        raise ValueError("HOLD_TTL_MINUTES must be positive")

    return AvailabilitySettings(
        hold_ttl=timedelta(minutes=hold_ttl_minutes),
        lock_timeout_seconds=_env_float("LOCK_TIMEOUT_SECONDS", 5.0),
        feed_ttl=timedelta(seconds=_env_float("FEED_TTL_SECONDS", 3 * 60 * 60)),
        feed_fetch_timeout_seconds=_env_float("FEED_FETCH_TIMEOUT_SECONDS", 10.0),
        feed_max_attempts=max_attempts,
        feed_retry_base_seconds=_env_float("FEED_RETRY_BASE_SECONDS", 2.0),
        sync_interval_seconds=_env_float("SYNC_INTERVAL_SECONDS", 900.0),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", False),
        property_timezone=os.environ.get("PROPERTY_TIMEZONE", "UTC"),
        store=store,  # type: ignore[arg-type]
    )
