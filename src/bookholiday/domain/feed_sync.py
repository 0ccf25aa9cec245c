"""External feed sync - pulls registered iCal feeds into availability indexes.

sync_now(property_id):
1. No registered feed -> status "no_feeds"
2. Last success within the feed TTL and not forced -> status "fresh"
3. Fetch + parse every feed, retrying with exponential backoff
4. All feeds OK -> under the property lock, swap the EXTERNAL_FEED set in
   the store and the index -> status "ok"
5. Any feed still failing -> nothing is replaced, the property is marked
   degraded -> status "degraded"

Fetches run outside the property lock; only the swap holds it.
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable

from bookholiday.domain.availability_index import merge_external
from bookholiday.domain.blocked_ranges import BlockedRange
from bookholiday.domain.ical_feed import FeedParseError, parse_feed
from bookholiday.domain.property_registry import LockTimeoutError, PropertyRegistry
from bookholiday.infra.feed_fetcher import FeedFetchError, fetch_feed
from bookholiday.infra.settings import AvailabilitySettings
from bookholiday.infra.time import utc_now
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import redact_url, safe_log_context

logger = get_logger(__name__)

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


class InvalidFeedUrlError(ValueError):
    """Feed URL is not an http(s) URL."""


@dataclass(frozen=True)
class FeedSyncStatus:
    """Sync health of one property.

    degraded is True after a failed sync and stays True until a sync
    succeeds; the previously cached ranges keep blocking meanwhile.
    """

    property_id: str
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    degraded: bool = False
    last_error: str | None = None
    events: int = 0

    def to_dict(self, feeds: list[str] | None = None) -> dict:
        return {
            "property_id": self.property_id,
            "feeds": [redact_url(u) for u in feeds or []],
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "consecutive_failures": self.consecutive_failures,
            "degraded": self.degraded,
            "last_error": self.last_error,
            "events": self.events,
        }


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync_now call."""

    property_id: str
    status: str  # "ok" | "fresh" | "degraded" | "no_feeds"
    events: int = 0
    feeds: int = 0
    skipped_events: int = 0
    synced_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "property_id": self.property_id,
            "status": self.status,
            "events": self.events,
            "feeds": self.feeds,
            "skipped_events": self.skipped_events,
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
            "error": self.error,
        }


@dataclass
class _FeedBatch:
    ranges: list[BlockedRange] = field(default_factory=list)
    skipped: int = 0


class FeedSyncer:
    """Registers feed URLs and refreshes EXTERNAL_FEED blocks."""

    def __init__(
        self,
        registry: PropertyRegistry,
        settings: AvailabilitySettings,
        *,
        fetcher: Callable[[str, float], bytes] = fetch_feed,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self._fetch = fetcher
        self._sleep = sleep
        self._clock = clock
        self._status: dict[str, FeedSyncStatus] = {}
        self._status_lock = threading.Lock()

    # ── registration ──────────────────────────────────────────────────────

    def register_external_feed(self, property_id: str, url: str) -> bool:
        """Register a feed URL for a property.

        Returns:
            True if newly registered, False if already known.

        Raises:
            InvalidFeedUrlError: If url is not http(s).
        """
        url = (url or "").strip()
        if not _URL_PATTERN.match(url):
            raise InvalidFeedUrlError("Invalid iCal URL")

        created = self.registry.store.add_feed_url(property_id, url)
        logger.info(
            "external feed registered",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id, url=url, created=created
                )
            },
        )
        return created

    def feed_urls(self, property_id: str) -> list[str]:
        return self.registry.store.property_feed_urls(property_id)

    # ── status ────────────────────────────────────────────────────────────

    def sync_status(self, property_id: str) -> FeedSyncStatus:
        with self._status_lock:
            return self._status.get(property_id) or FeedSyncStatus(property_id=property_id)

    def _update_status(self, property_id: str, **changes) -> FeedSyncStatus:
        with self._status_lock:
            current = self._status.get(property_id) or FeedSyncStatus(property_id=property_id)
            updated = replace(current, **changes)
            self._status[property_id] = updated
            return updated

    def _mark_failed(self, property_id: str, error: Exception) -> FeedSyncStatus:
        with self._status_lock:
            current = self._status.get(property_id) or FeedSyncStatus(property_id=property_id)
            updated = replace(
                current,
                consecutive_failures=current.consecutive_failures + 1,
                degraded=True,
                last_error=str(error),
            )
            self._status[property_id] = updated
            return updated

    def is_fresh(self, property_id: str, now: datetime | None = None) -> bool:
        last_success = self.sync_status(property_id).last_success_at
        if last_success is None:
            return False
        return (now or self._clock()) - last_success <= self.settings.feed_ttl

    # ── sync ──────────────────────────────────────────────────────────────

    def _fetch_and_parse(self, property_id: str, url: str) -> _FeedBatch:
        """Fetch and parse one feed with exponential backoff.

        Raises:
            FeedFetchError, FeedParseError: After the last attempt fails.
        """
        attempts = self.settings.feed_max_attempts
        for attempt in range(attempts):
            try:
                payload = self._fetch(url, self.settings.feed_fetch_timeout_seconds)
                parsed = parse_feed(payload, property_id=property_id, fetched_at=self._clock())
                return _FeedBatch(ranges=parsed.ranges, skipped=parsed.skipped)
            except (FeedFetchError, FeedParseError) as e:
                if attempt < attempts - 1:
                    delay = self.settings.feed_retry_base_seconds ** (attempt + 1)
                    logger.warning(
                        "feed attempt failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                property_id=property_id,
                                url=url,
                                attempt=attempt + 1,
                                max_attempts=attempts,
                                retry_in_seconds=delay,
                                error=str(e),
                            )
                        },
                    )
                    self._sleep(delay)
                else:
                    raise
        raise AssertionError("unreachable")

    def sync_now(self, property_id: str, *, force: bool = False) -> SyncResult:
        """Re-sync every feed of a property into its index.

        Raises:
            LockTimeoutError: If the property lock is not acquired for the swap.
        """
        urls = self.feed_urls(property_id)
        if not urls:
            return SyncResult(property_id=property_id, status="no_feeds")

        now = self._clock()
        if not force and self.is_fresh(property_id, now):
            status = self.sync_status(property_id)
            return SyncResult(
                property_id=property_id,
                status="fresh",
                events=status.events,
                feeds=len(urls),
                synced_at=status.last_success_at,
            )

        self._update_status(property_id, last_attempt_at=now)
        batch = _FeedBatch()
        for url in urls:
            try:
                feed = self._fetch_and_parse(property_id, url)
            except (FeedFetchError, FeedParseError) as e:
                status = self._mark_failed(property_id, e)
                logger.error(
                    "feed sync degraded, keeping cached blocks",
                    extra={
                        "extra_fields": safe_log_context(
                            property_id=property_id,
                            url=url,
                            consecutive_failures=status.consecutive_failures,
                            error=str(e),
                        )
                    },
                )
                return SyncResult(
                    property_id=property_id,
                    status="degraded",
                    feeds=len(urls),
                    error=str(e),
                )
            batch.ranges.extend(feed.ranges)
            batch.skipped += feed.skipped

        synced_at = self._clock()
        merged = merge_external(batch.ranges, property_id)
        with self.registry.locked(property_id) as index:
            self.registry.store.replace_external(property_id, merged, synced_at)
            index.replace_external(merged, synced_at)

        self._update_status(
            property_id,
            last_success_at=synced_at,
            consecutive_failures=0,
            degraded=False,
            last_error=None,
            events=len(batch.ranges),
        )
        logger.info(
            "feed sync completed",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id,
                    feeds=len(urls),
                    events=len(batch.ranges),
                    stored_ranges=len(merged),
                    skipped_events=batch.skipped,
                )
            },
        )
        return SyncResult(
            property_id=property_id,
            status="ok",
            events=len(batch.ranges),
            feeds=len(urls),
            skipped_events=batch.skipped,
            synced_at=synced_at,
        )

    def sync_stale(self) -> list[SyncResult]:
        """Sync every property whose feeds are older than the feed TTL.

        A property that fails for any other reason than a busy lock is
        marked degraded and reported; the remaining properties still sync.
        """
        results: list[SyncResult] = []
        for property_id in sorted(self.registry.store.feed_urls()):
            if self.is_fresh(property_id):
                continue
            try:
                results.append(self.sync_now(property_id, force=True))
            except LockTimeoutError:
                logger.warning(
                    "stale feed sync skipped, property busy",
                    extra={"extra_fields": safe_log_context(property_id=property_id)},
                )
            except Exception as e:
                logger.exception(
                    "stale feed sync failed",
                    extra={"extra_fields": safe_log_context(property_id=property_id)},
                )
                self._mark_failed(property_id, e)
                results.append(
                    SyncResult(property_id=property_id, status="degraded", error=str(e))
                )
        return results
