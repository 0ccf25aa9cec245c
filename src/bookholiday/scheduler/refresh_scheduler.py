"""Refresh scheduler - background loop for feed sync and hold expiry.

Every interval:
1. Sync every property whose external feeds are older than the feed TTL
2. Sweep expired holds

The two steps fail independently; a failing step is logged and the loop
keeps running. Each cycle gets its
own correlation id so its log lines can be grouped.
"""

from __future__ import annotations

import threading

from bookholiday.observability.correlation import correlation_scope
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context
from bookholiday.services.availability import AvailabilityService

logger = get_logger(__name__)


class RefreshScheduler:
    """Daemon thread running sync_stale + hold sweep periodically."""

    def __init__(self, service: AvailabilityService, interval_seconds: float | None = None) -> None:
        self.service = service
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else service.settings.sync_interval_seconds
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> dict:
        """Run one cycle synchronously.

        The sync and the hold sweep fail independently: an error in one
        is logged and the other still runs.

        Returns:
            {"synced": int, "degraded": int, "expired_holds": int, "errors": int}
        """
        summary = {"synced": 0, "degraded": 0, "expired_holds": 0, "errors": 0}
        with correlation_scope():
            try:
                results = self.service.sync_stale()
                summary["synced"] = sum(1 for r in results if r.status == "ok")
                summary["degraded"] = sum(1 for r in results if r.status == "degraded")
            except Exception:
                summary["errors"] += 1
                logger.exception("feed sync step failed")

            try:
                summary["expired_holds"] = self.service.sweep_expired_holds()["expired"]
            except Exception:
                summary["errors"] += 1
                logger.exception("hold sweep step failed")

            logger.info(
                "refresh cycle completed",
                extra={"extra_fields": safe_log_context(**summary)},
            )
        return summary

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("refresh cycle failed")
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        """Start the background thread (no-op if already running)."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="availability-refresh", daemon=True
        )
        self._thread.start()
        logger.info(
            "refresh scheduler started",
            extra={
                "extra_fields": safe_log_context(interval_seconds=self.interval_seconds)
            },
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the loop to stop and wait for the thread."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
