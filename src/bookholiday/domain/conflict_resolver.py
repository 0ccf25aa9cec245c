"""Conflict resolver - accept or reject booking attempts.

Each attempt runs REQUESTED -> CHECKING -> {ACCEPTED, REJECTED}:
1. REQUESTED: validate guests > 0, start < end, start >= today and the
   property's guest limit. Invalid input is REJECTED with InvalidRequestError.
2. CHECKING: take the property lock (bounded wait), release expired holds
   overlapping the request, check the index.
   - Free: write a HOLD (or BOOKING in instant mode) to the store, then to
     the index, ACCEPTED.
   - Blocked: REJECTED with DateRangeUnavailableError naming the
     unavailable sub-ranges.
Rejected attempts never add to the index.

change_dates re-runs the same check for an existing HOLD or BOOKING with
its own range ignored, then moves it in place.

Validation and unavailability come back as ReservationResult values.
LockTimeoutError propagates to the caller as a retryable error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable

from bookholiday.domain.availability_index import AvailabilityIndex, RangeConflictError
from bookholiday.domain.blocked_ranges import BlockedRange, BlockSource, block_for_booking
from bookholiday.domain.expire_holds import release_expired_holds
from bookholiday.domain.intervals import Interval, InvalidRangeError
from bookholiday.domain.property_registry import (
    PropertyRegistry,
    make_booking_ref,
    property_of_ref,
)
from bookholiday.infra.block_store import StoreConflictError
from bookholiday.infra.time import local_today, utc_now
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context

logger = get_logger(__name__)


class ReservationMode(str, Enum):
    INSTANT = "INSTANT"
    HOLD = "HOLD"


class ResolutionState(str, Enum):
    REQUESTED = "REQUESTED"
    CHECKING = "CHECKING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class InvalidRequestError(ValueError):
    """Booking input is malformed (guests, dates, guest limit)."""


class DateRangeUnavailableError(Exception):
    """Requested dates overlap existing blocks. Expected, user-facing."""

    def __init__(self, requested: Interval, unavailable: list[Interval]) -> None:
        self.requested = requested
        self.unavailable = unavailable
        spans = ", ".join(
            f"{i.start.isoformat()} to {i.end.isoformat()}" for i in unavailable
        )
        super().__init__(f"Dates unavailable: {spans}")


class BookingNotFoundError(Exception):
    """No HOLD or BOOKING exists for the booking reference."""


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of check_and_reserve.

    Attributes:
        status: ACCEPTED or REJECTED.
        property_id: Property of the attempt.
        booking_ref: Reference of the created block (ACCEPTED only).
        source: HOLD or BOOKING (ACCEPTED only).
        reason: Machine-readable rejection reason.
        error: The typed rejection (InvalidRequestError or
            DateRangeUnavailableError).
        unavailable: Unavailable sub-ranges of the request (REJECTED on conflict).
    """

    status: ResolutionState
    property_id: str
    booking_ref: str | None = None
    source: BlockSource | None = None
    reason: str | None = None
    error: Exception | None = None
    unavailable: list[Interval] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status == ResolutionState.ACCEPTED

    def to_dict(self) -> dict:
        data: dict = {"status": self.status.value, "property_id": self.property_id}
        if self.accepted:
            data["booking_ref"] = self.booking_ref
            data["source"] = self.source.value if self.source else None
        else:
            data["reason"] = self.reason
            data["detail"] = str(self.error) if self.error else None
            data["unavailable"] = [i.to_dict() for i in self.unavailable]
        return data


class ConflictResolver:
    """Serializes booking decisions per property through the registry lock.

    When hold_ttl is set, expired holds overlapping a request are released
    under the lock before the availability check, so a request never loses
    to a hold whose payment window has passed.
    """

    def __init__(
        self,
        registry: PropertyRegistry,
        *,
        today: Callable[[], date] | None = None,
        property_timezone: str = "UTC",
        hold_ttl: timedelta | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.hold_ttl = hold_ttl
        self._today = today or (lambda: local_today(property_timezone))
        self._clock = clock

    def _validate_dates(self, start: date, end: date) -> Interval:
        try:
            interval = Interval(start, end)
        except InvalidRangeError as e:
            raise InvalidRequestError(str(e)) from e

        if interval.start < self._today():
            raise InvalidRequestError("start date must not be in the past")
        return interval

    def _validate(
        self, property_id: str, start: date, end: date, guests: int
    ) -> Interval:
        if not isinstance(guests, int) or isinstance(guests, bool) or guests <= 0:
            raise InvalidRequestError("guests must be a positive integer")

        interval = self._validate_dates(start, end)

        max_guests = self.registry.profile(property_id).max_guests
        if max_guests is not None and guests > max_guests:
            raise InvalidRequestError(
                f"Maximum {max_guests} guests allowed for this property"
            )
        return interval

    def _rejected(
        self,
        property_id: str,
        reason: str,
        error: Exception,
        unavailable: list[Interval] | None = None,
        *,
        state: ResolutionState,
        booking_ref: str | None = None,
    ) -> ReservationResult:
        logger.info(
            "reservation rejected",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id,
                    booking_ref=booking_ref,
                    reason=reason,
                    rejected_in=state.value,
                    unavailable_count=len(unavailable or []),
                )
            },
        )
        return ReservationResult(
            status=ResolutionState.REJECTED,
            property_id=property_id,
            booking_ref=booking_ref,
            reason=reason,
            error=error,
            unavailable=list(unavailable or []),
        )

    def _release_expired(
        self, index: AvailabilityIndex, interval: Interval, keep_ref: str | None = None
    ) -> None:
        if self.hold_ttl is None:
            return
        release_expired_holds(
            self.registry,
            index,
            hold_ttl=self.hold_ttl,
            now=self._clock(),
            within=interval,
            keep_ref=keep_ref,
        )

    def check_and_reserve(
        self,
        property_id: str,
        start: date,
        end: date,
        guests: int,
        mode: ReservationMode | None = None,
    ) -> ReservationResult:
        """Atomically check availability and reserve [start, end).

        Args:
            property_id: Property identifier.
            start: Check-in date (inclusive).
            end: Check-out date (exclusive).
            guests: Number of guests.
            mode: INSTANT (BOOKING) or HOLD. None uses the property profile.

        Returns:
            ReservationResult, ACCEPTED with a booking_ref or REJECTED with
            reason "invalid_request" or "unavailable".

        Raises:
            LockTimeoutError: If the property lock is not acquired in time.
            RangeConflictError: If the index invariant is violated (bug).
        """
        state = ResolutionState.REQUESTED
        try:
            interval = self._validate(property_id, start, end, guests)
        except InvalidRequestError as e:
            return self._rejected(property_id, "invalid_request", e, state=state)

        if mode is None:
            instant = self.registry.profile(property_id).instant_booking
            mode = ReservationMode.INSTANT if instant else ReservationMode.HOLD

        state = ResolutionState.CHECKING
        with self.registry.locked(property_id) as index:
            self._release_expired(index, interval)
            if not index.is_free(interval):
                unavailable = index.conflicts(interval)
                return self._rejected(
                    property_id,
                    "unavailable",
                    DateRangeUnavailableError(interval, unavailable),
                    unavailable,
                    state=state,
                )

            blocked = block_for_booking(
                property_id=property_id,
                booking_ref=make_booking_ref(property_id),
                start=interval.start,
                end=interval.end,
                confirmed=mode == ReservationMode.INSTANT,
                created_at=self._clock(),
            )

            try:
                self.registry.store.insert_range(blocked)
            except StoreConflictError:
                # Reserved by another process sharing the store
                return self._rejected(
                    property_id,
                    "unavailable",
                    DateRangeUnavailableError(interval, [interval]),
                    [interval],
                    state=state,
                )

            try:
                index.add(blocked)
            except RangeConflictError as e:
                logger.error(
                    "reserved range conflict past the property lock",
                    extra={
                        "extra_fields": safe_log_context(
                            property_id=property_id,
                            new_ref=e.new.source_ref,
                            existing_ref=e.existing.source_ref,
                        )
                    },
                )
                self.registry.store.delete_ref(property_id, blocked.source_ref)
                raise

        state = ResolutionState.ACCEPTED
        logger.info(
            "reservation accepted",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id,
                    booking_ref=blocked.source_ref,
                    source=blocked.source.value,
                    nights=interval.nights,
                    state=state.value,
                )
            },
        )
        return ReservationResult(
            status=state,
            property_id=property_id,
            booking_ref=blocked.source_ref,
            source=blocked.source,
        )

    def change_dates(self, booking_ref: str, start: date, end: date) -> ReservationResult:
        """Move a HOLD or BOOKING to [start, end), keeping its ref and source.

        The booking's own dates do not count as a conflict. The range is
        replaced in one step, so its old dates stay blocked until the new
        ones are taken.

        Returns:
            ReservationResult, ACCEPTED with the same booking_ref or
            REJECTED with reason "invalid_request" or "unavailable" (the
            booking then keeps its old dates).

        Raises:
            BookingNotFoundError: Unknown ref, or the hold was already
                expired or cancelled.
            LockTimeoutError: If the property lock is not acquired in time.
        """
        property_id = property_of_ref(booking_ref)
        if property_id is None:
            raise BookingNotFoundError(f"Unknown booking reference {booking_ref}")

        state = ResolutionState.REQUESTED
        try:
            interval = self._validate_dates(start, end)
        except InvalidRequestError as e:
            return self._rejected(
                property_id, "invalid_request", e, state=state, booking_ref=booking_ref
            )

        state = ResolutionState.CHECKING
        with self.registry.locked(property_id) as index:
            current = index.find(booking_ref)
            if current is None or not current.is_reserved:
                raise BookingNotFoundError(f"Unknown booking reference {booking_ref}")

            self._release_expired(index, interval, keep_ref=booking_ref)
            if not index.is_free(interval, ignore_ref=booking_ref):
                unavailable = index.conflicts(interval, ignore_ref=booking_ref)
                return self._rejected(
                    property_id,
                    "unavailable",
                    DateRangeUnavailableError(interval, unavailable),
                    unavailable,
                    state=state,
                    booking_ref=booking_ref,
                )

            try:
                self.registry.store.reschedule(
                    property_id, booking_ref, interval.start, interval.end
                )
            except StoreConflictError:
                return self._rejected(
                    property_id,
                    "unavailable",
                    DateRangeUnavailableError(interval, [interval]),
                    [interval],
                    state=state,
                    booking_ref=booking_ref,
                )

            try:
                moved = index.reschedule(booking_ref, interval)
            except RangeConflictError:
                self.registry.store.reschedule(
                    property_id, booking_ref, current.start, current.end
                )
                raise

        logger.info(
            "reservation dates changed",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id,
                    booking_ref=booking_ref,
                    source=moved.source.value,
                    old_start=current.start,
                    old_end=current.end,
                    start=moved.start,
                    end=moved.end,
                )
            },
        )
        return ReservationResult(
            status=ResolutionState.ACCEPTED,
            property_id=property_id,
            booking_ref=booking_ref,
            source=moved.source,
        )

    def confirm(self, booking_ref: str) -> BlockedRange:
        """Convert a HOLD into a BOOKING in place (payment captured).

        Confirming an existing BOOKING is a no-op.

        Raises:
            BookingNotFoundError: Unknown ref, or the hold was already
                expired or cancelled.
            LockTimeoutError: If the property lock is not acquired in time.
        """
        property_id = property_of_ref(booking_ref)
        if property_id is None:
            raise BookingNotFoundError(f"Unknown booking reference {booking_ref}")

        with self.registry.locked(property_id) as index:
            existing = index.find(booking_ref)
            if existing is None or not existing.is_reserved:
                raise BookingNotFoundError(f"Unknown booking reference {booking_ref}")

            if existing.source == BlockSource.BOOKING:
                return existing

            self.registry.store.mark_booked(property_id, booking_ref)
            booked = index.convert_hold(booking_ref)

        logger.info(
            "hold confirmed",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id, booking_ref=booking_ref
                )
            },
        )
        return booked

    def cancel(self, booking_ref: str) -> bool:
        """Release the dates of a HOLD or BOOKING. Idempotent.

        Returns:
            True if something was removed, False if nothing matched.
        """
        property_id = property_of_ref(booking_ref)
        if property_id is None:
            return False

        with self.registry.locked(property_id) as index:
            existing = index.find(booking_ref)
            if existing is None or not existing.is_reserved:
                return False
            self.registry.store.delete_ref(property_id, booking_ref)
            index.remove(booking_ref)

        logger.info(
            "reservation cancelled",
            extra={
                "extra_fields": safe_log_context(
                    property_id=property_id,
                    booking_ref=booking_ref,
                    source=existing.source.value,
                )
            },
        )
        return True

    def is_free(self, property_id: str, start: date, end: date) -> bool:
        with self.registry.locked(property_id) as index:
            return index.is_free(Interval(start, end))

    def query_blocks(self, property_id: str, start: date, end: date) -> list[Interval]:
        """Coalesced blocked intervals overlapping [start, end).

        Raises:
            InvalidRangeError: If start >= end.
        """
        window = Interval(start, end)
        with self.registry.locked(property_id) as index:
            return index.blocks_between(window.start, window.end)
