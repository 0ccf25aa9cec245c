"""Reservation endpoints - the booking handler's entry into the availability core.

POST   /properties/{property_id}/reservations      → check and reserve (201 / 409 / 422 / 503)
POST   /reservations/{booking_ref}/confirm         → HOLD → BOOKING (200 / 404)
DELETE /reservations/{booking_ref}                 → cancel, idempotent (200)
PATCH  /reservations/{booking_ref}                 → change dates (200 / 404 / 409 / 422 / 503)
PUT    /properties/{property_id}/booking-settings  → guest limit / instant booking
"""

from __future__ import annotations

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from bookholiday.api.errors import lock_timeout_response
from bookholiday.domain.conflict_resolver import BookingNotFoundError, ReservationMode
from bookholiday.domain.property_registry import LockTimeoutError
from bookholiday.services.availability import AvailabilityService, get_availability_service

router = APIRouter(tags=["reservations"])


# ── Schemas ───────────────────────────────────────────────────────────────────


class ReserveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: date
    end: date
    guests: int
    mode: Literal["INSTANT", "HOLD"] | None = None


class ChangeDatesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: date
    end: date


class BookingSettingsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_guests: int | None = Field(default=None, ge=1)
    instant_booking: bool = False


# ── POST /properties/{property_id}/reservations ──────────────────────────────


@router.post("/properties/{property_id}/reservations")
def create_reservation(
    body: ReserveRequest,
    property_id: str = Path(..., min_length=1),
    service: AvailabilityService = Depends(get_availability_service),
) -> JSONResponse:
    """Check availability and reserve the dates.

    Returns 201 with the booking_ref when accepted, 409 with the
    unavailable sub-ranges on conflict, 422 on invalid input and 503
    (retryable) when the property lock cannot be acquired.
    """
    mode = ReservationMode(body.mode) if body.mode else None
    try:
        result = service.check_and_reserve(
            property_id, body.start, body.end, body.guests, mode
        )
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    if result.accepted:
        return JSONResponse(status_code=201, content=result.to_dict())
    if result.reason == "unavailable":
        return JSONResponse(status_code=409, content=result.to_dict())
    return JSONResponse(status_code=422, content=result.to_dict())


# ── POST /reservations/{booking_ref}/confirm ─────────────────────────────────


@router.post("/reservations/{booking_ref}/confirm")
def confirm_reservation(
    booking_ref: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    """Convert a HOLD into a BOOKING. Confirming a BOOKING again is a no-op."""
    try:
        booked = service.confirm(booking_ref)
    except BookingNotFoundError as e:
        raise HTTPException(status_code=404, detail="Reservation not found") from e
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    return {"booking_ref": booked.source_ref, "source": booked.source.value}


# ── DELETE /reservations/{booking_ref} ───────────────────────────────────────


@router.delete("/reservations/{booking_ref}")
def cancel_reservation(
    booking_ref: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    """Release the dates. A second call returns cancelled=false."""
    try:
        cancelled = service.cancel(booking_ref)
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    return {"booking_ref": booking_ref, "cancelled": cancelled}


# ── PUT /properties/{property_id}/booking-settings ───────────────────────────


@router.put("/properties/{property_id}/booking-settings")
def update_booking_settings(
    body: BookingSettingsRequest,
    property_id: str = Path(..., min_length=1),
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    profile = service.configure_property(
        property_id,
        max_guests=body.max_guests,
        instant_booking=body.instant_booking,
    )
    return {
        "property_id": property_id,
        "max_guests": profile.max_guests,
        "instant_booking": profile.instant_booking,
    }


# ── PATCH /reservations/{booking_ref} ────────────────────────────────────────


@router.patch("/reservations/{booking_ref}")
def change_reservation_dates(
    booking_ref: str,
    body: ChangeDatesRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> JSONResponse:
    """Move a reservation to new dates, keeping its booking_ref.

    Returns 200 when moved, 409 with the unavailable sub-ranges on
    conflict (the old dates are kept), 422 on invalid dates, 404 for an
    unknown or expired reservation and 503 when the property is busy.
    """
    try:
        result = service.change_dates(booking_ref, body.start, body.end)
    except BookingNotFoundError as e:
        raise HTTPException(status_code=404, detail="Reservation not found") from e
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    if result.accepted:
        content = result.to_dict()
        content.update(start=body.start.isoformat(), end=body.end.isoformat())
        return JSONResponse(status_code=200, content=content)
    if result.reason == "unavailable":
        return JSONResponse(status_code=409, content=result.to_dict())
    return JSONResponse(status_code=422, content=result.to_dict())
