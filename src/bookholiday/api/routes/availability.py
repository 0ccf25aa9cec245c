"""Calendar read endpoints.

GET /properties/{property_id}/blocks?from=&to=     → blocked intervals for calendar display
GET /properties/{property_id}/availability.ics     → our reservations as an iCal feed
GET /availability/blocked-properties?start=&end=  → properties unavailable in a range
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from bookholiday.api.errors import lock_timeout_response
from bookholiday.domain.intervals import InvalidRangeError
from bookholiday.domain.property_registry import LockTimeoutError
from bookholiday.services.availability import AvailabilityService, get_availability_service

router = APIRouter(tags=["availability"])


@router.get("/properties/{property_id}/blocks")
def get_blocks(
    property_id: str,
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    """Blocked intervals (all sources, merged) overlapping [from, to)."""
    try:
        blocks = service.query_blocks(property_id, from_date, to_date)
    except InvalidRangeError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    return {
        "property_id": property_id,
        "from": from_date.isoformat(),
        "to": to_date.isoformat(),
        "blocks": [b.to_dict() for b in blocks],
    }


@router.get("/properties/{property_id}/availability.ics")
def export_availability(
    property_id: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> Response:
    try:
        body = service.export_ics(property_id)
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="property-{property_id}-availability.ics"'
        },
    )


@router.get("/availability/blocked-properties")
def get_blocked_properties(
    start: date = Query(...),
    end: date = Query(...),
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    """Property ids to exclude from search results for [start, end)."""
    try:
        property_ids = service.blocked_property_ids(start, end)
    except InvalidRangeError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    return {"start": start.isoformat(), "end": end.isoformat(), "property_ids": property_ids}
