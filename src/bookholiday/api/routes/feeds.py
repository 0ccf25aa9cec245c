"""External calendar feed endpoints (property management "iCal sync").

POST /properties/{property_id}/feeds          → register one or more feed URLs
POST /properties/{property_id}/feeds/sync     → sync now ({"force": true} ignores the TTL)
GET  /properties/{property_id}/feeds/status   → sync health
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, model_validator

from bookholiday.api.errors import lock_timeout_response
from bookholiday.domain.feed_sync import InvalidFeedUrlError
from bookholiday.domain.property_registry import LockTimeoutError
from bookholiday.services.availability import AvailabilityService, get_availability_service

router = APIRouter(prefix="/properties/{property_id}/feeds", tags=["feeds"])


class RegisterFeedsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    urls: list[str] | None = None

    @model_validator(mode="after")
    def _at_least_one(self) -> "RegisterFeedsRequest":
        if not self.url and not self.urls:
            raise ValueError("url or urls is required")
        return self

    def all_urls(self) -> list[str]:
        return list(self.urls or []) + ([self.url] if self.url else [])


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    force: bool = False


@router.post("")
def register_feeds(
    property_id: str,
    body: RegisterFeedsRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    urls = body.all_urls()
    try:
        created = [service.register_external_feed(property_id, u) for u in urls]
    except InvalidFeedUrlError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return {
        "property_id": property_id,
        "registered": sum(created),
        "feeds": len(service.feed_urls(property_id)),
    }


@router.post("/sync")
def sync_feeds(
    property_id: str,
    body: SyncRequest | None = None,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    """Fetch every registered feed and replace the external blocks.

    A degraded sync still answers 200: previous blocks stay in place and
    the status says so.
    """
    force = body.force if body else False
    try:
        result = service.sync_now(property_id, force=force)
    except LockTimeoutError as e:
        raise lock_timeout_response(e) from e

    if result.status == "no_feeds":
        raise HTTPException(status_code=404, detail="No feeds registered for property")
    return result.to_dict()


@router.get("/status")
def feeds_status(
    property_id: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict:
    status = service.sync_status(property_id)
    return status.to_dict(service.feed_urls(property_id))
