"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from bookholiday.api.routes import tasks_availability
from bookholiday.services.availability import get_availability_service

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}


@router.get("/internal/health")
def internal_health() -> dict:
    """Internal subsystem health check, with feed sync counts."""
    service = get_availability_service()
    statuses = [service.sync_status(pid) for pid in service.registry.property_ids()]
    return {
        "status": "ok",
        "subsystem": "internal",
        "properties": len(statuses),
        "degraded_feeds": sum(1 for s in statuses if s.degraded),
    }


router.include_router(tasks_availability.router)
