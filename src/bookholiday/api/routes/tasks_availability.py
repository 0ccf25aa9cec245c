"""Worker routes for availability background jobs (Cloud Scheduler targets).

POST /tasks/availability/sweep-holds   → release expired holds
POST /tasks/availability/sync-stale    → re-sync feeds older than the TTL

These duplicate what the in-process RefreshScheduler does, for deployments
that drive jobs externally instead (SCHEDULER_ENABLED=false).
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from bookholiday.api.task_auth import require_task_auth
from bookholiday.observability.correlation import get_correlation_id
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context
from bookholiday.services.availability import AvailabilityService, get_availability_service

router = APIRouter(
    prefix="/tasks/availability",
    tags=["tasks"],
    dependencies=[Depends(require_task_auth)],
)

logger = get_logger(__name__)


@router.post("/sweep-holds")
def sweep_holds(
    service: AvailabilityService = Depends(get_availability_service),
) -> JSONResponse:
    correlation_id = get_correlation_id()
    try:
        result = service.sweep_expired_holds()
    except Exception:
        logger.exception(
            "sweep-holds task failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "processing failed"})

    logger.info(
        "sweep-holds task completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id, expired=result["expired"], skipped=result["skipped"]
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result})


@router.post("/sync-stale")
def sync_stale(
    service: AvailabilityService = Depends(get_availability_service),
) -> JSONResponse:
    correlation_id = get_correlation_id()
    try:
        results = service.sync_stale()
    except Exception:
        logger.exception(
            "sync-stale task failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "processing failed"})

    return JSONResponse(
        status_code=200,
        content={"ok": True, "results": [r.to_dict() for r in results]},
    )
