"""HTTP mapping for availability core errors shared by the route modules."""

from fastapi import HTTPException

from bookholiday.domain.property_registry import LockTimeoutError
from bookholiday.observability.correlation import get_correlation_id
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context

logger = get_logger(__name__)


def lock_timeout_response(e: LockTimeoutError) -> HTTPException:
    """503 + Retry-After for a busy property."""
    logger.warning(
        "property busy",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(), property_id=e.property_id
            )
        },
    )
    return HTTPException(
        status_code=503,
        detail="Property is busy, retry shortly",
        headers={"Retry-After": "1"},
    )
