"""Stripe webhook route - confirms holds when checkout payment succeeds.

Security rules:
- Validate Stripe-Signature on every request.
- Never log payload or signature header.
- Return 5xx on transient failures (so Stripe retries).

Only the confirm call lives here; payment capture itself is Stripe's job.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, Header, Request, Response
from fastapi.concurrency import run_in_threadpool

from bookholiday.domain.conflict_resolver import BookingNotFoundError
from bookholiday.domain.property_registry import LockTimeoutError
from bookholiday.observability.correlation import get_correlation_id
from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context
from bookholiday.services.availability import get_availability_service
from bookholiday.stripe.webhook import (
    InvalidPayloadError,
    InvalidSignatureError,
    verify_and_extract,
)

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


def _get_webhook_secret() -> str:
    """Get Stripe webhook secret from environment."""
    secret = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET not configured")
    return secret


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
) -> Response:
    """Receive Stripe webhook events.

    Returns:
        200 "ok" when a hold was confirmed, "ignored" for other events.
        400 if the signature or payload is invalid.
        409 if the hold no longer exists (expired or cancelled before payment).
        500/503 on configuration errors or a busy property (Stripe retries).
    """
    correlation_id = get_correlation_id()
    payload_bytes = await request.body()

    try:
        webhook_secret = _get_webhook_secret()
    except RuntimeError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="server configuration error")

    try:
        event = verify_and_extract(payload_bytes, stripe_signature, webhook_secret)
    except InvalidSignatureError:
        logger.warning(
            "stripe signature validation failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid signature")
    except InvalidPayloadError:
        logger.warning(
            "stripe payload invalid",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload")

    logger.info(
        "stripe webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_id_prefix=event.event_id[:8],
                event_type=event.event_type,
            )
        },
    )

    if not event.confirms_booking:
        return Response(status_code=200, content="ignored")

    service = get_availability_service()
    try:
        await run_in_threadpool(service.confirm, event.booking_ref)
    except BookingNotFoundError:
        # Paid after the hold expired: dates may be resold, needs a refund
        logger.error(
            "payment succeeded for unknown or expired hold",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    event_id_prefix=event.event_id[:8],
                    booking_ref=event.booking_ref,
                )
            },
        )
        return Response(status_code=409, content="hold not found")
    except LockTimeoutError:
        return Response(status_code=503, content="property busy")

    return Response(status_code=200, content="ok")
