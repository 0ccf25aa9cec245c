"""Stripe webhook signature validation and payload parsing.

Purpose:
- Validate webhook signature using Stripe-Signature header.
- Extract the minimal data needed to confirm a hold (no full event).
- Never log payload or signature.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import stripe

logger = logging.getLogger(__name__)

# Checkout sessions are created with metadata={"booking_ref": ...}
BOOKING_REF_METADATA_KEY = "booking_ref"

PAYMENT_SUCCEEDED_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    }
)


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


@dataclass
class StripeWebhookEvent:
    """Minimal extracted data from a Stripe webhook event."""

    event_id: str
    event_type: str
    object_id: str | None  # e.g., checkout.session.id
    booking_ref: str | None
    payment_status: str | None = None

    @property
    def confirms_booking(self) -> bool:
        """True if the event means the hold's payment was captured."""
        if self.event_type not in PAYMENT_SUCCEEDED_EVENTS or not self.booking_ref:
            return False
        # "completed" also fires for delayed methods still unpaid
        return self.payment_status in (None, "paid", "no_payment_required")


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str,
    webhook_secret: str,
) -> StripeWebhookEvent:
    """Validate Stripe webhook signature and extract minimal event data.

    Raises:
        InvalidSignatureError: If signature validation fails.
        InvalidPayloadError: If event structure is invalid.
    """
    try:
        event = stripe.Webhook.construct_event(
            payload_bytes,
            signature_header,
            webhook_secret,
        )
    except stripe.SignatureVerificationError as e:
        # Do NOT log signature or payload
        logger.warning("stripe webhook signature verification failed")
        raise InvalidSignatureError("Invalid signature") from e
    except ValueError as e:
        logger.warning("stripe webhook payload parsing failed")
        raise InvalidPayloadError("Invalid payload") from e

    event_id = event.get("id")
    event_type = event.get("type")

    if not event_id or not event_type:
        raise InvalidPayloadError("Missing event id or type")

    obj = _extract_object(event)
    metadata = obj.get("metadata") or {}

    return StripeWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        object_id=obj.get("id"),
        booking_ref=metadata.get(BOOKING_REF_METADATA_KEY),
        payment_status=obj.get("payment_status"),
    )


def _extract_object(event: Any) -> Any:
    """Return data.object of a Stripe event (empty dict if absent)."""
    data = event.get("data") or {}
    return data.get("object") or {}
