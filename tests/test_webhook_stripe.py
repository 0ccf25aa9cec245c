"""Tests for the Stripe webhook: signature handling and hold confirmation."""

from unittest.mock import patch

import pytest
import stripe
from fastapi.testclient import TestClient

from bookholiday.api.factory import create_app
from bookholiday.domain.blocked_ranges import BlockSource
from bookholiday.domain.conflict_resolver import ReservationMode
from bookholiday.domain.property_registry import LockTimeoutError
from bookholiday.stripe.webhook import (
    InvalidPayloadError,
    InvalidSignatureError,
    StripeWebhookEvent,
    verify_and_extract,
)
from tests.helpers import d

VERIFY = "bookholiday.api.routes.webhooks_stripe.verify_and_extract"


def _event(booking_ref, event_type="checkout.session.completed", payment_status="paid"):
    return StripeWebhookEvent(
        event_id="evt_test_12345678",
        event_type=event_type,
        object_id="cs_test_abc123",
        booking_ref=booking_ref,
        payment_status=payment_status,
    )


@pytest.fixture
def client(service, monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
    return TestClient(create_app(role="public"))


@pytest.fixture
def hold_ref(service):
    result = service.check_and_reserve("P", d("2024-06-01"), d("2024-06-05"), 2, ReservationMode.HOLD)
    return result.booking_ref


def _post(client):
    return client.post(
        "/webhooks/stripe", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"}
    )


class TestWebhookRoute:
    def test_payment_confirms_hold(self, client, service, hold_ref):
        with patch(VERIFY, return_value=_event(hold_ref)):
            response = _post(client)

        assert response.status_code == 200
        assert response.text == "ok"
        with service.registry.locked("P") as index:
            assert index.find(hold_ref).source == BlockSource.BOOKING

    def test_duplicate_delivery_is_noop(self, client, hold_ref):
        with patch(VERIFY, return_value=_event(hold_ref)):
            assert _post(client).status_code == 200
            assert _post(client).status_code == 200

    def test_unpaid_completion_ignored(self, client, service, hold_ref):
        with patch(VERIFY, return_value=_event(hold_ref, payment_status="unpaid")):
            response = _post(client)
        assert response.text == "ignored"
        with service.registry.locked("P") as index:
            assert index.find(hold_ref).source == BlockSource.HOLD

    def test_other_event_types_ignored(self, client, hold_ref):
        with patch(VERIFY, return_value=_event(hold_ref, event_type="charge.refunded")):
            assert _post(client).text == "ignored"

    def test_expired_hold_returns_409(self, client):
        with patch(VERIFY, return_value=_event("P~expiredhold")):
            assert _post(client).status_code == 409

    def test_busy_property_returns_503(self, client, service, hold_ref):
        with patch(VERIFY, return_value=_event(hold_ref)), \
             patch.object(service, "confirm", side_effect=LockTimeoutError("P", 5.0)):
            assert _post(client).status_code == 503

    def test_invalid_signature_returns_400(self, client):
        with patch(VERIFY, side_effect=InvalidSignatureError("bad")):
            response = _post(client)
        assert response.status_code == 400
        assert response.text == "invalid signature"

    def test_invalid_payload_returns_400(self, client):
        with patch(VERIFY, side_effect=InvalidPayloadError("bad")):
            assert _post(client).status_code == 400

    def test_missing_secret_returns_500(self, service, monkeypatch):
        monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
        client = TestClient(create_app(role="public"))
        assert _post(client).status_code == 500

    def test_missing_signature_header_returns_422(self, client):
        assert client.post("/webhooks/stripe", content=b"{}").status_code == 422


class TestVerifyAndExtract:
    def test_extracts_booking_ref(self):
        event = {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_1",
                    "payment_status": "paid",
                    "metadata": {"booking_ref": "P~abc"},
                }
            },
        }
        with patch("bookholiday.stripe.webhook.stripe.Webhook.construct_event", return_value=event):
            extracted = verify_and_extract(b"{}", "sig", "whsec")
        assert extracted.booking_ref == "P~abc"
        assert extracted.object_id == "cs_1"
        assert extracted.confirms_booking

    def test_missing_metadata_does_not_confirm(self):
        event = {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}
        with patch("bookholiday.stripe.webhook.stripe.Webhook.construct_event", return_value=event):
            assert not verify_and_extract(b"{}", "sig", "whsec").confirms_booking

    def test_bad_signature(self):
        error = stripe.SignatureVerificationError("bad", "sig")
        with patch("bookholiday.stripe.webhook.stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(InvalidSignatureError):
                verify_and_extract(b"{}", "sig", "whsec")

    def test_bad_payload(self):
        with patch(
            "bookholiday.stripe.webhook.stripe.Webhook.construct_event",
            side_effect=ValueError("bad json"),
        ):
            with pytest.raises(InvalidPayloadError):
                verify_and_extract(b"{}", "sig", "whsec")

    def test_missing_id(self):
        with patch(
            "bookholiday.stripe.webhook.stripe.Webhook.construct_event",
            return_value={"type": "checkout.session.completed"},
        ):
            with pytest.raises(InvalidPayloadError):
                verify_and_extract(b"{}", "sig", "whsec")
