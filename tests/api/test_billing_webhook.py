"""API tests for POST /api/v1/billing/webhooks/stripe."""

import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from app.services.stripe_service import StripeService
from tests.helpers.mock_factories import make_webhook_event

URL = "/api/v1/billing/webhooks/stripe"
HEADERS = {"stripe-signature": "t=1,v1=abc"}


@pytest.fixture
def webhook_ops():
    with (
        patch("app.api.v1.billing.billing_event_ops") as billing_event_ops,
        patch("app.api.v1.billing.handle_event", new_callable=AsyncMock) as handle_event,
    ):
        billing_event_ops.is_processed = AsyncMock(return_value=False)
        billing_event_ops.mark_processed = AsyncMock()
        handle_event.return_value = True
        yield billing_event_ops, handle_event


class TestWebhookSignature:
    @pytest.mark.anyio
    async def test_missing_signature(self, api_client, webhook_ops):
        resp = await api_client.post(URL, content=b"{}")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "No signature"

    @pytest.mark.anyio
    async def test_invalid_signature(self, api_client, mock_stripe, webhook_ops):
        mock_stripe.construct_webhook_event.side_effect = ValueError("Invalid webhook signature")

        resp = await api_client.post(URL, content=b"{}", headers=HEADERS)

        assert resp.status_code == 400
        _, handle_event = webhook_ops
        handle_event.assert_not_awaited()


class TestWebhookProcessing:
    @pytest.mark.anyio
    async def test_handled_event_marked_and_committed(
        self, api_client, mock_db, mock_stripe, webhook_ops
    ):
        billing_event_ops, handle_event = webhook_ops
        mock_stripe.construct_webhook_event.return_value = make_webhook_event(
            "evt_1", "invoice.payment_succeeded", {"id": "in_1"}
        )

        resp = await api_client.post(URL, content=b"{}", headers=HEADERS)

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        handle_event.assert_awaited_once()
        ctx = handle_event.call_args[0][0]
        assert ctx.event_id == "evt_1"
        assert ctx.stripe is mock_stripe
        billing_event_ops.mark_processed.assert_awaited_once_with(
            mock_db, "evt_1", "invoice.payment_succeeded"
        )
        mock_db.commit.assert_awaited()

    @pytest.mark.anyio
    async def test_unknown_event_type_acknowledged(self, api_client, mock_stripe, webhook_ops):
        _, handle_event = webhook_ops
        handle_event.return_value = False
        mock_stripe.construct_webhook_event.return_value = make_webhook_event(
            "evt_2", "customer.created", {"id": "cus_1"}
        )

        resp = await api_client.post(URL, content=b"{}", headers=HEADERS)

        assert resp.status_code == 200
        assert resp.json() == {"received": True}

    @pytest.mark.anyio
    async def test_duplicate_event_not_reprocessed(self, api_client, mock_stripe, webhook_ops):
        billing_event_ops, handle_event = webhook_ops
        billing_event_ops.is_processed.return_value = True
        mock_stripe.construct_webhook_event.return_value = make_webhook_event(
            "evt_1", "checkout.session.completed", {"id": "cs_1"}
        )

        resp = await api_client.post(URL, content=b"{}", headers=HEADERS)

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "duplicate": True}
        handle_event.assert_not_awaited()

    @pytest.mark.anyio
    async def test_handler_failure_rolls_back_and_returns_500(
        self, api_client, mock_db, mock_stripe, webhook_ops
    ):
        billing_event_ops, handle_event = webhook_ops
        handle_event.side_effect = RuntimeError("database went away")
        mock_stripe.construct_webhook_event.return_value = make_webhook_event(
            "evt_3", "customer.subscription.deleted", {"id": "sub_1"}
        )

        resp = await api_client.post(URL, content=b"{}", headers=HEADERS)

        assert resp.status_code == 500
        assert resp.json() == {"error": "Webhook handler failed"}
        mock_db.rollback.assert_awaited_once()
        billing_event_ops.mark_processed.assert_not_awaited()


# ─────────────────────────────────────────────────────────────────────────────
# Signed payloads through the real Stripe SDK
# ─────────────────────────────────────────────────────────────────────────────

WEBHOOK_SECRET = "whsec_test_signing"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Stripe-Signature header for a payload, as Stripe computes it."""
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _payload(event_id: str, event_type: str, obj: dict) -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "api_version": "2024-06-20",
            "type": event_type,
            "data": {"object": obj},
        }
    ).encode()


@pytest.fixture
def real_stripe_service(api_client):
    """Verify signatures with the real SDK instead of the autouse mock."""
    from app.api.deps import get_stripe_service
    from app.main import app

    service = StripeService(api_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)
    with patch("app.services.stripe_service.stripe", stripe):
        app.dependency_overrides[get_stripe_service] = lambda: service
        yield service


class TestSignedWebhooks:
    @pytest.mark.anyio
    async def test_unhandled_event_type_acknowledged(self, api_client, real_stripe_service):
        payload = _payload("evt_signed_1", "customer.created", {"id": "cus_1", "object": "customer"})

        with patch("app.api.v1.billing.billing_event_ops") as billing_event_ops:
            billing_event_ops.is_processed = AsyncMock(return_value=False)
            billing_event_ops.mark_processed = AsyncMock()
            resp = await api_client.post(
                URL, content=payload, headers={"stripe-signature": _sign(payload)}
            )

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        billing_event_ops.mark_processed.assert_awaited_once()

    @pytest.mark.anyio
    async def test_handler_receives_plain_dicts(self, api_client, real_stripe_service, webhook_ops):
        _, handle_event = webhook_ops
        payload = _payload(
            "evt_signed_2",
            "invoice.payment_failed",
            {"id": "in_1", "object": "invoice", "subscription": "sub_1", "metadata": {}},
        )

        resp = await api_client.post(
            URL, content=payload, headers={"stripe-signature": _sign(payload)}
        )

        assert resp.status_code == 200
        event = handle_event.call_args[0][1]
        assert isinstance(event, dict)
        assert event.get("type") == "invoice.payment_failed"
        assert event["data"]["object"].get("subscription") == "sub_1"

    @pytest.mark.anyio
    async def test_wrong_secret_rejected(self, api_client, real_stripe_service, webhook_ops):
        payload = _payload("evt_signed_3", "customer.created", {"id": "cus_1"})

        resp = await api_client.post(
            URL, content=payload, headers={"stripe-signature": _sign(payload, "whsec_other")}
        )

        assert resp.status_code == 400
