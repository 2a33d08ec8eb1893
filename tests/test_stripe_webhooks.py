"""Tests for Stripe webhook verification and the webhook endpoint."""

import hashlib
import hmac
import json
import time

import pytest

from practice_bots.services.webhooks.registry import get_handler
from practice_bots.services.webhooks.stripe import (
    SignedWebhookPayload,
    StripeWebhookHandler,
    WebhookPayloadError,
    WebhookSignatureError,
    construct_event,
    parse_stripe_event,
    verify_stripe_signature,
)

from fakes import TEST_STRIPE_SECRET


def _sign(body: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.".encode("utf-8") + body
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


INVOICE_EVENT = {
    "id": "evt_1",
    "object": "event",
    "type": "invoice.paid",
    "data": {
        "object": {
            "id": "in_123",
            "object": "invoice",
            "customer": "cus_123",
            "amount_due": 2000,
            "amount_paid": 2000,
            "currency": "usd",
            "status": "paid",
        }
    },
}


class TestStripeSignature:
    def test_valid_signature(self):
        body = b'{"id": "evt_1", "type": "invoice.paid"}'
        header = _sign(body, "whsec_abc", timestamp=1000)

        assert verify_stripe_signature(body, header, "whsec_abc", tolerance=300, now=1100) == 1000

    def test_any_v1_signature_may_match(self):
        body = b"{}"
        valid = _sign(body, "whsec_abc", timestamp=1000)
        header = f"t=1000,v1={'0' * 64},{valid.split(',')[1]},v0=ignored"

        assert verify_stripe_signature(body, header, "whsec_abc", now=1000) == 1000

    def test_tampered_body_rejected(self):
        header = _sign(b'{"amount": 1}', "whsec_abc", timestamp=1000)

        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(b'{"amount": 2}', header, "whsec_abc", now=1000)

    def test_wrong_secret_rejected(self):
        body = b"{}"
        header = _sign(body, "whsec_other", timestamp=1000)

        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(body, header, "whsec_abc", now=1000)

    def test_stale_timestamp_rejected(self):
        body = b"{}"
        header = _sign(body, "whsec_abc", timestamp=1000)

        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(body, header, "whsec_abc", tolerance=300, now=1301)

    def test_zero_tolerance_skips_age_check(self):
        body = b"{}"
        header = _sign(body, "whsec_abc", timestamp=1000)

        assert verify_stripe_signature(body, header, "whsec_abc", tolerance=0, now=99999) == 1000

    @pytest.mark.parametrize("header", ["", "garbage", "t=abc,v1=deadbeef", "t=1000", "v1=deadbeef"])
    def test_malformed_headers_rejected(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(b"{}", header, "whsec_abc", now=1000)


def test_parse_stripe_event_rejects_invalid_json():
    with pytest.raises(WebhookPayloadError):
        parse_stripe_event(b"{not json")


def test_parse_stripe_event_requires_type():
    with pytest.raises(WebhookPayloadError):
        parse_stripe_event(b'{"id": "evt_1"}')


def test_construct_event_verifies_then_parses():
    body = json.dumps(INVOICE_EVENT).encode()
    event = construct_event(
        SignedWebhookPayload(body=body, signature=_sign(body, "whsec_abc", timestamp=1000)),
        "whsec_abc",
        now=1000,
    )

    assert event.type == "invoice.paid"
    assert event.data.object["id"] == "in_123"


def test_registry_resolves_stripe_handler():
    assert isinstance(get_handler("stripe"), StripeWebhookHandler)


def test_registry_unknown_raises():
    with pytest.raises(KeyError):
        get_handler("nope")


# =============================================================================
# Endpoint
# =============================================================================


@pytest.mark.asyncio
async def test_webhook_reconciles_signed_invoice_event(client, fhir, configured_settings):
    body = json.dumps(INVOICE_EVENT).encode()

    response = await client.post(
        "/webhooks/stripe",
        content=body,
        headers={"stripe-signature": _sign(body, TEST_STRIPE_SECRET), "content-type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "handled": True, "action": "invoice_created"}
    [invoice] = fhir.all("Invoice")
    assert invoice["status"] == "balanced"


@pytest.mark.asyncio
async def test_webhook_ignores_unhandled_event_type(client, fhir, configured_settings):
    body = json.dumps({"id": "evt_2", "type": "charge.refunded", "data": {"object": {}}}).encode()

    response = await client.post(
        "/webhooks/stripe",
        content=body,
        headers={"stripe-signature": _sign(body, TEST_STRIPE_SECRET)},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "handled": False, "action": "ignored"}
    assert fhir.all("Account") == []


@pytest.mark.asyncio
async def test_webhook_bad_signature_returns_structured_400(client, fhir, configured_settings):
    body = json.dumps(INVOICE_EVENT).encode()

    response = await client.post(
        "/webhooks/stripe",
        content=body,
        headers={"stripe-signature": _sign(body, "whsec_wrong")},
    )

    assert response.status_code == 400
    data = response.json()
    assert data["resourceType"] == "OperationOutcome"
    assert data["issue"][0]["details"]["text"].startswith("Webhook Error:")
    assert fhir.calls == []


@pytest.mark.asyncio
async def test_webhook_missing_signature_returns_400(client, configured_settings):
    response = await client.post("/webhooks/stripe", content=json.dumps(INVOICE_EVENT).encode())

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_without_secret_returns_500(client, configured_settings, monkeypatch):
    monkeypatch.setattr(configured_settings, "STRIPE_WEBHOOK_SECRET", "")
    body = json.dumps(INVOICE_EVENT).encode()

    response = await client.post(
        "/webhooks/stripe",
        content=body,
        headers={"stripe-signature": _sign(body, TEST_STRIPE_SECRET)},
    )

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_webhook_rejects_oversized_payload(client, configured_settings, monkeypatch):
    monkeypatch.setattr(configured_settings, "STRIPE_WEBHOOK_MAX_PAYLOAD_BYTES", 10)
    body = json.dumps(INVOICE_EVENT).encode()

    response = await client.post(
        "/webhooks/stripe",
        content=body,
        headers={"stripe-signature": _sign(body, TEST_STRIPE_SECRET)},
    )

    assert response.status_code == 413
