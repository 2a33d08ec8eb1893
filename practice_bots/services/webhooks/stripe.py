"""Stripe webhook handler."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from practice_bots.core.config import settings
from practice_bots.schemas.billing import StripeEvent
from practice_bots.services import billing_service
from practice_bots.services.billing_service import BillingConfig
from practice_bots.services.fhir_client import FHIRClient
from practice_bots.services.fhir_utils import operation_outcome

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
SIGNATURE_SCHEME = "v1"


class WebhookSignatureError(ValueError):
    """The Stripe-Signature header is missing, malformed, stale or wrong."""


class WebhookPayloadError(ValueError):
    """The verified body is not a usable Stripe event."""


@dataclass(frozen=True)
class SignedWebhookPayload:
    """Raw webhook body as received over HTTP, before verification."""

    body: bytes
    signature: str


def _parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("Malformed signature timestamp")
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    if timestamp is None:
        raise WebhookSignatureError("Signature header missing timestamp")
    if not signatures:
        raise WebhookSignatureError(f"Signature header missing {SIGNATURE_SCHEME} signature")
    return timestamp, signatures


def verify_stripe_signature(
    body: bytes,
    header: str,
    secret: str,
    *,
    tolerance: int = 300,
    now: float | None = None,
) -> int:
    """
    Verify a Stripe-Signature header against the raw request body.

    Stripe signs ``"{t}.{body}"`` with HMAC-SHA256 keyed by the endpoint
    secret (used as-is, ``whsec_`` prefix included). Any ``v1`` entry may
    match; ``v0`` test signatures are ignored.

    Returns the signed timestamp. Raises WebhookSignatureError otherwise.
    """
    if not header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    timestamp, signatures = _parse_signature_header(header)

    # Reject stale timestamps to prevent replay attacks
    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    signed_payload = f"{timestamp}.".encode("utf-8") + body
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("No signatures found matching the expected signature")
    return timestamp


def parse_stripe_event(body: bytes) -> StripeEvent:
    """Validate the event envelope ``{id, type, data.object}``."""
    try:
        return StripeEvent.model_validate_json(body)
    except ValidationError as exc:
        raise WebhookPayloadError(f"Invalid Stripe event: {exc.error_count()} error(s)") from exc


def construct_event(
    payload: SignedWebhookPayload,
    secret: str,
    *,
    tolerance: int = 300,
    now: float | None = None,
) -> StripeEvent:
    verify_stripe_signature(payload.body, payload.signature, secret, tolerance=tolerance, now=now)
    return parse_stripe_event(payload.body)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content=operation_outcome(message, code="invalid"))


async def _read_body_safe(request: Request, max_bytes: int) -> bytes:
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > max_bytes:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


class StripeWebhookHandler:
    async def handle(self, request: Request, client: FHIRClient, **kwargs):
        """
        Receive Stripe billing events.

        Security:
        - Validates Stripe-Signature (HMAC-SHA256, timestamp tolerance)
        - Caps payload size

        Signature and payload problems return a 400 OperationOutcome so
        Stripe shows the reason in its dashboard. FHIR errors propagate and
        Stripe retries the delivery.
        """
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("STRIPE_WEBHOOK_SECRET not configured")
            raise HTTPException(500, "Webhook not configured")

        body = await _read_body_safe(request, settings.STRIPE_WEBHOOK_MAX_PAYLOAD_BYTES)
        payload = SignedWebhookPayload(
            body=body,
            signature=request.headers.get(SIGNATURE_HEADER, ""),
        )

        try:
            event = construct_event(
                payload,
                settings.STRIPE_WEBHOOK_SECRET,
                tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except WebhookSignatureError as exc:
            logger.warning("Stripe webhook signature rejected: %s", exc)
            return _bad_request(f"Webhook Error: {exc}")
        except WebhookPayloadError as exc:
            logger.warning("Stripe webhook payload rejected: %s", exc)
            return _bad_request(f"Webhook Error: {exc}")

        await client.ensure_login()
        result = await billing_service.reconcile_event(
            client, event, BillingConfig.from_settings(settings)
        )
        return {"status": "ok", "handled": result.handled, "action": result.action}
