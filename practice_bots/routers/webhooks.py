"""Webhooks router - billing provider integrations."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from practice_bots.core.deps import get_fhir_client
from practice_bots.core.rate_limit import limiter, webhook_limit
from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.services.webhooks.registry import get_handler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe")
@limiter.limit(webhook_limit)
async def receive_stripe_webhook(
    request: Request,
    client: FHIRClient = Depends(get_fhir_client),
):
    """
    Receive Stripe subscription and invoice events.

    A 5xx tells Stripe to redeliver; reconciliation is idempotent so a
    redelivery is safe.
    """
    handler = get_handler("stripe")
    try:
        return await handler.handle(request, client)
    except FHIRError as exc:
        logger.error("Stripe webhook reconciliation failed (%s): %s", exc.status_code, exc)
        raise HTTPException(status_code=502, detail="Billing reconciliation failed")
