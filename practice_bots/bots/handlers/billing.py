"""Billing reconciler bot.

Takes an already-verified Stripe event envelope. Signature checks happen at
the webhook endpoint; this entry point is only reachable with the internal
secret.
"""

from __future__ import annotations

from practice_bots.core.config import settings
from practice_bots.schemas.billing import StripeEvent
from practice_bots.schemas.bot import BotEvent
from practice_bots.services import billing_service
from practice_bots.services.fhir_client import FHIRClient


async def run_billing_reconciler(client: FHIRClient, event: BotEvent) -> dict:
    stripe_event = StripeEvent.model_validate(event.input)
    result = await billing_service.reconcile_event(
        client, stripe_event, billing_service.BillingConfig.from_settings(settings)
    )
    return result.model_dump()
