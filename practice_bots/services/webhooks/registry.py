"""Webhook handler registry."""

from __future__ import annotations

from practice_bots.services.webhooks.base import WebhookHandler
from practice_bots.services.webhooks.stripe import StripeWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "stripe": StripeWebhookHandler(),
}


def get_handler(name: str) -> WebhookHandler:
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
