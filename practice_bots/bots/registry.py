"""Bot handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from practice_bots.bots.handlers import billing, registration, welcome
from practice_bots.enums import BotName
from practice_bots.schemas.bot import BotEvent
from practice_bots.services.fhir_client import FHIRClient

BotHandler = Callable[[FHIRClient, BotEvent], Awaitable[dict]]

BOT_HANDLERS: Mapping[str, BotHandler] = {
    BotName.ORGANIZATION_REGISTRATION.value: registration.run_registration,
    BotName.WELCOME_EMAIL.value: welcome.run_welcome_email,
    BotName.BILLING_RECONCILER.value: billing.run_billing_reconciler,
}


def resolve_bot_handler(bot_name: str) -> BotHandler:
    handler = BOT_HANDLERS.get(bot_name)
    if not handler:
        raise ValueError(f"Unknown bot: {bot_name}")
    return handler
