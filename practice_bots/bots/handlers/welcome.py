"""Welcome email bot."""

from __future__ import annotations

import logging

from practice_bots.core.config import settings
from practice_bots.core.structured_logging import build_log_context
from practice_bots.enums import WelcomeStatus
from practice_bots.schemas.bot import BotEvent
from practice_bots.schemas.welcome import WelcomeResult
from practice_bots.services import bot_log_service, welcome_service
from practice_bots.services.email_sender import select_sender
from practice_bots.services.fhir_client import FHIRClient
from practice_bots.services.fhir_utils import make_reference

logger = logging.getLogger(__name__)


async def run_welcome_email(client: FHIRClient, event: BotEvent) -> dict:
    if event.input_type != "Practitioner":
        raise ValueError(f"welcome-email expects a Practitioner, got {event.input_type!r}")

    selection = select_sender(settings, client)
    if not selection.sender:
        practitioner_id = event.input.get("id")
        detail = selection.error or "No email sender configured"
        logger.error(
            "Welcome email sender unavailable: %s",
            detail,
            extra=build_log_context(bot=welcome_service.BOT, profile_id=practitioner_id),
        )
        await bot_log_service.record_bot_log(
            client,
            welcome_service.BOT,
            WelcomeStatus.SEND_FAILED.value,
            detail,
            subject=make_reference("Practitioner", practitioner_id) if practitioner_id else None,
        )
        return WelcomeResult(status=WelcomeStatus.SEND_FAILED, detail=detail).model_dump(mode="json")

    result = await welcome_service.send_welcome_email(
        client,
        selection.sender,
        event.input,
        welcome_service.WelcomeConfig.from_settings(settings),
    )
    return result.model_dump(mode="json")
