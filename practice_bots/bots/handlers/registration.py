"""Organization registration bot."""

from __future__ import annotations

import logging

from practice_bots.core.config import settings
from practice_bots.schemas.bot import BotEvent
from practice_bots.schemas.registration import RegistrationRequest
from practice_bots.services import registration_service
from practice_bots.services.fhir_client import FHIRClient

logger = logging.getLogger(__name__)


async def run_registration(client: FHIRClient, event: BotEvent) -> dict:
    """Register an organization from a bot input. Uses the admin client, not ``client``."""
    request = RegistrationRequest.model_validate(event.input)
    result = await registration_service.register_organization(
        request, registration_service.RegistrationConfig.from_settings(settings)
    )
    return result.model_dump(by_alias=True)
