"""Bot dispatch router - platform subscriptions call bots by name."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from practice_bots.bots.registry import resolve_bot_handler
from practice_bots.core.deps import get_fhir_client, verify_internal_secret
from practice_bots.core.structured_logging import build_log_context
from practice_bots.enums import BotName
from practice_bots.schemas.bot import BotEvent, BotRunResult
from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.services.registration_service import RegistrationConfigError

router = APIRouter(
    prefix="/bots",
    tags=["bots"],
    dependencies=[Depends(verify_internal_secret)],
)
logger = logging.getLogger(__name__)


@router.post("/{bot_name}", response_model=BotRunResult)
async def run_bot(
    bot_name: str,
    event: BotEvent,
    client: FHIRClient = Depends(get_fhir_client),
):
    """Run one bot against a platform event. Requires X-Internal-Secret."""
    try:
        handler = resolve_bot_handler(bot_name)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown bot: {bot_name}")

    try:
        # Registration logs in with its own admin credentials
        if bot_name != BotName.ORGANIZATION_REGISTRATION.value:
            await client.ensure_login()
        result = await handler(client, event)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid bot input: {exc.error_count()} error(s)")
    except RegistrationConfigError:
        raise HTTPException(status_code=500, detail="Registration is not configured")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except FHIRError as exc:
        logger.warning(
            "Bot %s failed upstream (%s): %s",
            bot_name,
            exc.status_code,
            exc,
            extra=build_log_context(bot=bot_name),
        )
        raise HTTPException(status_code=502, detail=str(exc))

    return BotRunResult(bot=bot_name, status="ok", result=result)
