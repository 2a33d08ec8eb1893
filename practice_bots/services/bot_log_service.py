"""Bot audit trail written to the FHIR platform as Communications."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.types import FhirResource, JsonObject

logger = logging.getLogger(__name__)

BOT_LOG_CATEGORY_SYSTEM = "http://terminology.medplum.org/communication-categories"
BOT_LOG_CATEGORY = "bot-log"


def build_bot_log(
    bot: str,
    outcome: str,
    message: str,
    *,
    subject: str | None = None,
    details: JsonObject | None = None,
) -> FhirResource:
    payload = [{"contentString": f"[{bot}] {outcome}: {message}"}]
    if details:
        payload.append({"contentString": json.dumps(details, default=str, sort_keys=True)})
    record: FhirResource = {
        "resourceType": "Communication",
        "status": "completed",
        "sent": datetime.now(timezone.utc).isoformat(),
        "category": [
            {
                "coding": [{"system": BOT_LOG_CATEGORY_SYSTEM, "code": BOT_LOG_CATEGORY}],
                "text": f"{bot}-{outcome}",
            }
        ],
        "payload": payload,
    }
    if subject:
        record["subject"] = {"reference": subject}
    return record


async def record_bot_log(
    client: FHIRClient,
    bot: str,
    outcome: str,
    message: str,
    *,
    subject: str | None = None,
    details: JsonObject | None = None,
) -> None:
    """Best-effort: a failed audit write is logged, never raised."""
    try:
        await client.create_resource(
            build_bot_log(bot, outcome, message, subject=subject, details=details)
        )
    except FHIRError as exc:
        logger.warning(
            "Failed to record bot log bot=%s outcome=%s (%s)",
            bot,
            outcome,
            exc.status_code,
        )
