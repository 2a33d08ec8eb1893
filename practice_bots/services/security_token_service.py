"""Security token relay.

The invite response and the welcome notifier trigger are not atomic, so the
password-setup credential is parked in a Communication tagged
``welcome-email-security`` until the notifier picks it up.

Records are created ``in-progress`` and flipped to ``completed`` once a
welcome email has been sent with their credential; only ``in-progress``
records are returned by the lookup, which makes each credential single-use.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from practice_bots.schemas.security_token import SecurityTokenPayload
from practice_bots.services.fhir_client import FHIRClient
from practice_bots.services.fhir_utils import make_reference
from practice_bots.types import FhirResource

logger = logging.getLogger(__name__)

COMMUNICATION_CATEGORY_SYSTEM = "http://terminology.medplum.org/communication-categories"
SECURITY_TOKEN_CATEGORY = "welcome-email-security"
STATUS_PENDING = "in-progress"
STATUS_CONSUMED = "completed"


class MalformedSecurityTokenError(ValueError):
    """Stored token payload is not valid JSON or lacks a required field."""


def build_security_token_record(
    profile_reference: str,
    token_id: str,
    token_secret: str,
    user_reference: str,
) -> FhirResource:
    payload = SecurityTokenPayload(
        token_id=token_id,
        token_secret=token_secret,
        user_reference=user_reference,
    )
    return {
        "resourceType": "Communication",
        "status": STATUS_PENDING,
        "sent": datetime.now(timezone.utc).isoformat(),
        "subject": {"reference": profile_reference},
        "category": [
            {
                "coding": [
                    {
                        "system": COMMUNICATION_CATEGORY_SYSTEM,
                        "code": SECURITY_TOKEN_CATEGORY,
                    }
                ]
            }
        ],
        "payload": [{"contentString": json.dumps(payload.model_dump(by_alias=True))}],
    }


async def persist_security_token(
    client: FHIRClient,
    profile_reference: str,
    token_id: str,
    token_secret: str,
    user_reference: str,
) -> FhirResource:
    """Create a token record for ``profile_reference``. No uniqueness check."""
    record = await client.create_resource(
        build_security_token_record(profile_reference, token_id, token_secret, user_reference)
    )
    logger.info(
        "Security token stored for %s (record=%s)", profile_reference, record.get("id")
    )
    return record


async def find_latest_security_token(
    client: FHIRClient,
    practitioner_id: str,
) -> FhirResource | None:
    """Most recently updated unconsumed token record for this practitioner."""
    return await client.search_one(
        "Communication",
        {
            "subject": make_reference("Practitioner", practitioner_id),
            "category": f"{COMMUNICATION_CATEGORY_SYSTEM}|{SECURITY_TOKEN_CATEGORY}",
            "status": STATUS_PENDING,
            "_sort": "-_lastUpdated",
        },
    )


def parse_security_token(record: FhirResource) -> SecurityTokenPayload:
    """
    Decode the JSON payload of a token record.

    Raises:
        MalformedSecurityTokenError: On invalid JSON or a missing id/secret/userReference
    """
    payload = record.get("payload") or []
    content = ""
    if payload and isinstance(payload[0], dict):
        content = payload[0].get("contentString") or ""
    try:
        data = json.loads(content or "{}")
    except json.JSONDecodeError as exc:
        raise MalformedSecurityTokenError(f"Invalid security token JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise MalformedSecurityTokenError("Security token payload is not an object")
    try:
        return SecurityTokenPayload.model_validate(data)
    except ValidationError as exc:
        missing = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise MalformedSecurityTokenError(
            f"Security token payload missing fields: {', '.join(missing)}"
        ) from exc


async def mark_security_token_consumed(
    client: FHIRClient,
    record: FhirResource,
    token_id: str | None = None,
) -> FhirResource:
    """
    Complete ``record`` and any other pending record relaying the same credential.

    Registration can relay one credential under two records; after this
    call no pending record for the subject carries ``token_id``.
    """
    consumed = await client.update_resource({**record, "status": STATUS_CONSUMED})
    subject = (record.get("subject") or {}).get("reference")
    if not token_id or not subject:
        return consumed

    pending = await client.search(
        "Communication",
        {
            "subject": subject,
            "category": f"{COMMUNICATION_CATEGORY_SYSTEM}|{SECURITY_TOKEN_CATEGORY}",
            "status": STATUS_PENDING,
        },
    )
    for sibling in pending:
        if sibling.get("id") == record.get("id"):
            continue
        try:
            sibling_token = parse_security_token(sibling)
        except MalformedSecurityTokenError:
            continue
        if sibling_token.token_id == token_id:
            await client.update_resource({**sibling, "status": STATUS_CONSUMED})
            logger.info("Security token record %s consumed with %s", sibling.get("id"), record.get("id"))
    return consumed
