"""Invitation adapter for the platform's project invite endpoint."""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

from practice_bots.core.structured_logging import mask_email
from practice_bots.schemas.invite import InviteResult
from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.services.fhir_utils import make_reference, reference_id
from practice_bots.types import FhirResource, JsonObject

logger = logging.getLogger(__name__)

CURRENT_ORGANIZATION_PARAMETER = "current_organization"


def build_invite_request(
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    access_policy_id: str,
    organization_id: str,
) -> JsonObject:
    """Invite body binding the new practitioner to one policy and one organization."""
    return {
        "resourceType": "Practitioner",
        "firstName": first_name,
        "lastName": last_name,
        "email": email,
        "password": password,
        # Welcome email is sent by our own notifier, not the platform.
        "sendEmail": False,
        "membership": {
            "access": [
                {
                    "policy": {"reference": make_reference("AccessPolicy", access_policy_id)},
                    "parameter": [
                        {
                            "name": CURRENT_ORGANIZATION_PARAMETER,
                            "valueReference": {
                                "reference": make_reference("Organization", organization_id)
                            },
                        }
                    ],
                }
            ]
        },
    }


def reference_value(value: object) -> str | None:
    if isinstance(value, dict):
        ref = value.get("reference")
        return str(ref) if ref else None
    return None


async def invite_practitioner(
    client: FHIRClient,
    project_id: str,
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    access_policy_id: str,
    organization_id: str,
) -> InviteResult:
    """
    Invite a practitioner into the project.

    Raises:
        FHIRError: If the invite fails or the response has no profile/user
    """
    body = build_invite_request(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password=password,
        access_policy_id=access_policy_id,
        organization_id=organization_id,
    )
    logger.info("Inviting practitioner %s into project %s", mask_email(email), project_id)
    response = await client.post(f"admin/projects/{project_id}/invite", body)

    profile_reference = reference_value(response.get("profile"))
    user_reference = reference_value(response.get("user"))
    if not profile_reference or not user_reference:
        raise FHIRError("Invite response missing profile or user reference")

    reset_url = response.get("passwordResetUrl")
    return InviteResult(
        profile_reference=profile_reference,
        user_reference=user_reference,
        password_reset_url=str(reset_url) if reset_url else None,
    )


def split_password_reset_url(url: str | None) -> tuple[str, str] | None:
    """Return ``(token_id, token_secret)`` from the last two path segments."""
    if not url:
        return None
    segments = [s for s in urlsplit(url).path.split("/") if s]
    if len(segments) < 2:
        return None
    return segments[-2], segments[-1]


async def find_user_security_request(
    client: FHIRClient,
    user_reference: str,
) -> FhirResource | None:
    """Most recent platform-native password-setup request for a user."""
    user_id = reference_id(user_reference)
    if not user_id:
        return None
    return await client.search_one(
        "UserSecurityRequest",
        {"user": make_reference("User", user_id), "_sort": "-_lastUpdated"},
    )

