"""Membership lookups - binds a profile to one access policy and organization."""

from __future__ import annotations

from practice_bots.services.fhir_client import FHIRClient
from practice_bots.services.fhir_utils import make_reference
from practice_bots.services.invite_service import CURRENT_ORGANIZATION_PARAMETER, reference_value
from practice_bots.types import FhirResource


async def find_membership(client: FHIRClient, practitioner_id: str) -> FhirResource | None:
    """Get the project membership whose profile is this practitioner."""
    return await client.search_one(
        "ProjectMembership",
        {"profile": make_reference("Practitioner", practitioner_id)},
    )


def current_organization_reference(membership: FhirResource) -> str | None:
    """The ``current_organization`` parameter of the membership's first access entry."""
    access = membership.get("access") or []
    if not access or not isinstance(access[0], dict):
        return None
    for parameter in access[0].get("parameter") or []:
        if isinstance(parameter, dict) and parameter.get("name") == CURRENT_ORGANIZATION_PARAMETER:
            return reference_value(parameter.get("valueReference"))
    return None
