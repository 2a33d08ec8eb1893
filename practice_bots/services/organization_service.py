"""Organization service - tenant-scoped organizations and their subscription state."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from practice_bots.schemas.billing import OrganizationSubscription
from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.services.fhir_utils import make_reference
from practice_bots.types import FhirResource

logger = logging.getLogger(__name__)

DEFAULT_ORGANIZATION_DISPLAY_NAME = "Our Platform"
SUBSCRIPTION_EXTENSION_PREFIX = "http://example.com/fhir/StructureDefinition/subscription-"
SESSION_RESET_EXTENSION = "http://example.com/fhir/StructureDefinition/session-last-reset"

_EXT_STATUS = f"{SUBSCRIPTION_EXTENSION_PREFIX}status"
_EXT_PLAN = f"{SUBSCRIPTION_EXTENSION_PREFIX}plan"
_EXT_ID = f"{SUBSCRIPTION_EXTENSION_PREFIX}id"
_EXT_PERIOD_END = f"{SUBSCRIPTION_EXTENSION_PREFIX}period-end"
_EXT_SESSIONS_USED = f"{SUBSCRIPTION_EXTENSION_PREFIX}sessions-used"
_EXT_SESSIONS_ALLOWED = f"{SUBSCRIPTION_EXTENSION_PREFIX}sessions-allowed"


def build_organization(name: str, project_id: str) -> FhirResource:
    """Organization scoped to a project (tenant) via meta.project + compartment."""
    return {
        "resourceType": "Organization",
        "name": name,
        "meta": {
            "project": project_id,
            "compartment": [{"reference": make_reference("Project", project_id)}],
        },
    }


async def create_organization(client: FHIRClient, name: str, project_id: str) -> FhirResource:
    """
    Create a new organization in the target project.

    Raises:
        FHIRError: If the server rejects the create or returns no id
    """
    org = await client.create_resource(build_organization(name, project_id))
    if not org.get("id"):
        raise FHIRError("Organization creation failed - no ID returned")
    logger.info("Organization created org_id=%s", org["id"])
    return org


async def get_display_name(client: FHIRClient, reference: str | None) -> str:
    """Resolve an organization's name, degrading to a default on any failure."""
    if not reference:
        return DEFAULT_ORGANIZATION_DISPLAY_NAME
    try:
        org = await client.read_reference(reference)
    except FHIRError as exc:
        logger.info("Organization lookup failed for %s (%s)", reference, exc.status_code)
        return DEFAULT_ORGANIZATION_DISPLAY_NAME
    return str(org.get("name") or DEFAULT_ORGANIZATION_DISPLAY_NAME)


# =============================================================================
# Subscription state (typed record <-> extensions)
# =============================================================================


def _is_subscription_extension(url: str) -> bool:
    return url.startswith(SUBSCRIPTION_EXTENSION_PREFIX) or url == SESSION_RESET_EXTENSION


def _parse_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def subscription_from_organization(org: FhirResource) -> OrganizationSubscription | None:
    """Read the subscription record off an Organization, if one was written."""
    values: dict[str, object] = {}
    for ext in org.get("extension") or []:
        if not isinstance(ext, dict):
            continue
        url = ext.get("url") or ""
        if _is_subscription_extension(url):
            values[url] = next(
                (v for k, v in ext.items() if k.startswith("value")),
                None,
            )
    if _EXT_STATUS not in values:
        return None
    return OrganizationSubscription(
        status=str(values[_EXT_STATUS]),
        plan=values.get(_EXT_PLAN),
        subscription_id=values.get(_EXT_ID),
        period_end=_parse_datetime(values.get(_EXT_PERIOD_END)),
        sessions_used=int(values.get(_EXT_SESSIONS_USED) or 0),
        sessions_allowed=int(values.get(_EXT_SESSIONS_ALLOWED) or 0),
        last_reset=_parse_datetime(values.get(SESSION_RESET_EXTENSION)),
    )


def apply_subscription(org: FhirResource, subscription: OrganizationSubscription) -> FhirResource:
    """Return a copy of ``org`` with its subscription extensions replaced wholesale."""
    kept = [
        ext
        for ext in org.get("extension") or []
        if not (isinstance(ext, dict) and _is_subscription_extension(ext.get("url") or ""))
    ]
    written: list[dict[str, object]] = [{"url": _EXT_STATUS, "valueString": subscription.status}]
    if subscription.plan:
        written.append({"url": _EXT_PLAN, "valueString": subscription.plan})
    if subscription.subscription_id:
        written.append({"url": _EXT_ID, "valueString": subscription.subscription_id})
    if subscription.period_end:
        written.append(
            {"url": _EXT_PERIOD_END, "valueDateTime": _format_datetime(subscription.period_end)}
        )
    written.append({"url": _EXT_SESSIONS_USED, "valueInteger": subscription.sessions_used})
    written.append({"url": _EXT_SESSIONS_ALLOWED, "valueInteger": subscription.sessions_allowed})
    if subscription.last_reset:
        written.append(
            {"url": SESSION_RESET_EXTENSION, "valueDateTime": _format_datetime(subscription.last_reset)}
        )
    return {**org, "extension": kept + written}


async def update_organization_subscription(
    client: FHIRClient,
    organization_id: str,
    subscription: OrganizationSubscription,
) -> FhirResource:
    """Write subscription state, preserving sessions already used this period."""
    org = await client.read_resource("Organization", organization_id)
    current = subscription_from_organization(org)
    if current:
        subscription = subscription.model_copy(update={"sessions_used": current.sessions_used})
    updated = await client.update_resource(apply_subscription(org, subscription))
    logger.info(
        "Organization subscription updated org_id=%s status=%s allowed=%s",
        organization_id,
        subscription.status,
        subscription.sessions_allowed,
    )
    return updated
