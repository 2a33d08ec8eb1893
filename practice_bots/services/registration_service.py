"""Organization registration - org + first admin + welcome token relay.

Steps run in order against the admin client. Any failure up to and including
the practitioner compartment update propagates to the caller; an Organization
created before the failure is left in place (no compensation).

Token persistence is best-effort: the reset-URL token and the
UserSecurityRequest token are stored independently and neither can fail the
registration. A UserSecurityRequest carrying the reset-URL token id is the
same credential and is not stored twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from practice_bots.core.config import Settings
from practice_bots.core.structured_logging import build_log_context, mask_email
from practice_bots.schemas.invite import InviteResult
from practice_bots.schemas.registration import RegistrationRequest, RegistrationResult
from practice_bots.services import invite_service, organization_service, security_token_service
from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.services.fhir_utils import make_reference

logger = logging.getLogger(__name__)


class RegistrationConfigError(RuntimeError):
    """Required registration secrets are missing."""

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing required secrets: {', '.join(missing)}")
        self.missing = missing


@dataclass(frozen=True)
class RegistrationConfig:
    """Admin credentials and tenant targets for one registration call."""

    base_url: str
    admin_client_id: str
    admin_client_secret: str
    access_policy_id: str
    project_id: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "RegistrationConfig":
        return cls(
            base_url=settings.FHIR_BASE_URL,
            admin_client_id=settings.MEDPLUM_MULTITENANT_ADMIN_CLIENT_ID,
            admin_client_secret=settings.MEDPLUM_MULTITENANT_ADMIN_CLIENT_SECRET,
            access_policy_id=settings.MEDPLUM_MULTITENANT_ACCESS_POLICY_ID,
            project_id=settings.MEDPLUM_PROJECT_ID,
        )

    def validate(self) -> None:
        """Raise RegistrationConfigError naming every missing secret."""
        required = {
            "MEDPLUM_MULTITENANT_ADMIN_CLIENT_ID": self.admin_client_id,
            "MEDPLUM_MULTITENANT_ADMIN_CLIENT_SECRET": self.admin_client_secret,
            "MEDPLUM_MULTITENANT_ACCESS_POLICY_ID": self.access_policy_id,
            "MEDPLUM_PROJECT_ID": self.project_id,
        }
        missing = [name for name, value in required.items() if not (value or "").strip()]
        if missing:
            raise RegistrationConfigError(missing)


ClientFactory = Callable[[RegistrationConfig], FHIRClient]


def default_client_factory(config: RegistrationConfig) -> FHIRClient:
    return FHIRClient(
        config.base_url,
        client_id=config.admin_client_id,
        client_secret=config.admin_client_secret,
    )


async def add_organization_compartment(
    client: FHIRClient,
    practitioner_id: str,
    organization_id: str,
) -> None:
    """Read-modify-write: append Organization/{id} to the practitioner's compartments."""
    practitioner = await client.read_resource("Practitioner", practitioner_id)
    meta = dict(practitioner.get("meta") or {})
    compartments = list(meta.get("compartment") or [])
    org_reference = make_reference("Organization", organization_id)
    if any(c.get("reference") == org_reference for c in compartments if isinstance(c, dict)):
        return
    compartments.append({"reference": org_reference})
    meta["compartment"] = compartments
    await client.update_resource({**practitioner, "meta": meta})


async def _store_reset_url_token(client: FHIRClient, invite: InviteResult) -> str | None:
    """Store the reset-URL credential; returns its token id once stored."""
    token = invite_service.split_password_reset_url(invite.password_reset_url)
    if not token:
        return None
    token_id, token_secret = token
    try:
        await security_token_service.persist_security_token(
            client,
            invite.profile_reference,
            token_id,
            token_secret,
            invite.user_reference,
        )
    except FHIRError:
        logger.exception("Failed to store reset-url token for %s", invite.profile_reference)
        return None
    return token_id


async def _store_security_request_token(
    client: FHIRClient,
    invite: InviteResult,
    stored_token_id: str | None = None,
) -> bool:
    try:
        request = await invite_service.find_user_security_request(client, invite.user_reference)
        if not request or not request.get("id") or not request.get("secret"):
            logger.info("No UserSecurityRequest found for %s", invite.user_reference)
            return False
        if str(request["id"]) == stored_token_id:
            logger.info("UserSecurityRequest %s already relayed from the reset URL", request["id"])
            return False
        user = request.get("user") or {}
        await security_token_service.persist_security_token(
            client,
            invite.profile_reference,
            str(request["id"]),
            str(request["secret"]),
            str(user.get("reference") or invite.user_reference),
        )
    except FHIRError:
        logger.exception(
            "Failed to store UserSecurityRequest token for %s", invite.profile_reference
        )
        return False
    return True


async def register_organization(
    request: RegistrationRequest,
    config: RegistrationConfig,
    *,
    client_factory: ClientFactory = default_client_factory,
) -> RegistrationResult:
    """
    Create an organization and invite its first admin practitioner.

    Raises:
        RegistrationConfigError: Before any remote call if secrets are missing
        FHIRError: If login, policy check, org create, invite or update fails
    """
    config.validate()

    async with client_factory(config) as client:
        await client.login_client_credentials(config.admin_client_id, config.admin_client_secret)

        # Surface a missing/misconfigured policy before creating anything
        await client.read_resource("AccessPolicy", config.access_policy_id)

        org = await organization_service.create_organization(
            client, request.organization_name, config.project_id
        )
        org_id = str(org["id"])

        invite = await invite_service.invite_practitioner(
            client,
            config.project_id,
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            password=request.password,
            access_policy_id=config.access_policy_id,
            organization_id=org_id,
        )

        await add_organization_compartment(client, invite.practitioner_id, org_id)

        stored = 0
        reset_token_id = await _store_reset_url_token(client, invite)
        if reset_token_id:
            stored += 1
        if await _store_security_request_token(client, invite, reset_token_id):
            stored += 1

    logger.info(
        "Registration complete for %s",
        mask_email(request.email),
        extra=build_log_context(
            bot="organization-registration",
            profile_id=invite.practitioner_id,
            org_id=org_id,
        ),
    )
    return RegistrationResult(
        organization_id=org_id,
        practitioner_id=invite.practitioner_id,
        user_reference=invite.user_reference,
        security_tokens_stored=stored,
    )
