"""Welcome notifier.

Runs when a Practitioner with a contact email is created or updated. Looks up
the practitioner's membership and organization, polls for the password-setup
token left by registration, and sends the welcome email.

Every path ends in a WelcomeResult and a bot log entry; nothing is raised to
the trigger. "Nothing to do" outcomes (no email, no membership) and
"could not do it" outcomes (token never arrived, bad token, platform lookup
error, send failure) are reported with distinct statuses.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from practice_bots.core.config import Settings
from practice_bots.core.structured_logging import build_log_context, mask_email, safe_url
from practice_bots.enums import BotName, WelcomeStatus
from practice_bots.schemas.security_token import SecurityTokenPayload
from practice_bots.schemas.welcome import WelcomeResult
from practice_bots.services import (
    bot_log_service,
    membership_service,
    organization_service,
    security_token_service,
)
from practice_bots.services.email_sender import EmailSender
from practice_bots.services.fhir_client import FHIRClient, FHIRError
from practice_bots.services.fhir_utils import first_given_name, get_email, make_reference
from practice_bots.types import FhirResource

logger = logging.getLogger(__name__)

DEFAULT_FIRST_NAME = "New User"
BOT = BotName.WELCOME_EMAIL.value

Sleep = Callable[[float], Awaitable[None]]

_QUIET_STATUSES = {
    WelcomeStatus.SENT,
    WelcomeStatus.SKIPPED_NO_EMAIL,
    WelcomeStatus.SKIPPED_NO_MEMBERSHIP,
}


@dataclass(frozen=True)
class WelcomeConfig:
    app_base_url: str
    max_attempts: int = 3
    retry_delay_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "WelcomeConfig":
        return cls(
            app_base_url=settings.APP_BASE_URL,
            max_attempts=settings.WELCOME_TOKEN_MAX_ATTEMPTS,
            retry_delay_seconds=settings.WELCOME_TOKEN_RETRY_DELAY_SECONDS,
        )


def build_setup_url(app_base_url: str, token: SecurityTokenPayload) -> str:
    return f"{app_base_url.rstrip('/')}/setpassword/{token.token_id}/{token.token_secret}"


def compose_welcome_email(first_name: str, org_name: str, setup_url: str) -> tuple[str, str]:
    """Return ``(subject, html)`` for the welcome message."""
    name = html.escape(first_name)
    org = html.escape(org_name)
    url = html.escape(setup_url, quote=True)
    subject = f"Welcome to {org_name}"
    body = (
        f"<h1>Welcome {name}!</h1>\n\n"
        f"<p>We're excited to have you join {org}.</p>\n\n"
        f'<p>To get started, please <a href="{url}">click here to set up your password</a>.</p>\n\n'
        "<p>If you have any questions, please don't hesitate to reach out.</p>\n\n"
        "<p>Best regards,<br>The Team</p>"
    )
    return subject, body


async def poll_security_token(
    client: FHIRClient,
    practitioner_id: str,
    *,
    max_attempts: int,
    retry_delay_seconds: float,
    sleep: Sleep = asyncio.sleep,
) -> tuple[FhirResource | None, int]:
    """
    Search for the token record up to ``max_attempts`` times.

    Sleeps ``retry_delay_seconds`` between attempts (not after the last one).
    Returns ``(record_or_None, attempts_made)``.
    """
    attempts = 0
    for attempt in range(max_attempts):
        attempts = attempt + 1
        logger.info(
            "Looking up security token for practitioner=%s (attempt %s/%s)",
            practitioner_id,
            attempts,
            max_attempts,
        )
        record = await security_token_service.find_latest_security_token(client, practitioner_id)
        if record:
            return record, attempts
        if attempts < max_attempts:
            await sleep(retry_delay_seconds)
    return None, attempts


async def _finish(
    client: FHIRClient,
    practitioner_id: str | None,
    result: WelcomeResult,
) -> WelcomeResult:
    level = logging.INFO if result.status in _QUIET_STATUSES else logging.WARNING
    logger.log(
        level,
        "Welcome notifier finished: %s (%s)",
        result.status.value,
        result.detail or "",
        extra=build_log_context(bot=BOT, profile_id=practitioner_id),
    )
    await bot_log_service.record_bot_log(
        client,
        BOT,
        result.status.value,
        result.detail or result.status.value,
        subject=make_reference("Practitioner", practitioner_id) if practitioner_id else None,
        details={"attempts": result.attempts},
    )
    return result


async def send_welcome_email(
    client: FHIRClient,
    sender: EmailSender,
    practitioner: FhirResource,
    config: WelcomeConfig,
    *,
    sleep: Sleep = asyncio.sleep,
) -> WelcomeResult:
    """Run the welcome notifier for one practitioner. Never raises."""
    practitioner_id = practitioner.get("id")
    attempts = 0
    try:
        email = get_email(practitioner)
        if not email or not practitioner_id:
            return await _finish(
                client,
                practitioner_id,
                WelcomeResult(
                    status=WelcomeStatus.SKIPPED_NO_EMAIL,
                    detail="No email found in Practitioner telecom",
                ),
            )

        membership = await membership_service.find_membership(client, practitioner_id)
        if not membership:
            return await _finish(
                client,
                practitioner_id,
                WelcomeResult(
                    status=WelcomeStatus.SKIPPED_NO_MEMBERSHIP,
                    detail="No ProjectMembership found",
                ),
            )

        org_name = await organization_service.get_display_name(
            client, membership_service.current_organization_reference(membership)
        )

        record, attempts = await poll_security_token(
            client,
            practitioner_id,
            max_attempts=config.max_attempts,
            retry_delay_seconds=config.retry_delay_seconds,
            sleep=sleep,
        )
        if not record:
            return await _finish(
                client,
                practitioner_id,
                WelcomeResult(
                    status=WelcomeStatus.TOKEN_NOT_FOUND,
                    detail="No security info found after all retries",
                    attempts=attempts,
                ),
            )

        try:
            token = security_token_service.parse_security_token(record)
        except security_token_service.MalformedSecurityTokenError as exc:
            return await _finish(
                client,
                practitioner_id,
                WelcomeResult(status=WelcomeStatus.INVALID_TOKEN, detail=str(exc), attempts=attempts),
            )

        setup_url = build_setup_url(config.app_base_url, token)
        logger.debug("Password setup link prepared under %s", safe_url(setup_url))
        subject, body = compose_welcome_email(
            first_given_name(practitioner) or DEFAULT_FIRST_NAME,
            org_name,
            setup_url,
        )
        send_result = await sender.send(
            to_email=email,
            subject=subject,
            html=body,
            idempotency_key=f"welcome/{practitioner_id}/{token.token_id}",
        )
        if not send_result.success:
            return await _finish(
                client,
                practitioner_id,
                WelcomeResult(
                    status=WelcomeStatus.SEND_FAILED,
                    detail=send_result.error or "Email send failed",
                    attempts=attempts,
                ),
            )

        logger.info("Welcome email sent to %s", mask_email(email))
        try:
            await security_token_service.mark_security_token_consumed(
                client, record, token.token_id
            )
        except FHIRError:
            logger.warning("Could not mark security token %s consumed", record.get("id"))

        return await _finish(
            client,
            practitioner_id,
            WelcomeResult(
                status=WelcomeStatus.SENT,
                detail="Welcome email sent successfully",
                attempts=attempts,
                message_id=send_result.message_id,
            ),
        )
    except FHIRError as exc:
        return await _finish(
            client,
            practitioner_id,
            WelcomeResult(status=WelcomeStatus.LOOKUP_FAILED, detail=str(exc), attempts=attempts),
        )
