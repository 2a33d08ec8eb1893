"""Email sender interface + selection helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from practice_bots.core.config import Settings
from practice_bots.services.fhir_client import FHIRClient


@dataclass(frozen=True)
class EmailSendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    key: str

    async def send(
        self,
        *,
        to_email: str,
        subject: str,
        html: str,
        text: str | None = None,
        idempotency_key: str | None = None,
    ) -> EmailSendResult:
        """Send one email. Delivery is fire-and-forget past the provider's accept."""


@dataclass(frozen=True)
class SenderSelection:
    sender: EmailSender | None
    error: str | None


def select_sender(settings: Settings, client: FHIRClient) -> SenderSelection:
    """
    Select the sender configured by EMAIL_PROVIDER.

    ``medplum`` sends through the platform's email endpoint using the bot's
    own FHIR client; ``resend`` requires RESEND_API_KEY and EMAIL_FROM.
    """
    from practice_bots.services.platform_email_service import PlatformEmailSender
    from practice_bots.services.resend_email_service import ResendEmailSender

    provider = (settings.EMAIL_PROVIDER or "").strip().lower()
    if provider == "resend":
        sender = ResendEmailSender(api_key=settings.RESEND_API_KEY, from_email=settings.EMAIL_FROM)
        if not sender.is_configured():
            return SenderSelection(sender=None, error="Resend sender not configured")
        return SenderSelection(sender=sender, error=None)
    if provider == "medplum":
        return SenderSelection(sender=PlatformEmailSender(client), error=None)
    return SenderSelection(sender=None, error=f"Unknown EMAIL_PROVIDER: {provider!r}")
