"""Platform email sender.

Sends through the FHIR platform's ``email/v1/send`` endpoint with the bot's
own credentials. The platform accepts the message and delivers it out of band;
no delivery confirmation comes back.
"""

from __future__ import annotations

import logging

from practice_bots.core.structured_logging import mask_email
from practice_bots.services.email_sender import EmailSendResult
from practice_bots.services.fhir_client import FHIRClient, FHIRError

logger = logging.getLogger(__name__)

PLATFORM_EMAIL_PATH = "email/v1/send"


class PlatformEmailSender:
    key = "medplum"

    def __init__(self, client: FHIRClient):
        self.client = client

    async def send(
        self,
        *,
        to_email: str,
        subject: str,
        html: str,
        text: str | None = None,
        idempotency_key: str | None = None,
    ) -> EmailSendResult:
        body: dict[str, object] = {
            "to": to_email,
            "subject": subject,
            "content": html,
            "contentType": "text/html",
        }
        if text:
            body["text"] = text
        try:
            await self.client.post(PLATFORM_EMAIL_PATH, body)
        except FHIRError as exc:
            logger.warning(
                "Platform email send failed for %s (%s)", mask_email(to_email), exc.status_code
            )
            return EmailSendResult(success=False, error=str(exc))
        logger.info("Platform email accepted for %s", mask_email(to_email))
        return EmailSendResult(success=True)
