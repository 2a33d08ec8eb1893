"""Resend Email Service.

Sends transactional email via the Resend API with idempotency and retry logic.
"""

from __future__ import annotations

import html as html_module
import logging
import re

import httpx

from practice_bots.core.structured_logging import mask_email
from practice_bots.services.email_sender import EmailSendResult
from practice_bots.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_MAX_ATTEMPTS = 3
RESEND_RETRY_BASE_DELAY = 0.5
RESEND_RETRY_MAX_DELAY = 4.0
RESEND_TIMEOUT_SECONDS = 20.0


def html_to_text(content: str) -> str:
    """Convert HTML into readable text (deliverability + inbox previews)."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return html_module.unescape(text)


def _error_detail(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        detail = data.get("message") or data.get("error")
        return str(detail) if detail else None
    return None


def _message_id(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("id"):
        return str(data["id"])
    return None


class ResendEmailSender:
    key = "resend"

    def __init__(self, *, api_key: str, from_email: str):
        self.api_key = api_key
        self.from_email = from_email

    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    async def send(
        self,
        *,
        to_email: str,
        subject: str,
        html: str,
        text: str | None = None,
        idempotency_key: str | None = None,
    ) -> EmailSendResult:
        if not self.is_configured():
            return EmailSendResult(success=False, error="Resend sender not configured")

        payload: dict[str, object] = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        # Always include text for deliverability
        plain = text or html_to_text(html)
        if plain:
            payload["text"] = plain

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=RESEND_TIMEOUT_SECONDS) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(RESEND_SEND_URL, headers=headers, json=payload)

                response = await request_with_retries(
                    request_fn,
                    max_attempts=RESEND_MAX_ATTEMPTS,
                    base_delay=RESEND_RETRY_BASE_DELAY,
                    max_delay=RESEND_RETRY_MAX_DELAY,
                    retry_statuses=DEFAULT_RETRY_STATUSES,
                )
        except httpx.TimeoutException:
            logger.warning("Resend timeout sending to %s", mask_email(to_email))
            return EmailSendResult(success=False, error="Connection timeout")
        except httpx.RequestError as exc:
            logger.warning("Resend connection error sending to %s", mask_email(to_email))
            return EmailSendResult(success=False, error=f"Connection error: {exc.__class__.__name__}")

        if 200 <= response.status_code < 300:
            message_id = _message_id(response)
            logger.info("Email sent to %s, message_id=%s", mask_email(to_email), message_id)
            return EmailSendResult(success=True, message_id=message_id)

        # 409 = idempotency conflict, the message already went out
        if response.status_code == 409:
            logger.info("Email already sent (409) to %s", mask_email(to_email))
            return EmailSendResult(success=True)

        error_msg = f"Resend API error: {response.status_code}"
        detail = _error_detail(response)
        if detail:
            error_msg = f"{error_msg} ({detail})"
        logger.warning("Resend send failed for %s: %s", mask_email(to_email), error_msg)
        return EmailSendResult(success=False, error=error_msg)
