"""Tests for the welcome notifier."""

import json

import pytest

from practice_bots.enums import WelcomeStatus
from practice_bots.services import security_token_service
from practice_bots.services.bot_log_service import BOT_LOG_CATEGORY
from practice_bots.services.email_sender import EmailSendResult
from practice_bots.services.fhir_client import FHIRServerError
from practice_bots.services.welcome_service import (
    WelcomeConfig,
    compose_welcome_email,
    send_welcome_email,
)

from fakes import FakeFHIRClient, RecordingSender, RecordingSleep

CONFIG = WelcomeConfig(app_base_url="https://app.example.com", max_attempts=3, retry_delay_seconds=2.0)


def _practitioner(email: str | None = "ada@example.com", given: str | None = "Ada") -> dict:
    practitioner = {"resourceType": "Practitioner", "id": "pract-1"}
    if given:
        practitioner["name"] = [{"given": [given], "family": "Lovelace"}]
    if email:
        practitioner["telecom"] = [{"system": "phone", "value": "555"}, {"system": "email", "value": email}]
    return practitioner


def _platform(with_membership: bool = True, org_name: str | None = "Lovelace Clinic") -> FakeFHIRClient:
    fhir = FakeFHIRClient()
    if org_name:
        fhir.add({"resourceType": "Organization", "id": "org-1", "name": org_name})
    if with_membership:
        fhir.add(
            {
                "resourceType": "ProjectMembership",
                "id": "pm-1",
                "profile": {"reference": "Practitioner/pract-1"},
                "access": [
                    {
                        "policy": {"reference": "AccessPolicy/policy-1"},
                        "parameter": [
                            {
                                "name": "current_organization",
                                "valueReference": {"reference": "Organization/org-1"},
                            }
                        ],
                    }
                ],
            }
        )
    return fhir


async def _store_token(fhir: FakeFHIRClient) -> dict:
    return await security_token_service.persist_security_token(
        fhir, "Practitioner/pract-1", "tok-1", "sec-1", "User/user-1"
    )


def _bot_logs(fhir: FakeFHIRClient) -> list[dict]:
    return [
        c
        for c in fhir.all("Communication")
        if c["category"][0]["coding"][0]["code"] == BOT_LOG_CATEGORY
    ]


@pytest.mark.asyncio
async def test_sends_welcome_email_with_setup_link():
    fhir = _platform()
    record = await _store_token(fhir)
    sender = RecordingSender()
    sleep = RecordingSleep()

    result = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=sleep)

    assert result.status == WelcomeStatus.SENT
    assert result.message_id == "msg_1"
    assert result.attempts == 1
    assert sleep.delays == []

    message = sender.sent[0]
    assert message["to_email"] == "ada@example.com"
    assert message["subject"] == "Welcome to Lovelace Clinic"
    assert "Welcome Ada!" in message["html"]
    assert "https://app.example.com/setpassword/tok-1/sec-1" in message["html"]
    assert message["idempotency_key"] == "welcome/pract-1/tok-1"

    assert fhir.get("Communication", record["id"])["status"] == "completed"
    assert len(_bot_logs(fhir)) == 1


@pytest.mark.asyncio
async def test_no_email_makes_zero_send_attempts():
    fhir = _platform()
    sender = RecordingSender()

    result = await send_welcome_email(fhir, sender, _practitioner(email=None), CONFIG, sleep=RecordingSleep())

    assert result.status == WelcomeStatus.SKIPPED_NO_EMAIL
    assert sender.sent == []
    assert fhir.count("search") == 0


@pytest.mark.asyncio
async def test_no_membership_is_skipped():
    fhir = _platform(with_membership=False)
    sender = RecordingSender()

    result = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=RecordingSleep())

    assert result.status == WelcomeStatus.SKIPPED_NO_MEMBERSHIP
    assert sender.sent == []


@pytest.mark.asyncio
async def test_token_never_arrives_after_three_spaced_attempts():
    fhir = _platform()
    sender = RecordingSender()
    sleep = RecordingSleep()

    result = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=sleep)

    assert result.status == WelcomeStatus.TOKEN_NOT_FOUND
    assert result.attempts == 3
    assert sleep.delays == [2.0, 2.0]
    assert fhir.count("search") == 1 + 3  # membership + token lookups
    assert sender.sent == []


@pytest.mark.asyncio
async def test_token_arriving_on_second_attempt_is_used():
    fhir = _platform()
    sender = RecordingSender()

    class StoreOnFirstSleep(RecordingSleep):
        async def __call__(self, delay):
            await super().__call__(delay)
            await _store_token(fhir)

    sleep = StoreOnFirstSleep()
    result = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=sleep)

    assert result.status == WelcomeStatus.SENT
    assert result.attempts == 2
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_malformed_token_terminates_without_sending():
    fhir = _platform()
    record = await _store_token(fhir)
    broken = fhir.get("Communication", record["id"])
    broken["payload"] = [{"contentString": json.dumps({"id": "tok-1"})}]
    await fhir.update_resource(broken)
    sender = RecordingSender()

    result = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=RecordingSleep())

    assert result.status == WelcomeStatus.INVALID_TOKEN
    assert sender.sent == []


@pytest.mark.asyncio
async def test_send_failure_leaves_token_unconsumed():
    fhir = _platform()
    record = await _store_token(fhir)
    sender = RecordingSender(EmailSendResult(success=False, error="Resend API error: 500"))

    result = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=RecordingSleep())

    assert result.status == WelcomeStatus.SEND_FAILED
    assert result.detail == "Resend API error: 500"
    assert fhir.get("Communication", record["id"])["status"] == "in-progress"


@pytest.mark.asyncio
async def test_missing_organization_uses_default_name_and_greeting():
    fhir = _platform(org_name=None)
    await _store_token(fhir)
    sender = RecordingSender()

    result = await send_welcome_email(
        fhir, sender, _practitioner(given=None), CONFIG, sleep=RecordingSleep()
    )

    assert result.status == WelcomeStatus.SENT
    assert sender.sent[0]["subject"] == "Welcome to Our Platform"
    assert "Welcome New User!" in sender.sent[0]["html"]


@pytest.mark.asyncio
async def test_lookup_failure_is_reported_not_raised():
    fhir = _platform()
    fhir.fail_on["search:ProjectMembership"] = FHIRServerError("down", status_code=503)
    sender = RecordingSender()

    result = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=RecordingSleep())

    assert result.status == WelcomeStatus.LOOKUP_FAILED
    assert "down" in result.detail
    assert sender.sent == []
    assert len(_bot_logs(fhir)) == 1


@pytest.mark.asyncio
async def test_token_search_failure_is_a_lookup_failure():
    fhir = _platform()
    fhir.fail_on["search:Communication"] = FHIRServerError("down", status_code=503)

    result = await send_welcome_email(
        fhir, RecordingSender(), _practitioner(), CONFIG, sleep=RecordingSleep()
    )

    assert result.status == WelcomeStatus.LOOKUP_FAILED


@pytest.mark.asyncio
async def test_credential_relayed_twice_is_sent_once():
    fhir = _platform()
    first = await _store_token(fhir)
    second = await _store_token(fhir)
    sender = RecordingSender()

    sent = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=RecordingSleep())
    again = await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=RecordingSleep())

    assert sent.status == WelcomeStatus.SENT
    assert again.status == WelcomeStatus.TOKEN_NOT_FOUND
    assert len(sender.sent) == 1
    assert fhir.get("Communication", first["id"])["status"] == "completed"
    assert fhir.get("Communication", second["id"])["status"] == "completed"


@pytest.mark.asyncio
async def test_other_credentials_stay_pending_after_send():
    fhir = _platform()
    older = await _store_token(fhir)
    await security_token_service.persist_security_token(
        fhir, "Practitioner/pract-1", "tok-2", "sec-2", "User/user-1"
    )
    sender = RecordingSender()

    await send_welcome_email(fhir, sender, _practitioner(), CONFIG, sleep=RecordingSleep())

    assert "/setpassword/tok-2/sec-2" in sender.sent[0]["html"]
    assert fhir.get("Communication", older["id"])["status"] == "in-progress"


def test_compose_welcome_email_escapes_html():
    subject, body = compose_welcome_email("<b>Ada</b>", "A & B", "https://x/setpassword/1/2")

    assert subject == "Welcome to A & B"
    assert "&lt;b&gt;Ada&lt;/b&gt;" in body
    assert "A &amp; B" in body
