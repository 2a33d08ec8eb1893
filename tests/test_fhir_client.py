"""Tests for the FHIR client against a mocked transport."""

import json

import httpx
import pytest

from practice_bots.services.fhir_client import (
    FHIRAuthenticationError,
    FHIRClient,
    FHIRConnectionError,
    FHIRNotFoundError,
    FHIRServerError,
    FHIRValidationError,
)

BASE_URL = "https://fhir.example.com/"


def _client(handler, **kwargs) -> FHIRClient:
    return FHIRClient(
        BASE_URL,
        client_id="cid",
        client_secret="csecret",
        transport=httpx.MockTransport(handler),
        retry_base_delay=0,
        **kwargs,
    )


def _token_response(request: httpx.Request) -> httpx.Response | None:
    if request.url.path == "/oauth2/token":
        return httpx.Response(200, json={"access_token": "tok-1", "token_type": "Bearer"})
    return None


@pytest.mark.asyncio
async def test_login_sends_client_credentials_and_uses_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        token = _token_response(request)
        if token:
            return token
        return httpx.Response(200, json={"resourceType": "Practitioner", "id": "p1"})

    async with _client(handler) as client:
        await client.login_client_credentials()
        practitioner = await client.read_resource("Practitioner", "p1")

    assert practitioner["id"] == "p1"
    login, read = seen
    form = dict(pair.split("=") for pair in login.content.decode().split("&"))
    assert form["grant_type"] == "client_credentials"
    assert form["client_id"] == "cid"
    assert read.url.path == "/fhir/R4/Practitioner/p1"
    assert read.headers["Authorization"] == "Bearer tok-1"


@pytest.mark.asyncio
async def test_login_without_credentials_raises():
    client = FHIRClient(BASE_URL, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(FHIRAuthenticationError):
        await client.login_client_credentials()
    await client.aclose()


@pytest.mark.asyncio
async def test_read_missing_resource_raises_not_found_with_outcome_text():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404,
            json={
                "resourceType": "OperationOutcome",
                "issue": [{"severity": "error", "code": "not-found", "details": {"text": "Not found"}}],
            },
        )

    async with _client(handler) as client:
        with pytest.raises(FHIRNotFoundError) as exc_info:
            await client.read_resource("Organization", "missing")

    assert exc_info.value.status_code == 404
    assert "Not found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_search_returns_bundle_resources_and_passes_params():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "resourceType": "Bundle",
                "entry": [
                    {"resource": {"resourceType": "Account", "id": "a1"}},
                    {"resource": {"resourceType": "Account", "id": "a2"}},
                ],
            },
        )

    async with _client(handler) as client:
        results = await client.search("Account", {"identifier": "https://stripe.com/account/id|cus_1"})
        first = await client.search_one("Account", {"identifier": "x|y"})

    assert [r["id"] for r in results] == ["a1", "a2"]
    assert first["id"] == "a1"
    assert seen[0].url.params["identifier"] == "https://stripe.com/account/id|cus_1"
    assert seen[1].url.params["_count"] == "1"


@pytest.mark.asyncio
async def test_conditional_create_sends_if_none_exist_header():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = json.loads(request.content)
        return httpx.Response(201, json={**body, "id": "acct-1"})

    async with _client(handler) as client:
        created = await client.create_resource_if_none_exist(
            {"resourceType": "Account", "status": "active"},
            "identifier=https://stripe.com/account/id|cus_1",
        )

    assert created["id"] == "acct-1"
    assert seen[0].method == "POST"
    assert seen[0].headers["If-None-Exist"] == "identifier=https://stripe.com/account/id|cus_1"


@pytest.mark.asyncio
async def test_update_without_id_raises_before_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with _client(handler) as client:
        with pytest.raises(FHIRValidationError):
            await client.update_resource({"resourceType": "Practitioner"})


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_raised():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503)

    async with _client(handler, max_attempts=2) as client:
        with pytest.raises(FHIRServerError):
            await client.read_resource("Practitioner", "p1")

    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_transport_failure_maps_to_connection_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler, max_attempts=1) as client:
        with pytest.raises(FHIRConnectionError):
            await client.read_resource("Practitioner", "p1")


@pytest.mark.asyncio
async def test_post_to_platform_endpoint_outside_fhir_path():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"")

    async with _client(handler) as client:
        result = await client.post("email/v1/send", {"to": "a@b.com"})

    assert result == {}
    assert seen[0].url.path == "/email/v1/send"
