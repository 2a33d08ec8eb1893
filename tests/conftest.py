"""
Test configuration and fixtures.

Provides:
- In-memory FHIR client wired into the app's dependency
- HTTPX AsyncClient against the ASGI app
- Settings populated with test credentials
"""
import os
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

# Rate limiting off, in-memory storage
os.environ["TESTING"] = "1"

from practice_bots.core.config import settings
from practice_bots.core.deps import get_fhir_client
from practice_bots.main import app

from fakes import TEST_INTERNAL_SECRET, TEST_STRIPE_SECRET, FakeFHIRClient


@pytest.fixture
def fhir() -> FakeFHIRClient:
    return FakeFHIRClient()


@pytest.fixture
def configured_settings(monkeypatch):
    """Populate every secret the bots need with test values."""
    values = {
        "MEDPLUM_CLIENT_ID": "bot-client",
        "MEDPLUM_CLIENT_SECRET": "bot-secret",
        "MEDPLUM_MULTITENANT_ADMIN_CLIENT_ID": "admin-client",
        "MEDPLUM_MULTITENANT_ADMIN_CLIENT_SECRET": "admin-secret",
        "MEDPLUM_MULTITENANT_ACCESS_POLICY_ID": "policy-1",
        "MEDPLUM_PROJECT_ID": "project-1",
        "STRIPE_WEBHOOK_SECRET": TEST_STRIPE_SECRET,
        "INTERNAL_SECRET": TEST_INTERNAL_SECRET,
        "EMAIL_PROVIDER": "medplum",
        "APP_BASE_URL": "https://app.example.com",
        "BILLING_PLAN_SESSION_LIMITS": '{"price_pro": 100}',
    }
    for key, value in values.items():
        monkeypatch.setattr(settings, key, value)
    return settings


@pytest.fixture
async def client(fhir: FakeFHIRClient) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient whose FHIR dependency is the in-memory fake."""

    async def override_get_fhir_client():
        yield fhir

    app.dependency_overrides[get_fhir_client] = override_get_fhir_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
