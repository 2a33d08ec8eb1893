"""FastAPI dependencies for the FHIR client and internal authentication."""

from typing import AsyncGenerator

from fastapi import Header, HTTPException

from practice_bots.core.config import settings
from practice_bots.services.fhir_client import FHIRClient
from practice_bots.services.registration_service import ClientFactory, default_client_factory

INTERNAL_SECRET_HEADER = "X-Internal-Secret"


async def get_fhir_client() -> AsyncGenerator[FHIRClient, None]:
    """
    Bot-credential FHIR client dependency.

    Login is deferred to the handler so requests rejected at the boundary
    (bad signature, unknown bot) never hit the token endpoint.
    """
    client = FHIRClient.from_settings(settings)
    try:
        yield client
    finally:
        await client.aclose()


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def get_registration_client_factory() -> ClientFactory:
    """Admin client factory for registration; overridden in tests."""
    return default_client_factory
