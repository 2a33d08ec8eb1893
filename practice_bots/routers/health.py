"""Health router."""

from fastapi import APIRouter

from practice_bots.core.config import settings

router = APIRouter()


@router.get("/health")
def health():
    """Liveness check. Does not call the FHIR platform."""
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
