"""Registration router - organization signup."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from practice_bots.core.config import settings
from practice_bots.core.deps import get_registration_client_factory
from practice_bots.core.rate_limit import limiter, registration_limit
from practice_bots.schemas.registration import RegistrationRequest, RegistrationResult
from practice_bots.services import registration_service
from practice_bots.services.fhir_client import FHIRError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=RegistrationResult, status_code=201)
@limiter.limit(registration_limit)
async def register(
    request: Request,
    body: RegistrationRequest,
    client_factory: registration_service.ClientFactory = Depends(get_registration_client_factory),
):
    """
    Create an organization and invite its first admin practitioner.

    - 500 when the admin credentials are not configured
    - 502 when the FHIR platform rejects a step (the organization may
      already exist; there is no rollback)
    """
    config = registration_service.RegistrationConfig.from_settings(settings)
    try:
        return await registration_service.register_organization(
            body, config, client_factory=client_factory
        )
    except registration_service.RegistrationConfigError as exc:
        logger.error("Registration misconfigured: missing %s", ", ".join(exc.missing))
        raise HTTPException(status_code=500, detail="Registration is not configured")
    except FHIRError as exc:
        logger.warning("Registration failed upstream (%s): %s", exc.status_code, exc)
        raise HTTPException(status_code=502, detail=str(exc))
