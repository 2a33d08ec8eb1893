"""
FHIR platform client (Medplum-compatible).

Async client over httpx with:
- OAuth2 client-credentials login
- Resource read / create / conditional create / update / search
- Raw POST for non-FHIR admin endpoints (invites, email)
- Retry with backoff for 429/5xx and transport errors
- Error mapping to a small exception hierarchy
"""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import urljoin

import httpx

from practice_bots.core.config import Settings
from practice_bots.services.fhir_utils import outcome_message, parse_reference
from practice_bots.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries
from practice_bots.types import FhirResource, JsonObject

logger = logging.getLogger(__name__)

FHIR_PATH = "fhir/R4/"
TOKEN_PATH = "oauth2/token"
FHIR_CONTENT_TYPE = "application/fhir+json"
FHIR_MAX_ATTEMPTS = 3
FHIR_RETRY_BASE_DELAY = 0.5
FHIR_RETRY_MAX_DELAY = 4.0


# ==============================================================================
# Exceptions
# ==============================================================================


class FHIRError(Exception):
    """Base FHIR error"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        outcome: JsonObject | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.outcome = outcome


class FHIRAuthenticationError(FHIRError):
    """Authentication failed"""


class FHIRAuthorizationError(FHIRError):
    """Authorization denied"""


class FHIRNotFoundError(FHIRError):
    """Resource not found"""


class FHIRConflictError(FHIRError):
    """Resource conflict (version mismatch or duplicate)"""


class FHIRValidationError(FHIRError):
    """Resource validation failed"""


class FHIRRateLimitError(FHIRError):
    """Rate limit exceeded"""


class FHIRServerError(FHIRError):
    """Server error"""


class FHIRTimeoutError(FHIRError):
    """Request timeout"""


class FHIRConnectionError(FHIRError):
    """Transport failure after retries"""


_STATUS_ERRORS: dict[int, type[FHIRError]] = {
    400: FHIRValidationError,
    401: FHIRAuthenticationError,
    403: FHIRAuthorizationError,
    404: FHIRNotFoundError,
    409: FHIRConflictError,
    410: FHIRNotFoundError,
    412: FHIRConflictError,
    422: FHIRValidationError,
    429: FHIRRateLimitError,
}


def _raise_for_response(response: httpx.Response, operation: str) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = outcome_message(body) or response.reason_phrase or "request failed"
    message = f"FHIR {operation} failed ({response.status_code}): {detail}"
    error_cls = _STATUS_ERRORS.get(response.status_code)
    if error_cls is None:
        error_cls = FHIRServerError if response.status_code >= 500 else FHIRError
    raise error_cls(
        message,
        status_code=response.status_code,
        outcome=body if isinstance(body, dict) else None,
    )


class FHIRClient:
    """Thin async client for a Medplum-style FHIR server."""

    def __init__(
        self,
        base_url: str,
        *,
        client_id: str = "",
        client_secret: str = "",
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int = FHIR_MAX_ATTEMPTS,
        retry_base_delay: float = FHIR_RETRY_BASE_DELAY,
    ):
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.client_id = client_id
        self.client_secret = client_secret
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self._access_token: str | None = None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": FHIR_CONTENT_TYPE},
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "FHIRClient":
        return cls(
            settings.FHIR_BASE_URL,
            client_id=kwargs.pop("client_id", settings.MEDPLUM_CLIENT_ID),
            client_secret=kwargs.pop("client_secret", settings.MEDPLUM_CLIENT_SECRET),
            timeout=kwargs.pop("timeout", settings.FHIR_TIMEOUT_SECONDS),
            **kwargs,
        )

    async def __aenter__(self) -> "FHIRClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login_client_credentials(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> None:
        """Exchange client credentials for a bearer token."""
        client_id = client_id or self.client_id
        client_secret = client_secret or self.client_secret
        if not client_id or not client_secret:
            raise FHIRAuthenticationError("Client credentials not configured")

        response = await self._send(
            "POST",
            TOKEN_PATH,
            data={
                "grant_type": "client_credentials",
                "client_id": client_id,
                "client_secret": client_secret,
            },
            authenticated=False,
        )
        _raise_for_response(response, "login")
        token = response.json().get("access_token")
        if not token:
            raise FHIRAuthenticationError("Token endpoint returned no access_token")
        self._access_token = token
        logger.info("FHIR client authenticated client_id=%s", client_id)

    async def ensure_login(self) -> None:
        if not self.is_authenticated:
            await self.login_client_credentials()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = True,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        if authenticated and self._access_token:
            request_headers["Authorization"] = f"Bearer {self._access_token}"

        async def request_fn() -> httpx.Response:
            return await self._http.request(method, path, headers=request_headers, **kwargs)

        try:
            return await request_with_retries(
                request_fn,
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                max_delay=FHIR_RETRY_MAX_DELAY,
                retry_statuses=DEFAULT_RETRY_STATUSES,
            )
        except httpx.TimeoutException as exc:
            raise FHIRTimeoutError(f"FHIR {method} {path} timed out") from exc
        except httpx.RequestError as exc:
            raise FHIRConnectionError(
                f"FHIR {method} {path} failed: {exc.__class__.__name__}"
            ) from exc

    def fhir_url(self, path: str) -> str:
        return urljoin(FHIR_PATH, path.lstrip("/"))

    # ------------------------------------------------------------------
    # FHIR REST
    # ------------------------------------------------------------------

    async def read_resource(self, resource_type: str, resource_id: str) -> FhirResource:
        response = await self._send("GET", self.fhir_url(f"{resource_type}/{resource_id}"))
        _raise_for_response(response, f"read {resource_type}/{resource_id}")
        return response.json()

    async def read_reference(self, reference: str | Mapping[str, Any]) -> FhirResource:
        ref = reference.get("reference") if isinstance(reference, Mapping) else reference
        parsed = parse_reference(ref)
        if not parsed:
            raise FHIRValidationError(f"Invalid reference: {ref!r}")
        return await self.read_resource(*parsed)

    async def create_resource(self, resource: FhirResource) -> FhirResource:
        resource_type = resource["resourceType"]
        response = await self._send(
            "POST",
            self.fhir_url(str(resource_type)),
            json=resource,
            headers={"Content-Type": FHIR_CONTENT_TYPE},
        )
        _raise_for_response(response, f"create {resource_type}")
        return response.json()

    async def create_resource_if_none_exist(
        self,
        resource: FhirResource,
        query: str,
    ) -> FhirResource:
        """Conditional create: the server returns the existing match if any."""
        resource_type = resource["resourceType"]
        response = await self._send(
            "POST",
            self.fhir_url(str(resource_type)),
            json=resource,
            headers={"Content-Type": FHIR_CONTENT_TYPE, "If-None-Exist": query},
        )
        _raise_for_response(response, f"conditional create {resource_type}")
        return response.json()

    async def update_resource(self, resource: FhirResource) -> FhirResource:
        resource_type = resource["resourceType"]
        resource_id = resource.get("id")
        if not resource_id:
            raise FHIRValidationError(f"Cannot update {resource_type} without id")
        response = await self._send(
            "PUT",
            self.fhir_url(f"{resource_type}/{resource_id}"),
            json=resource,
            headers={"Content-Type": FHIR_CONTENT_TYPE},
        )
        _raise_for_response(response, f"update {resource_type}/{resource_id}")
        return response.json()

    async def search(
        self,
        resource_type: str,
        params: Mapping[str, str] | None = None,
    ) -> list[FhirResource]:
        response = await self._send("GET", self.fhir_url(resource_type), params=dict(params or {}))
        _raise_for_response(response, f"search {resource_type}")
        bundle = response.json()
        return [
            entry["resource"]
            for entry in bundle.get("entry") or []
            if isinstance(entry, dict) and entry.get("resource")
        ]

    async def search_one(
        self,
        resource_type: str,
        params: Mapping[str, str] | None = None,
    ) -> FhirResource | None:
        query = dict(params or {})
        query.setdefault("_count", "1")
        results = await self.search(resource_type, query)
        return results[0] if results else None

    # ------------------------------------------------------------------
    # Non-FHIR endpoints
    # ------------------------------------------------------------------

    async def post(self, path: str, body: JsonObject) -> JsonObject:
        """POST JSON to a platform endpoint outside the FHIR API."""
        response = await self._send("POST", path.lstrip("/"), json=body)
        _raise_for_response(response, f"POST {path}")
        if not response.content:
            return {}
        return response.json()
