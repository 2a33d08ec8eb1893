"""Application configuration with environment variables."""

import json

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # FHIR platform (Medplum-compatible). FHIR API lives under fhir/R4/.
    FHIR_BASE_URL: str = "https://api.medplum.com/"
    FHIR_TIMEOUT_SECONDS: float = 20.0

    # Bot-level client credentials (notifier, reconciler)
    MEDPLUM_CLIENT_ID: str = ""
    MEDPLUM_CLIENT_SECRET: str = ""

    # Multi-tenant admin credentials (organization registration)
    MEDPLUM_MULTITENANT_ADMIN_CLIENT_ID: str = ""
    MEDPLUM_MULTITENANT_ADMIN_CLIENT_SECRET: str = ""
    MEDPLUM_MULTITENANT_ACCESS_POLICY_ID: str = ""
    MEDPLUM_PROJECT_ID: str = ""

    # Stripe webhooks
    STRIPE_WEBHOOK_SECRET: str = ""  # whsec_...
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_WEBHOOK_MAX_PAYLOAD_BYTES: int = 256000

    # Billing plans: JSON map of Stripe price id -> sessions allowed per period
    BILLING_PLAN_SESSION_LIMITS: str = ""
    BILLING_FREE_TIER_SESSIONS: int = 10

    # Email delivery ("medplum" = platform email endpoint, "resend" = Resend API)
    EMAIL_PROVIDER: str = "medplum"
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = ""

    # Frontend (password setup links)
    APP_BASE_URL: str = "http://localhost:5173"

    # Welcome email token polling
    WELCOME_TOKEN_MAX_ATTEMPTS: int = 3
    WELCOME_TOKEN_RETRY_DELAY_SECONDS: float = 2.0

    # Internal bot dispatch endpoint (X-Internal-Secret)
    INTERNAL_SECRET: str = ""

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_REGISTRATION: int = 5
    RATE_LIMIT_WEBHOOK: int = 100
    RATE_LIMIT_API: int = 60

    # Optional shared rate-limit storage
    REDIS_URL: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def plan_session_limits(self) -> dict[str, int]:
        """Parse BILLING_PLAN_SESSION_LIMITS into a price -> sessions map."""
        if not self.BILLING_PLAN_SESSION_LIMITS.strip():
            return {}
        raw = json.loads(self.BILLING_PLAN_SESSION_LIMITS)
        return {str(k): int(v) for k, v in raw.items()}


settings = Settings()
