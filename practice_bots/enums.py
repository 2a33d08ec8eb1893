"""Domain enums."""

from enum import Enum


class BotName(str, Enum):
    """Bots that can be dispatched by platform subscriptions or the CLI."""

    ORGANIZATION_REGISTRATION = "organization-registration"
    WELCOME_EMAIL = "welcome-email"
    BILLING_RECONCILER = "billing-reconciler"


class WelcomeStatus(str, Enum):
    """Terminal outcome of a welcome notifier run."""

    SENT = "sent"
    SKIPPED_NO_EMAIL = "skipped_no_email"
    SKIPPED_NO_MEMBERSHIP = "skipped_no_membership"
    TOKEN_NOT_FOUND = "token_not_found"  # Relay never delivered within the retry window
    INVALID_TOKEN = "invalid_token"
    LOOKUP_FAILED = "lookup_failed"  # Platform error before any send was attempted
    SEND_FAILED = "send_failed"


class InvoiceStatus(str, Enum):
    """Local billing invoice status (FHIR Invoice.status vocabulary)."""

    DRAFT = "draft"
    ISSUED = "issued"
    BALANCED = "balanced"
    CANCELLED = "cancelled"


class BillingAccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class StripeEventType(str, Enum):
    """Stripe event types the billing reconciler acts on."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_FINALIZED = "invoice.finalized"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    INVOICE_VOIDED = "invoice.voided"
    INVOICE_MARKED_UNCOLLECTIBLE = "invoice.marked_uncollectible"


SUBSCRIPTION_UPSERT_EVENTS = frozenset(
    {
        StripeEventType.SUBSCRIPTION_CREATED.value,
        StripeEventType.SUBSCRIPTION_UPDATED.value,
    }
)

INVOICE_EVENTS = frozenset(
    {
        StripeEventType.INVOICE_PAID.value,
        StripeEventType.INVOICE_PAYMENT_SUCCEEDED.value,
        StripeEventType.INVOICE_FINALIZED.value,
        StripeEventType.INVOICE_PAYMENT_FAILED.value,
        StripeEventType.INVOICE_VOIDED.value,
        StripeEventType.INVOICE_MARKED_UNCOLLECTIBLE.value,
    }
)
