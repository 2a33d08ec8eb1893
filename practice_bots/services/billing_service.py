"""Billing reconciler - mirrors Stripe subscription and invoice events into FHIR.

Accounts and invoices are upserted by their Stripe identifiers so a
redelivered webhook never creates a second record. Signature verification
happens before this module is reached (see services/webhooks/stripe.py).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from practice_bots.core.config import Settings
from practice_bots.core.structured_logging import build_log_context
from practice_bots.enums import (
    INVOICE_EVENTS,
    SUBSCRIPTION_UPSERT_EVENTS,
    BillingAccountStatus,
    BotName,
    InvoiceStatus,
    StripeEventType,
)
from practice_bots.schemas.billing import (
    OrganizationSubscription,
    ReconcileResult,
    StripeEvent,
    StripeInvoice,
    StripeSubscription,
)
from practice_bots.services import bot_log_service, organization_service
from practice_bots.services.fhir_client import FHIRClient
from practice_bots.services.fhir_utils import reference_to
from practice_bots.types import FhirResource

logger = logging.getLogger(__name__)

STRIPE_ACCOUNT_SYSTEM = "https://stripe.com/account/id"
STRIPE_INVOICE_SYSTEM = "https://stripe.com/invoice/id"
FREE_PLAN = "free"
CANCELLED_STATUS = "cancelled"
BOT = BotName.BILLING_RECONCILER.value

# Stripe amounts for these currencies are already in major units
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)

_INVOICE_STATUS_MAP = {
    "paid": InvoiceStatus.BALANCED,
    "open": InvoiceStatus.ISSUED,
    "uncollectible": InvoiceStatus.CANCELLED,
    "void": InvoiceStatus.CANCELLED,
}


@dataclass(frozen=True)
class BillingConfig:
    plan_session_limits: dict[str, int] = field(default_factory=dict)
    free_tier_sessions: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "BillingConfig":
        return cls(
            plan_session_limits=settings.plan_session_limits,
            free_tier_sessions=settings.BILLING_FREE_TIER_SESSIONS,
        )

    def sessions_for_plan(self, price_id: str | None) -> int:
        if price_id and price_id in self.plan_session_limits:
            return self.plan_session_limits[price_id]
        if price_id and price_id != FREE_PLAN:
            logger.info("Price %s has no session limit configured, using free tier", price_id)
        return self.free_tier_sessions


def map_invoice_status(status: str | None) -> InvoiceStatus:
    """Map a Stripe invoice status to the local vocabulary. Total: unknown -> draft."""
    return _INVOICE_STATUS_MAP.get(status or "", InvoiceStatus.DRAFT)


def to_money(amount_minor: int, currency: str) -> dict[str, object]:
    code = (currency or "usd").lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        value = Decimal(amount_minor)
    else:
        value = Decimal(amount_minor) / Decimal(100)
    return {"value": float(value), "currency": code.upper()}


def _identifier_query(system: str, value: str) -> str:
    return f"identifier={system}|{value}"


# =============================================================================
# Accounts
# =============================================================================


def build_billing_account(customer_id: str) -> FhirResource:
    return {
        "resourceType": "Account",
        "identifier": [{"system": STRIPE_ACCOUNT_SYSTEM, "value": customer_id}],
        "status": BillingAccountStatus.ACTIVE.value,
    }


async def find_billing_account(client: FHIRClient, customer_id: str) -> FhirResource | None:
    return await client.search_one(
        "Account", {"identifier": f"{STRIPE_ACCOUNT_SYSTEM}|{customer_id}"}
    )


async def upsert_billing_account(client: FHIRClient, customer_id: str) -> FhirResource:
    """Reuse the Account for this Stripe customer, creating it if absent."""
    account = await find_billing_account(client, customer_id)
    if account:
        return account
    account = await client.create_resource_if_none_exist(
        build_billing_account(customer_id),
        _identifier_query(STRIPE_ACCOUNT_SYSTEM, customer_id),
    )
    logger.info("Billing account ensured for customer=%s account=%s", customer_id, account.get("id"))
    return account


async def set_billing_account_status(
    client: FHIRClient,
    account: FhirResource,
    status: BillingAccountStatus,
) -> FhirResource:
    if account.get("status") == status.value:
        return account
    return await client.update_resource({**account, "status": status.value})


# =============================================================================
# Invoices
# =============================================================================


def build_billing_invoice(invoice: StripeInvoice, account: FhirResource) -> FhirResource:
    return {
        "resourceType": "Invoice",
        "identifier": [{"system": STRIPE_INVOICE_SYSTEM, "value": invoice.id}],
        "status": map_invoice_status(invoice.status).value,
        "account": reference_to(account),
        "totalGross": to_money(invoice.amount_due, invoice.currency),
        "totalNet": to_money(invoice.amount_paid, invoice.currency),
    }


_INVOICE_SYNC_FIELDS = ("status", "account", "totalGross", "totalNet")


async def upsert_billing_invoice(
    client: FHIRClient,
    invoice: StripeInvoice,
    account: FhirResource,
) -> tuple[FhirResource, str]:
    """
    Create the Invoice for this Stripe invoice id, or bring the existing one up to date.

    Returns ``(invoice_resource, action)`` with action ``created``, ``updated`` or ``unchanged``.
    """
    desired = build_billing_invoice(invoice, account)
    existing = await client.search_one(
        "Invoice", {"identifier": f"{STRIPE_INVOICE_SYSTEM}|{invoice.id}"}
    )
    if existing is None:
        created = await client.create_resource_if_none_exist(
            desired, _identifier_query(STRIPE_INVOICE_SYSTEM, str(invoice.id))
        )
        return created, "created"

    if all(existing.get(key) == desired[key] for key in _INVOICE_SYNC_FIELDS):
        return existing, "unchanged"

    updated = await client.update_resource(
        {**existing, **{key: desired[key] for key in _INVOICE_SYNC_FIELDS}}
    )
    return updated, "updated"


# =============================================================================
# Event handlers
# =============================================================================


async def _sync_organization_subscription(
    client: FHIRClient,
    subscription: StripeSubscription,
    config: BillingConfig,
) -> str | None:
    organization_id = subscription.organization_id
    if not organization_id:
        return None
    period_end = (
        datetime.fromtimestamp(subscription.current_period_end, tz=timezone.utc)
        if subscription.current_period_end
        else None
    )
    await organization_service.update_organization_subscription(
        client,
        organization_id,
        OrganizationSubscription(
            status=subscription.status or "unknown",
            plan=subscription.price_id,
            subscription_id=subscription.id,
            period_end=period_end,
            sessions_allowed=config.sessions_for_plan(subscription.price_id),
            last_reset=datetime.now(timezone.utc),
        ),
    )
    return organization_id


async def handle_subscription_upsert(
    client: FHIRClient,
    event: StripeEvent,
    config: BillingConfig,
) -> ReconcileResult:
    subscription = StripeSubscription.model_validate(event.data.object)
    if not subscription.customer:
        logger.warning("Subscription event %s has no customer id", event.id)
        return ReconcileResult(handled=False, action="missing_customer", event_type=event.type)

    account = await upsert_billing_account(client, subscription.customer)
    organization_id = await _sync_organization_subscription(client, subscription, config)
    return ReconcileResult(
        handled=True,
        action="account_upserted",
        event_type=event.type,
        account_id=account.get("id"),
        organization_id=organization_id,
    )


async def handle_subscription_deleted(
    client: FHIRClient,
    event: StripeEvent,
    config: BillingConfig,
) -> ReconcileResult:
    subscription = StripeSubscription.model_validate(event.data.object)
    account_id = None
    if subscription.customer:
        account = await find_billing_account(client, subscription.customer)
        if account:
            account = await set_billing_account_status(
                client, account, BillingAccountStatus.INACTIVE
            )
            account_id = account.get("id")

    organization_id = subscription.organization_id
    if organization_id:
        ended = subscription.canceled_at or int(datetime.now(timezone.utc).timestamp())
        await organization_service.update_organization_subscription(
            client,
            organization_id,
            OrganizationSubscription(
                status=CANCELLED_STATUS,
                plan=FREE_PLAN,
                period_end=datetime.fromtimestamp(ended, tz=timezone.utc),
                sessions_allowed=config.free_tier_sessions,
                last_reset=datetime.now(timezone.utc),
            ),
        )
    return ReconcileResult(
        handled=True,
        action="subscription_cancelled",
        event_type=event.type,
        account_id=account_id,
        organization_id=organization_id,
    )


async def handle_invoice_event(
    client: FHIRClient,
    event: StripeEvent,
    config: BillingConfig,
) -> ReconcileResult:
    invoice = StripeInvoice.model_validate(event.data.object)
    if not invoice.id or not invoice.customer:
        logger.warning("Invoice event %s missing invoice or customer id", event.id)
        return ReconcileResult(handled=False, action="missing_identifiers", event_type=event.type)

    account = await upsert_billing_account(client, invoice.customer)
    record, action = await upsert_billing_invoice(client, invoice, account)
    logger.info(
        "Invoice %s %s (status=%s)", invoice.id, action, record.get("status")
    )
    return ReconcileResult(
        handled=True,
        action=f"invoice_{action}",
        event_type=event.type,
        account_id=account.get("id"),
        invoice_id=record.get("id"),
    )


async def _dispatch(client: FHIRClient, event: StripeEvent, config: BillingConfig) -> ReconcileResult:
    if event.type in SUBSCRIPTION_UPSERT_EVENTS:
        return await handle_subscription_upsert(client, event, config)
    if event.type == StripeEventType.SUBSCRIPTION_DELETED.value:
        return await handle_subscription_deleted(client, event, config)
    if event.type in INVOICE_EVENTS:
        return await handle_invoice_event(client, event, config)

    logger.info("Skipping unhandled Stripe event type: %s", event.type)
    return ReconcileResult(handled=False, action="ignored", event_type=event.type)


async def reconcile_event(
    client: FHIRClient,
    event: StripeEvent,
    config: BillingConfig | None = None,
) -> ReconcileResult:
    """
    Apply one verified Stripe event to the FHIR store.

    Unknown event types are ignored without any writes. FHIRError from the
    store propagates so the webhook returns an error and Stripe redelivers.
    """
    result = await _dispatch(client, event, config or BillingConfig())
    logger.info(
        "Billing event reconciled: %s",
        result.action,
        extra=build_log_context(
            bot=BOT,
            org_id=result.organization_id,
            event_id=event.id,
            event_type=event.type,
        ),
    )
    if result.handled:
        await bot_log_service.record_bot_log(
            client,
            BOT,
            result.action,
            f"{event.type} {event.id or ''}".strip(),
            details=result.model_dump(exclude_none=True),
        )
    return result
