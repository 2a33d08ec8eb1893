"""Billing webhook and reconciliation schemas.

Only the Stripe fields the reconciler reads are modelled; everything else in
the payload is ignored.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: dict = Field(default_factory=dict)


class StripeEvent(BaseModel):
    """Stripe event envelope ``{id, type, data.object}``."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str
    data: StripeEventData = Field(default_factory=StripeEventData)


class StripePrice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    nickname: str | None = None


class StripeSubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: StripePrice | None = None


class StripeSubscriptionItems(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[StripeSubscriptionItem] = Field(default_factory=list)


class StripeSubscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    customer: str | None = None
    status: str | None = None
    current_period_end: int | None = None
    canceled_at: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    items: StripeSubscriptionItems = Field(default_factory=StripeSubscriptionItems)

    @property
    def price_id(self) -> str | None:
        for item in self.items.data:
            if item.price and item.price.id:
                return item.price.id
        return None

    @property
    def organization_id(self) -> str | None:
        return self.metadata.get("organizationId") or None


class StripeInvoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    customer: str | None = None
    subscription: str | None = None
    amount_due: int = 0
    amount_paid: int = 0
    currency: str = "usd"
    status: str | None = None


class OrganizationSubscription(BaseModel):
    """Subscription state recorded on an Organization."""

    status: str
    plan: str | None = None
    subscription_id: str | None = None
    period_end: datetime | None = None
    sessions_used: int = 0
    sessions_allowed: int = 0
    last_reset: datetime | None = None


class ReconcileResult(BaseModel):
    """Outcome of reconciling one billing event."""

    handled: bool
    action: str
    event_type: str
    account_id: str | None = None
    invoice_id: str | None = None
    organization_id: str | None = None
