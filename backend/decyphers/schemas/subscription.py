"""Schemas for plans, subscriptions and plan changes."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class PlanResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    price: Decimal
    currency: str
    interval: str
    tokens_per_cycle: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID
    status: str
    stripe_subscription_id: str | None = None
    next_billing_date: datetime | None = None
    canceled_at: datetime | None = None
    ends_at: datetime | None = None
    pending_downgrade_plan_id: str | None = None
    metadata: dict[str, Any] | None = Field(None, validation_alias="metadata_")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class CurrentSubscriptionResponse(BaseModel):
    """The user's subscription together with its plan; both null when unsubscribed."""

    subscription: SubscriptionResponse | None = None
    plan: PlanResponse | None = None


class CheckoutRequest(BaseModel):
    plan_id: uuid.UUID
    success_url: str | None = None
    cancel_url: str | None = None


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    session_id: str
    checkout_url: str


class ChangePlanRequest(BaseModel):
    plan_id: uuid.UUID


class ChangePlanResponse(BaseModel):
    """``upgrade`` fills the invoice fields, ``downgrade`` fills ``effective_date``."""

    type: Literal["upgrade", "downgrade"]
    invoice_url: str | None = None
    prorated_amount: float | None = None
    amount_due: float | None = None
    effective_date: datetime | None = None


class CancelRequest(BaseModel):
    immediate: bool = False
