"""Subscription model: a user's paid plan and its Stripe billing state."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

ACTIVE = "active"
CANCELED = "canceled"
PAST_DUE = "past_due"
INCOMPLETE = "incomplete"

# Statuses that still hold the user's single live subscription slot
NON_TERMINAL_STATUSES: tuple[str, ...] = (ACTIVE, PAST_DUE, INCOMPLETE)

# Stripe subscription statuses folded onto the four local ones
STRIPE_STATUS_MAP: dict[str, str] = {
    "active": ACTIVE,
    "trialing": ACTIVE,
    "past_due": PAST_DUE,
    "unpaid": PAST_DUE,
    "paused": PAST_DUE,
    "incomplete": INCOMPLETE,
    "incomplete_expired": CANCELED,
    "canceled": CANCELED,
}


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's plan, billing date, and pending changes.

    ``metadata`` keys written by the billing services:

    - ``pending_downgrade_plan_id`` / ``pending_downgrade_effective_date``
    - ``original_plan_id`` and ``upgrade_history`` for upgrades within a cycle
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("plans.id"), nullable=False)

    # Stripe identifiers
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default=ACTIVE)

    # Billing period
    next_billing_date: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    canceled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    @property
    def pending_downgrade_plan_id(self) -> str | None:
        return (self.metadata_ or {}).get("pending_downgrade_plan_id")

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, user_id={self.user_id}, plan_id={self.plan_id}, status={self.status})>"
