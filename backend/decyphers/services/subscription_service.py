"""Subscription service: plan changes, renewals, cancel/resume, and lookups."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

import stripe
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.billing.plans import advance_billing_date, calculate_proration
from decyphers.billing.stripe_client import (
    cancel_subscription as stripe_cancel_subscription,
)
from decyphers.billing.stripe_client import (
    create_and_finalize_invoice,
    create_customer,
    first_item,
    get_subscription,
    set_cancel_at_period_end,
    switch_subscription_price,
    ts_to_naive,
)
from decyphers.database import utcnow
from decyphers.exceptions import BusinessRuleError, ConflictError, NotFoundError, PaymentGatewayError
from decyphers.models.plan import Plan
from decyphers.models.subscription import (
    ACTIVE,
    CANCELED,
    NON_TERMINAL_STATUSES,
    STRIPE_STATUS_MAP,
    Subscription,
)
from decyphers.models.user import User
from decyphers.services.referral_service import record_subscription_referral
from decyphers.services.token_service import reset_tokens

logger = logging.getLogger(__name__)

ALREADY_SUBSCRIBED = "You are already subscribed to this plan"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_plan(db: AsyncSession, plan_id: uuid.UUID | str) -> Plan:
    """Load a plan by id or raise NotFoundError."""
    try:
        key = plan_id if isinstance(plan_id, uuid.UUID) else uuid.UUID(str(plan_id))
    except ValueError:
        raise NotFoundError("Plan not found") from None
    plan = await db.get(Plan, key)
    if plan is None:
        raise NotFoundError("Plan not found")
    return plan


async def list_plans(db: AsyncSession, active_only: bool = True) -> list[Plan]:
    query = select(Plan).order_by(Plan.price)
    if active_only:
        query = query.where(Plan.is_active.is_(True))
    return list((await db.execute(query)).scalars().all())


async def get_active_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status == ACTIVE)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def has_active_subscription(db: AsyncSession, user_id: uuid.UUID) -> bool:
    return await get_active_subscription(db, user_id) is not None


async def get_current_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """The user's live subscription, or a canceled one still inside its paid period."""
    now = utcnow()
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            or_(
                Subscription.status.in_(NON_TERMINAL_STATUSES),
                Subscription.ends_at > now,
            ),
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_customer(
    db: AsyncSession, stripe_customer_id: str
) -> Subscription | None:
    """Look up the newest subscription by Stripe customer ID (used by webhooks)."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.stripe_customer_id == stripe_customer_id)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_subscription(
    db: AsyncSession, stripe_subscription_id: str
) -> Subscription | None:
    """Look up subscription by Stripe subscription ID (used by webhooks)."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
    )
    return result.scalar_one_or_none()


async def ensure_stripe_customer(db: AsyncSession, user: User) -> str:
    """Reuse the customer id from any earlier subscription, or create one."""
    result = await db.execute(
        select(Subscription.stripe_customer_id)
        .where(Subscription.user_id == user.id, Subscription.stripe_customer_id.is_not(None))
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    customer_id = result.scalar_one_or_none()
    if customer_id:
        return customer_id

    try:
        customer = await create_customer(
            email=user.email,
            name=user.name or user.email,
            user_id=str(user.id),
        )
    except stripe.StripeError as e:
        logger.error("Stripe customer creation failed for user %s: %s", user.id, e)
        raise PaymentGatewayError(f"Payment processing error: {e}") from e
    return customer.id


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_subscription(
    db: AsyncSession,
    user: User,
    plan: Plan,
    stripe_subscription_id: str | None = None,
    stripe_customer_id: str | None = None,
    now: datetime | None = None,
) -> Subscription:
    """Start a subscription and grant the plan's tokens for the first cycle.

    Idempotent for a Stripe subscription id that is already stored.
    """
    now = now or utcnow()

    if stripe_subscription_id:
        existing = await get_subscription_by_stripe_subscription(db, stripe_subscription_id)
        if existing is not None:
            return existing

    result = await db.execute(
        select(Subscription.id).where(
            Subscription.user_id == user.id,
            Subscription.status.in_(NON_TERMINAL_STATUSES),
        )
    )
    if result.first() is not None:
        raise ConflictError("User already has an active subscription")

    subscription = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
        status=ACTIVE,
        next_billing_date=advance_billing_date(now, plan.interval),
        metadata_={},
    )
    db.add(subscription)
    await db.flush()

    await reset_tokens(db, user, "subscription_token", plan.tokens_per_cycle, "subscription_started")
    await record_subscription_referral(db, user, subscription)
    logger.info(
        "Created subscription %s for user %s on plan %s", subscription.id, user.id, plan.name
    )
    return subscription


# ---------------------------------------------------------------------------
# Plan change
# ---------------------------------------------------------------------------


async def change_plan(
    db: AsyncSession,
    subscription: Subscription,
    new_plan: Plan,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Upgrade immediately or schedule a downgrade for the next renewal.

    Returns ``{"type": "upgrade", "invoice_url", "prorated_amount", "amount_due"}``
    or ``{"type": "downgrade", "effective_date"}``.
    """
    now = now or utcnow()
    current_plan = await get_plan(db, subscription.plan_id)

    if new_plan.id == current_plan.id or Decimal(new_plan.price) == Decimal(current_plan.price):
        raise BusinessRuleError(ALREADY_SUBSCRIBED)
    if not subscription.stripe_subscription_id:
        raise BusinessRuleError("No Stripe subscription ID found for this subscription")
    if not new_plan.stripe_price_id:
        raise BusinessRuleError("New plan does not have a valid Stripe price ID")

    if Decimal(new_plan.price) > Decimal(current_plan.price):
        return await _upgrade(db, subscription, current_plan, new_plan, now)
    return await _schedule_downgrade(db, subscription, current_plan, new_plan)


async def _upgrade(
    db: AsyncSession,
    subscription: Subscription,
    current_plan: Plan,
    new_plan: Plan,
    now: datetime,
) -> dict[str, Any]:
    metadata = dict(subscription.metadata_ or {})

    # Proration is always measured from the plan held at the start of the cycle
    original_plan = current_plan
    original_plan_id = metadata.get("original_plan_id")
    if original_plan_id:
        original_plan = await db.get(Plan, uuid.UUID(original_plan_id)) or current_plan
    else:
        metadata["original_plan_id"] = str(current_plan.id)

    proration = calculate_proration(
        old_price=original_plan.price,
        new_price=new_plan.price,
        interval=current_plan.interval,
        next_billing_date=subscription.next_billing_date,
        now=now,
    )

    history = list(metadata.get("upgrade_history") or [])
    history.append(
        {
            "date": now.isoformat(timespec="seconds"),
            "from_plan_id": str(current_plan.id),
            "to_plan_id": str(new_plan.id),
        }
    )
    metadata["upgrade_history"] = history
    metadata.pop("pending_downgrade_plan_id", None)
    metadata.pop("pending_downgrade_effective_date", None)

    try:
        stripe_sub = await get_subscription(subscription.stripe_subscription_id)
        item = first_item(stripe_sub)
        if item is None:
            raise BusinessRuleError("Stripe subscription has no items to update")
        updated = await switch_subscription_price(
            subscription.stripe_subscription_id,
            item_id=item.id,
            price_id=new_plan.stripe_price_id,
            proration_behavior="always_invoice",
            metadata={"original_plan_id": metadata["original_plan_id"]},
        )
        invoice = await create_and_finalize_invoice(
            customer_id=stripe_sub.customer,
            subscription_id=subscription.stripe_subscription_id,
            description=f"Upgrade from {current_plan.name} to {new_plan.name}",
        )
    except stripe.StripeError as e:
        logger.error(
            "Stripe error upgrading subscription %s to plan %s: %s",
            subscription.id,
            new_plan.id,
            e,
        )
        raise PaymentGatewayError(f"Stripe API error during upgrade: {e}") from e

    updated_item = first_item(updated)
    period_end = ts_to_naive(getattr(updated_item, "current_period_end", None)) if updated_item else None
    if period_end is not None:
        subscription.next_billing_date = period_end

    subscription.plan_id = new_plan.id
    subscription.metadata_ = metadata
    await db.flush()

    user = await db.get(User, subscription.user_id)
    await reset_tokens(db, user, "subscription_token", new_plan.tokens_per_cycle, "plan_upgrade")

    logger.info(
        "Upgraded subscription %s from %s to %s (credit=%s, due=%s)",
        subscription.id,
        current_plan.name,
        new_plan.name,
        proration.remaining_value,
        proration.amount_due,
    )
    return {
        "type": "upgrade",
        "invoice_url": getattr(invoice, "hosted_invoice_url", None),
        "prorated_amount": float(proration.remaining_value),
        "amount_due": float(proration.amount_due),
    }


async def _schedule_downgrade(
    db: AsyncSession,
    subscription: Subscription,
    current_plan: Plan,
    new_plan: Plan,
) -> dict[str, Any]:
    effective_date = subscription.next_billing_date
    metadata = dict(subscription.metadata_ or {})
    metadata["pending_downgrade_plan_id"] = str(new_plan.id)
    metadata["pending_downgrade_effective_date"] = (
        effective_date.isoformat(timespec="seconds") if effective_date else None
    )
    subscription.metadata_ = metadata
    await db.flush()

    logger.info(
        "Scheduled downgrade of subscription %s from %s to %s at %s",
        subscription.id,
        current_plan.name,
        new_plan.name,
        effective_date,
    )
    return {"type": "downgrade", "effective_date": effective_date}


# ---------------------------------------------------------------------------
# Cancel / resume
# ---------------------------------------------------------------------------


async def cancel_subscription(
    db: AsyncSession,
    subscription: Subscription,
    immediate: bool = False,
    now: datetime | None = None,
) -> Subscription:
    """Cancel now (drops subscription tokens) or at the end of the paid period."""
    now = now or utcnow()
    if subscription.status == CANCELED or (
        subscription.canceled_at is not None and not immediate
    ):
        raise BusinessRuleError("Subscription is already canceled")

    try:
        if subscription.stripe_subscription_id:
            if immediate:
                await stripe_cancel_subscription(subscription.stripe_subscription_id)
            else:
                await set_cancel_at_period_end(subscription.stripe_subscription_id, True)
    except stripe.StripeError as e:
        logger.error("Stripe error canceling subscription %s: %s", subscription.id, e)
        raise PaymentGatewayError(f"Stripe API error during cancellation: {e}") from e

    subscription.canceled_at = now
    if immediate:
        subscription.status = CANCELED
        subscription.ends_at = now
        user = await db.get(User, subscription.user_id)
        await reset_tokens(db, user, "subscription_token", 0, "subscription_canceled")
    else:
        subscription.ends_at = subscription.next_billing_date
    await db.flush()

    logger.info(
        "Canceled subscription %s (immediate=%s, ends_at=%s)",
        subscription.id,
        immediate,
        subscription.ends_at,
    )
    return subscription


async def resume_subscription(
    db: AsyncSession, subscription: Subscription, now: datetime | None = None
) -> Subscription:
    """Undo a cancellation that has not taken effect yet."""
    now = now or utcnow()
    if subscription.canceled_at is None:
        raise BusinessRuleError("Subscription is not canceled")
    if subscription.ends_at is not None and subscription.ends_at <= now:
        raise BusinessRuleError("Subscription has already ended and cannot be resumed")

    if subscription.stripe_subscription_id:
        try:
            await set_cancel_at_period_end(subscription.stripe_subscription_id, False)
        except stripe.StripeError as e:
            logger.error("Stripe error resuming subscription %s: %s", subscription.id, e)
            raise PaymentGatewayError(f"Stripe API error during resume: {e}") from e

    subscription.canceled_at = None
    subscription.ends_at = None
    subscription.status = ACTIVE
    await db.flush()
    logger.info("Resumed subscription %s", subscription.id)
    return subscription


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------


async def get_subscriptions_due_for_renewal(
    db: AsyncSession, now: datetime | None = None
) -> list[Subscription]:
    """Active subscriptions whose billing date has arrived.

    Canceled-at-period-end subscriptions are included only while ``ends_at``
    is still in the future.
    """
    now = now or utcnow()
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.status == ACTIVE,
            Subscription.next_billing_date <= now,
            or_(Subscription.canceled_at.is_(None), Subscription.ends_at > now),
        )
        .order_by(Subscription.next_billing_date)
    )
    return list(result.scalars().all())


async def process_renewal(
    db: AsyncSession, subscription: Subscription, now: datetime | None = None
) -> Subscription:
    """Roll a subscription into its next cycle.

    Applies a pending downgrade first, then resets ``subscription_token`` to
    the (possibly new) plan's allowance and advances ``next_billing_date``.
    """
    now = now or utcnow()
    metadata = dict(subscription.metadata_ or {})
    pending_plan_id = metadata.pop("pending_downgrade_plan_id", None)
    metadata.pop("pending_downgrade_effective_date", None)
    # A new cycle starts proration from scratch
    metadata.pop("original_plan_id", None)
    metadata.pop("upgrade_history", None)

    plan = await get_plan(db, subscription.plan_id)
    if pending_plan_id:
        new_plan = await get_plan(db, pending_plan_id)
        logger.info(
            "Applying pending downgrade on subscription %s: %s -> %s",
            subscription.id,
            plan.name,
            new_plan.name,
        )
        subscription.plan_id = new_plan.id
        plan = new_plan
        await _sync_downgrade_to_stripe(subscription, new_plan)

    subscription.metadata_ = metadata

    user = await db.get(User, subscription.user_id)
    if user is None:
        raise NotFoundError(f"User {subscription.user_id} not found for subscription {subscription.id}")
    await reset_tokens(db, user, "subscription_token", plan.tokens_per_cycle, "subscription_renewal")

    subscription.next_billing_date = advance_billing_date(
        subscription.next_billing_date or now, plan.interval
    )
    await db.flush()
    logger.info(
        "Renewed subscription %s on plan %s, next billing %s",
        subscription.id,
        plan.name,
        subscription.next_billing_date,
    )
    return subscription


async def _sync_downgrade_to_stripe(subscription: Subscription, new_plan: Plan) -> None:
    """Best effort: the local downgrade stands even if Stripe rejects it."""
    if not subscription.stripe_subscription_id or not new_plan.stripe_price_id:
        return
    try:
        stripe_sub = await get_subscription(subscription.stripe_subscription_id)
        item = first_item(stripe_sub)
        if item is None:
            logger.warning("Stripe subscription %s has no items", subscription.stripe_subscription_id)
            return
        await switch_subscription_price(
            subscription.stripe_subscription_id,
            item_id=item.id,
            price_id=new_plan.stripe_price_id,
            proration_behavior="none",
        )
    except stripe.StripeError as e:
        logger.error(
            "Stripe price update failed for downgraded subscription %s: %s",
            subscription.id,
            e,
        )


@dataclass
class RenewalResult:
    renewed: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)


async def process_due_renewals(db: AsyncSession, now: datetime | None = None) -> RenewalResult:
    """Renew every due subscription, each inside its own savepoint."""
    now = now or utcnow()
    result = RenewalResult()
    due = await get_subscriptions_due_for_renewal(db, now)
    logger.info("Found %d subscriptions due for renewal", len(due))

    for subscription in due:
        subscription_id = subscription.id
        try:
            async with db.begin_nested():
                await process_renewal(db, subscription, now)
        except Exception:
            logger.exception("Failed to renew subscription %s", subscription_id)
            result.failed.append(subscription_id)
        else:
            result.renewed.append(subscription_id)

    logger.info("Renewals complete: %d renewed, %d failed", len(result.renewed), len(result.failed))
    return result


# ---------------------------------------------------------------------------
# Stripe sync (webhooks)
# ---------------------------------------------------------------------------


async def sync_subscription_status(
    db: AsyncSession,
    subscription: Subscription,
    status: str,
    cancel_at_period_end: bool = False,
    period_end: datetime | None = None,
) -> Subscription:
    """Mirror Stripe's view of the subscription onto the local row.

    Stripe statuses with no local counterpart leave the status untouched.
    """
    mapped = STRIPE_STATUS_MAP.get(status)
    if mapped is None:
        logger.warning(
            "Unmapped Stripe status %r for subscription %s, keeping %s",
            status,
            subscription.id,
            subscription.status,
        )
    else:
        subscription.status = mapped
    if period_end is not None:
        subscription.next_billing_date = period_end
    if cancel_at_period_end and subscription.canceled_at is None:
        subscription.canceled_at = utcnow()
        subscription.ends_at = period_end or subscription.next_billing_date
    elif not cancel_at_period_end and subscription.status == ACTIVE and subscription.canceled_at is not None:
        subscription.canceled_at = None
        subscription.ends_at = None
    await db.flush()
    logger.info(
        "Synced subscription %s: status=%s, cancel_at_period_end=%s",
        subscription.id,
        subscription.status,
        cancel_at_period_end,
    )
    return subscription


async def mark_subscription_ended(
    db: AsyncSession, subscription: Subscription, ended_at: datetime | None = None
) -> Subscription:
    """Stripe deleted the subscription: terminal state, subscription tokens dropped."""
    ended_at = ended_at or utcnow()
    subscription.status = CANCELED
    subscription.canceled_at = subscription.canceled_at or ended_at
    subscription.ends_at = ended_at
    user = await db.get(User, subscription.user_id)
    if user is not None:
        await reset_tokens(db, user, "subscription_token", 0, "subscription_ended")
    await db.flush()
    logger.info("Subscription %s ended at %s", subscription.id, ended_at)
    return subscription
