"""Stripe webhook event handlers: checkout fulfilment and subscription lifecycle."""

import logging
import uuid
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.billing.plans import get_token_package
from decyphers.billing.stripe_client import first_item, ts_to_naive
from decyphers.exceptions import ConflictError
from decyphers.models.plan import Plan
from decyphers.models.subscription import ACTIVE, PAST_DUE
from decyphers.models.user import User
from decyphers.services.subscription_service import (
    create_subscription,
    get_subscription_by_stripe_subscription,
    mark_subscription_ended,
    sync_subscription_status,
)
from decyphers.services.token_service import fulfil_token_purchase

logger = logging.getLogger(__name__)

TOKEN_PURCHASE_ACTION = "token_purchase"
SUBSCRIPTION_ACTION = "subscription"


def _metadata(obj: Any) -> dict[str, Any]:
    return dict(getattr(obj, "metadata", None) or {})


def _invoice_subscription_id(invoice: Any) -> str | None:
    """Subscription id of an invoice across Stripe API versions.

    Since 2025-03-31 (basil) it lives under ``parent.subscription_details``.
    """
    subscription_id = getattr(invoice, "subscription", None)
    if subscription_id:
        return subscription_id
    parent = getattr(invoice, "parent", None)
    details = getattr(parent, "subscription_details", None) if parent else None
    return getattr(details, "subscription", None) if details else None


async def _load_user(db: AsyncSession, raw_user_id: str | None) -> User | None:
    if not raw_user_id:
        return None
    try:
        return await db.get(User, uuid.UUID(str(raw_user_id)))
    except ValueError:
        return None


async def handle_checkout_session_completed(
    db: AsyncSession, event: stripe.Event
) -> None:
    """Credit a token package, or start the subscription bought through Checkout."""
    session = event.data.object
    metadata = _metadata(session)
    user = await _load_user(db, metadata.get("user_id"))
    if user is None:
        logger.warning("Checkout session %s has no known user in metadata, skipping", session.id)
        return

    if metadata.get("action") == TOKEN_PURCHASE_ACTION:
        package = get_token_package(metadata.get("package_id", ""))
        tokens = int(metadata.get("token_amount") or (package.tokens if package else 0))
        if tokens <= 0:
            logger.warning("Checkout session %s has no token amount, skipping", session.id)
            return
        await fulfil_token_purchase(db, user, tokens, session.id)
        return

    subscription_id = getattr(session, "subscription", None)
    if not subscription_id:
        logger.info("Checkout session %s has no subscription, skipping", session.id)
        return

    plan = None
    if metadata.get("plan_id"):
        try:
            plan = await db.get(Plan, uuid.UUID(str(metadata["plan_id"])))
        except ValueError:
            plan = None
    if plan is None:
        logger.warning("Checkout session %s references unknown plan %s", session.id, metadata.get("plan_id"))
        return

    try:
        await create_subscription(
            db,
            user,
            plan,
            stripe_subscription_id=subscription_id,
            stripe_customer_id=getattr(session, "customer", None),
        )
    except ConflictError:
        logger.warning(
            "User %s already has a live subscription; Stripe subscription %s not recorded",
            user.id,
            subscription_id,
        )
        return
    logger.info("Checkout completed: subscription %s started on plan %s", subscription_id, plan.name)


async def handle_invoice_paid(db: AsyncSession, event: stripe.Event) -> None:
    """Handle invoice.paid: a past_due subscription becomes active again."""
    invoice = event.data.object
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
        return

    subscription = await get_subscription_by_stripe_subscription(db, subscription_id)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe subscription %s (invoice %s)",
            subscription_id,
            invoice.id,
        )
        return

    if subscription.status == PAST_DUE:
        subscription.status = ACTIVE
        await db.flush()
        logger.info("Invoice paid: subscription %s back to active", subscription_id)


async def handle_subscription_updated(
    db: AsyncSession, event: stripe.Event
) -> None:
    """Handle customer.subscription.updated: sync status and cancellation flag."""
    stripe_sub = event.data.object
    subscription = await get_subscription_by_stripe_subscription(db, stripe_sub.id)
    if subscription is None:
        logger.warning("No local subscription found for Stripe subscription %s", stripe_sub.id)
        return

    item = first_item(stripe_sub)
    period_end = ts_to_naive(getattr(item, "current_period_end", None)) if item else None
    await sync_subscription_status(
        db,
        subscription,
        status=stripe_sub.status,
        cancel_at_period_end=bool(getattr(stripe_sub, "cancel_at_period_end", False)),
        period_end=period_end,
    )


async def handle_subscription_deleted(
    db: AsyncSession, event: stripe.Event
) -> None:
    """Handle customer.subscription.deleted: subscription ends now."""
    stripe_sub = event.data.object
    subscription = await get_subscription_by_stripe_subscription(db, stripe_sub.id)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe subscription %s (delete event)",
            stripe_sub.id,
        )
        return

    ended_at = ts_to_naive(getattr(stripe_sub, "ended_at", None))
    await mark_subscription_ended(db, subscription, ended_at)


async def handle_invoice_payment_failed(
    db: AsyncSession, event: stripe.Event
) -> None:
    """Handle invoice.payment_failed: mark subscription as past_due."""
    invoice = event.data.object
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping payment failure", invoice.id)
        return

    subscription = await get_subscription_by_stripe_subscription(db, subscription_id)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe subscription %s (payment failed)",
            subscription_id,
        )
        return

    subscription.status = PAST_DUE
    await db.flush()
    logger.info("Payment failed: subscription %s marked as past_due", subscription_id)


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_session_completed,
    "invoice.paid": handle_invoice_paid,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_invoice_payment_failed,
}
