"""Subscription API: plans, checkout, plan change, cancel and resume."""

import logging

import stripe
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db, require_admin
from decyphers.billing.stripe_client import create_subscription_checkout_session
from decyphers.billing.webhooks import SUBSCRIPTION_ACTION
from decyphers.config import settings
from decyphers.exceptions import BusinessRuleError, NotFoundError, PaymentGatewayError
from decyphers.models.subscription import Subscription
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.subscription import (
    CancelRequest,
    ChangePlanRequest,
    ChangePlanResponse,
    CheckoutRequest,
    CheckoutResponse,
    CurrentSubscriptionResponse,
    PlanResponse,
    SubscriptionResponse,
)
from decyphers.services.subscription_service import (
    cancel_subscription,
    change_plan,
    ensure_stripe_customer,
    get_active_subscription,
    get_current_subscription,
    get_plan,
    list_plans,
    resume_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


async def _require_current(db: AsyncSession, user: User) -> Subscription:
    subscription = await get_current_subscription(db, user.id)
    if subscription is None:
        raise NotFoundError("No subscription found")
    return subscription


@router.get("/plans", response_model=Envelope[list[PlanResponse]])
async def get_plans(db: AsyncSession = Depends(get_db)) -> Envelope[list[PlanResponse]]:
    """Active plans, cheapest first (public)."""
    plans = await list_plans(db)
    return ok([PlanResponse.model_validate(p) for p in plans])


@router.get("/user", response_model=Envelope[CurrentSubscriptionResponse])
async def get_user_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[CurrentSubscriptionResponse]:
    subscription = await get_current_subscription(db, current_user.id)
    if subscription is None:
        return ok(CurrentSubscriptionResponse(), "No active subscription")
    plan = await get_plan(db, subscription.plan_id)
    return ok(
        CurrentSubscriptionResponse(
            subscription=SubscriptionResponse.model_validate(subscription),
            plan=PlanResponse.model_validate(plan),
        )
    )


@router.post("/checkout", response_model=Envelope[CheckoutResponse])
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[CheckoutResponse]:
    """Start a Stripe Checkout session for a new subscription.

    The subscription row is created by the ``checkout.session.completed``
    webhook once payment succeeds.
    """
    plan = await get_plan(db, body.plan_id)
    if not plan.is_active or not plan.stripe_price_id:
        raise BusinessRuleError("This plan is not available for purchase")
    if await get_active_subscription(db, current_user.id) is not None:
        raise BusinessRuleError("You already have an active subscription. Use change-plan instead.")

    customer_id = await ensure_stripe_customer(db, current_user)
    success_url = (
        body.success_url
        or f"{settings.frontend_url}/subscription?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = body.cancel_url or f"{settings.frontend_url}/pricing"

    try:
        session = await create_subscription_checkout_session(
            customer_id=customer_id,
            price_id=plan.stripe_price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "action": SUBSCRIPTION_ACTION,
                "user_id": str(current_user.id),
                "plan_id": str(plan.id),
            },
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        raise PaymentGatewayError(f"Payment processing error: {e}") from e

    return ok(CheckoutResponse(session_id=session.id, checkout_url=session.url))


@router.post("/change-plan", response_model=Envelope[ChangePlanResponse])
async def change_subscription_plan(
    body: ChangePlanRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ChangePlanResponse]:
    """Upgrade now (prorated and invoiced) or downgrade at the next renewal."""
    subscription = await get_active_subscription(db, current_user.id)
    if subscription is None:
        raise NotFoundError("No active subscription found")
    new_plan = await get_plan(db, body.plan_id)

    result = await change_plan(db, subscription, new_plan)
    message = (
        "Subscription upgraded successfully"
        if result["type"] == "upgrade"
        else "Downgrade scheduled for your next billing date"
    )
    return ok(ChangePlanResponse(**result), message)


@router.post("/cancel", response_model=Envelope[SubscriptionResponse])
async def cancel(
    body: CancelRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[SubscriptionResponse]:
    subscription = await _require_current(db, current_user)
    subscription = await cancel_subscription(db, subscription, immediate=body.immediate)
    message = (
        "Subscription canceled"
        if body.immediate
        else "Subscription will be canceled at the end of the billing period"
    )
    return ok(SubscriptionResponse.model_validate(subscription), message)


@router.post("/resume", response_model=Envelope[SubscriptionResponse])
async def resume(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[SubscriptionResponse]:
    subscription = await _require_current(db, current_user)
    subscription = await resume_subscription(db, subscription)
    return ok(SubscriptionResponse.model_validate(subscription), "Subscription resumed")


@router.get("/admin", response_model=Envelope[list[SubscriptionResponse]])
async def admin_list_subscriptions(
    status: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[list[SubscriptionResponse]]:
    query = select(Subscription).order_by(Subscription.created_at.desc()).limit(limit)
    if status:
        query = query.where(Subscription.status == status)
    subscriptions = (await db.execute(query)).scalars().all()
    return ok([SubscriptionResponse.model_validate(s) for s in subscriptions])
