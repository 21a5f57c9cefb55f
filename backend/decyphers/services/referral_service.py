"""Referral codes, referral conversion, and affiliate sale milestones.

A user signs up with someone's referral code and a pending ``Referral`` is
recorded. The referred user's first paid subscription converts it: both
sides are credited free tokens from the referral tier matching the
referrer's referral count, and the subscription is tracked as an affiliate
sale. Sales counts unlock sales milestone tiers, which create
``AffiliateReward`` rows for admins to fulfil.
"""

import json
import logging
import re
import secrets
import string
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.config import settings
from decyphers.database import utcnow
from decyphers.exceptions import BusinessRuleError, NotFoundError
from decyphers.models.affiliate_reward import AffiliateReward
from decyphers.models.affiliate_sale import AffiliateSale
from decyphers.models.plan import Plan
from decyphers.models.referral import Referral
from decyphers.models.subscription import Subscription
from decyphers.models.user import User
from decyphers.services import tier_service
from decyphers.services.token_service import credit_tokens

logger = logging.getLogger(__name__)

CODE_SUFFIX_LENGTH = 4
CODE_ALPHABET = string.ascii_lowercase + string.digits
# Leaves room for "_" and the suffix in the 32-character column
CODE_PREFIX_MAX = 27

# ---------------------------------------------------------------------------
# Referral codes
# ---------------------------------------------------------------------------


def _code_prefix(name: str | None) -> str:
    first = (name or "").split(" ")[0]
    prefix = re.sub(r"[^a-z0-9]", "", first.lower())[:CODE_PREFIX_MAX]
    return prefix or "user"


async def generate_referral_code(db: AsyncSession, user: User) -> str:
    """Return the user's code, creating ``firstname_xxxx`` on first use."""
    if user.referral_code:
        return user.referral_code

    prefix = _code_prefix(user.name)
    while True:
        suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
        code = f"{prefix}_{suffix}"
        taken = await db.execute(select(User.id).where(User.referral_code == code))
        if taken.first() is None:
            break

    user.referral_code = code
    await db.flush()
    logger.info("Generated referral code %s for user %s", code, user.id)
    return code


async def apply_referral_code(db: AsyncSession, user: User, code: str) -> Referral:
    """Record ``user`` as referred by the owner of ``code``."""
    code = code.strip().lower()
    result = await db.execute(select(User).where(User.referral_code == code))
    referrer = result.scalar_one_or_none()
    if referrer is None:
        raise BusinessRuleError("Invalid referral code")
    if referrer.id == user.id:
        raise BusinessRuleError("You cannot refer yourself")

    existing = await db.execute(select(Referral.id).where(Referral.referred_id == user.id))
    if existing.first() is not None:
        raise BusinessRuleError("A referral code has already been applied to this account")

    referral = Referral(
        referrer_id=referrer.id,
        referred_id=user.id,
        referral_code=code,
        referred_email=user.email,
    )
    db.add(referral)
    referrer.referral_count = (referrer.referral_count or 0) + 1
    await db.flush()
    logger.info("User %s referred by %s (%s)", user.id, referrer.id, code)
    return referral


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


@dataclass
class ReferralConversion:
    referral: Referral
    referrer_tokens: int
    referee_tokens: int
    tier_name: str


async def get_pending_referral(db: AsyncSession, user: User) -> Referral | None:
    result = await db.execute(
        select(Referral).where(Referral.referred_id == user.id, Referral.is_converted.is_(False))
    )
    return result.scalar_one_or_none()


async def convert_referral(
    db: AsyncSession, user: User, referrer_tokens: int | None = None
) -> ReferralConversion | None:
    """Credit both sides of ``user``'s pending referral.

    Amounts come from the referral tier matching the referrer's referral
    count, falling back to ``settings.default_referral_tokens`` for both when
    no tier matches. ``referrer_tokens`` overrides the referrer's amount.
    Returns None when the user has no pending referral.
    """
    referral = await get_pending_referral(db, user)
    if referral is None:
        return None
    referrer = await db.get(User, referral.referrer_id)
    if referrer is None:
        raise NotFoundError("Referrer not found")

    tier = await tier_service.get_tier_for_referral_count(db, referrer.referral_count)
    if tier is None:
        logger.warning(
            "No referral tier for %d referrals, using default amounts", referrer.referral_count
        )
        tier_name = "Default"
        to_referrer = settings.default_referral_tokens
        to_referee = settings.default_referral_tokens
    else:
        tier_name = tier.name
        to_referrer = tier.referrer_tokens
        to_referee = tier.referee_tokens
        if tier.subscription_reward:
            logger.info(
                "Referral tier %s grants %d month(s) of %s to user %s",
                tier.name,
                tier.subscription_months,
                tier.subscription_reward,
                referrer.id,
            )
    if referrer_tokens is not None:
        to_referrer = referrer_tokens

    reference = str(referral.id)
    async with db.begin_nested():
        if to_referrer > 0:
            await credit_tokens(db, referrer, to_referrer, "free_token", "referral_reward", reference)
        if to_referee > 0:
            await credit_tokens(db, user, to_referee, "free_token", "referral_welcome", reference)
        referral.is_converted = True
        referral.tokens_awarded = (referral.tokens_awarded or 0) + to_referrer
        referral.converted_at = utcnow()
        await db.flush()

    logger.info(
        "Converted referral %s (%s): %d to referrer %s, %d to user %s",
        referral.id,
        tier_name,
        to_referrer,
        referrer.id,
        to_referee,
        user.id,
    )
    return ReferralConversion(referral, to_referrer, to_referee, tier_name)


async def get_referral_overview(db: AsyncSession, user: User) -> dict[str, Any]:
    """The user's referrals with totals and their current/next tier."""
    result = await db.execute(
        select(Referral).where(Referral.referrer_id == user.id).order_by(Referral.created_at.desc())
    )
    referrals = list(result.scalars().all())
    converted = [r for r in referrals if r.is_converted]
    return {
        "referrals": referrals,
        "stats": {
            "total_referrals": len(referrals),
            "pending_referrals": len(referrals) - len(converted),
            "converted_referrals": len(converted),
            "total_tokens_earned": sum(r.tokens_awarded for r in converted),
        },
        **await get_referral_status(db, user),
    }


async def get_referral_status(db: AsyncSession, user: User) -> dict[str, Any]:
    count = user.referral_count or 0
    current = await tier_service.get_tier_for_referral_count(db, count)
    upcoming = await tier_service.get_next_referral_tier(db, count)
    return {
        "referral_code": user.referral_code,
        "referral_count": count,
        "current_tier": current,
        "next_tier": upcoming,
        "referrals_needed": upcoming.min_referrals - count if upcoming else None,
    }


# ---------------------------------------------------------------------------
# Affiliate sales and milestones
# ---------------------------------------------------------------------------


@dataclass
class SaleResult:
    sale: AffiliateSale | None
    rewards: list[AffiliateReward] = field(default_factory=list)


async def _find_reward_plan(db: AsyncSession, plan_type: str) -> Plan | None:
    result = await db.execute(
        select(Plan)
        .where(func.lower(Plan.name) == plan_type.lower(), Plan.is_active.is_(True))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def check_and_award_milestone(db: AsyncSession, user: User) -> list[AffiliateReward]:
    """Create reward rows for the milestone the user's sales count has reached.

    Each milestone is awarded once per user; the badge row is always written
    and marks the milestone as taken. Returns the rows created.
    """
    count = user.sales_count or 0
    if count <= 0:
        return []
    tier = await tier_service.get_milestone_tier_for_sales_count(db, count)
    if tier is None:
        return []

    already = await db.execute(
        select(func.count())
        .select_from(AffiliateReward)
        .where(AffiliateReward.user_id == user.id, AffiliateReward.milestone_tier_id == tier.id)
    )
    if already.scalar_one() > 0:
        return []

    rewards = [
        AffiliateReward(
            user_id=user.id,
            milestone_tier_id=tier.id,
            reward_type="badge",
            value=tier.badge or tier.name,
            status="awarded",
        )
    ]
    if tier.subscription_reward:
        plan = await _find_reward_plan(db, tier.subscription_reward)
        rewards.append(
            AffiliateReward(
                user_id=user.id,
                milestone_tier_id=tier.id,
                reward_type="subscription",
                value=json.dumps({"plan_type": tier.subscription_reward, "months": tier.subscription_months}),
                plan_id=plan.id if plan else None,
                status="awarded",
            )
        )
    if tier.cash_bonus and tier.cash_bonus > 0:
        rewards.append(
            AffiliateReward(
                user_id=user.id,
                milestone_tier_id=tier.id,
                reward_type="cash",
                value=str(tier.cash_bonus),
                status="pending",
            )
        )
    if tier.has_physical_plaque:
        rewards.append(
            AffiliateReward(
                user_id=user.id,
                milestone_tier_id=tier.id,
                reward_type="plaque",
                value=json.dumps({"tier": tier.name, "sales_count": count, "achievement": tier.badge}),
                status="pending",
            )
        )
    db.add_all(rewards)
    await db.flush()
    logger.info(
        "User %s reached sales milestone %s at %d sales (%d rewards)",
        user.id,
        tier.name,
        count,
        len(rewards),
    )
    return rewards


async def track_affiliate_sale(
    db: AsyncSession,
    affiliate: User,
    customer: User,
    subscription: Subscription,
    amount: Decimal | None = None,
) -> SaleResult:
    """Record one sale for ``affiliate`` and award any milestone it unlocks.

    A subscription is counted once; repeats return ``SaleResult(None)``.
    ``amount`` defaults to the subscription plan's price.
    """
    existing = await db.execute(
        select(AffiliateSale.id).where(AffiliateSale.subscription_id == subscription.id)
    )
    if existing.first() is not None:
        return SaleResult(None)

    if amount is None:
        plan = await db.get(Plan, subscription.plan_id)
        amount = plan.price if plan is not None else Decimal("0.00")

    async with db.begin_nested():
        sale = AffiliateSale(
            affiliate_id=affiliate.id,
            customer_id=customer.id,
            subscription_id=subscription.id,
            plan_id=subscription.plan_id,
            amount=amount,
        )
        db.add(sale)
        affiliate.sales_count = (affiliate.sales_count or 0) + 1
        await db.flush()
        rewards = await check_and_award_milestone(db, affiliate)

    logger.info(
        "Affiliate sale %s for %s: customer %s, amount %s", sale.id, affiliate.id, customer.id, amount
    )
    return SaleResult(sale, rewards)


async def track_referred_sale(
    db: AsyncSession,
    affiliate: User,
    customer_id: uuid.UUID,
    subscription_id: uuid.UUID,
    amount: Decimal | None = None,
) -> SaleResult:
    """Report a sale by hand; the customer must have been referred by ``affiliate``."""
    customer = await db.get(User, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None or subscription.user_id != customer.id:
        raise NotFoundError("Subscription not found")

    referred = await db.execute(
        select(Referral.id).where(
            Referral.referrer_id == affiliate.id, Referral.referred_id == customer.id
        )
    )
    if referred.first() is None:
        raise BusinessRuleError("This customer was not referred by you")
    return await track_affiliate_sale(db, affiliate, customer, subscription, amount)


async def record_subscription_referral(
    db: AsyncSession, user: User, subscription: Subscription
) -> None:
    """Convert a pending referral and count the sale for whoever referred ``user``."""
    result = await db.execute(select(Referral).where(Referral.referred_id == user.id))
    referral = result.scalar_one_or_none()
    if referral is None:
        return
    if not referral.is_converted:
        await convert_referral(db, user)
    referrer = await db.get(User, referral.referrer_id)
    if referrer is not None:
        await track_affiliate_sale(db, referrer, user, subscription)


async def get_affiliate_status(db: AsyncSession, user: User) -> dict[str, Any]:
    count = user.sales_count or 0
    current = await tier_service.get_milestone_tier_for_sales_count(db, count)
    upcoming = await tier_service.get_next_milestone_tier(db, count)
    total = await db.execute(
        select(func.coalesce(func.sum(AffiliateSale.amount), 0)).where(
            AffiliateSale.affiliate_id == user.id
        )
    )
    rewards = await tier_service.list_affiliate_rewards(db, user_id=user.id)
    return {
        "sales_count": count,
        "total_sales_amount": Decimal(str(total.scalar_one())),
        "current_tier": current,
        "next_tier": upcoming,
        "sales_needed": upcoming.required_sales - count if upcoming else None,
        "rewards": rewards,
    }
