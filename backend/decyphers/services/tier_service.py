"""Referral and sales-milestone tiers, plus affiliate reward bookkeeping."""

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.database import utcnow
from decyphers.exceptions import BusinessRuleError, ConflictError, NotFoundError
from decyphers.models.affiliate_reward import REWARD_STATUSES, AffiliateReward
from decyphers.models.referral_tier import ReferralTier
from decyphers.models.sales_milestone_tier import SalesMilestoneTier

logger = logging.getLogger(__name__)

OVERLAP_MESSAGE = "This range overlaps with an existing tier"
DUPLICATE_SALES_MESSAGE = "A tier with this required sales count already exists"

_NULLABLE_REFERRAL_FIELDS = ("max_referrals", "badge", "subscription_reward")
_NULLABLE_MILESTONE_FIELDS = ("badge", "subscription_reward", "cash_bonus", "perks")


def ranges_overlap(
    min_a: int, max_a: int | None, min_b: int, max_b: int | None
) -> bool:
    """Closed-interval overlap where a ``None`` upper bound is unbounded."""
    a_reaches_b = max_a is None or max_a >= min_b
    b_reaches_a = max_b is None or max_b >= min_a
    return a_reaches_b and b_reaches_a


def _tier_range(tier: ReferralTier) -> dict[str, Any]:
    return {
        "id": str(tier.id),
        "name": tier.name,
        "min_referrals": tier.min_referrals,
        "max_referrals": tier.max_referrals,
    }


async def find_overlapping_tier(
    db: AsyncSession,
    min_referrals: int,
    max_referrals: int | None,
    exclude_id: uuid.UUID | None = None,
) -> ReferralTier | None:
    """Return the first existing tier whose range intersects the candidate range."""
    query = select(ReferralTier).order_by(ReferralTier.min_referrals)
    if exclude_id is not None:
        query = query.where(ReferralTier.id != exclude_id)
    for tier in (await db.execute(query)).scalars():
        if ranges_overlap(min_referrals, max_referrals, tier.min_referrals, tier.max_referrals):
            return tier
    return None


def _validate_range(min_referrals: int, max_referrals: int | None) -> None:
    if min_referrals < 0:
        raise ConflictError("min_referrals cannot be negative")
    if max_referrals is not None and max_referrals < min_referrals:
        raise ConflictError("max_referrals must be greater than or equal to min_referrals")


async def list_referral_tiers(db: AsyncSession) -> list[ReferralTier]:
    result = await db.execute(select(ReferralTier).order_by(ReferralTier.min_referrals))
    return list(result.scalars().all())


async def get_referral_tier(db: AsyncSession, tier_id: uuid.UUID) -> ReferralTier:
    tier = await db.get(ReferralTier, tier_id)
    if tier is None:
        raise NotFoundError("Referral tier not found")
    return tier


async def create_referral_tier(db: AsyncSession, data: dict[str, Any]) -> ReferralTier:
    _validate_range(data["min_referrals"], data.get("max_referrals"))
    overlap = await find_overlapping_tier(db, data["min_referrals"], data.get("max_referrals"))
    if overlap is not None:
        raise ConflictError(OVERLAP_MESSAGE, overlap=_tier_range(overlap))

    tier = ReferralTier(**data)
    db.add(tier)
    await db.flush()
    logger.info("Created referral tier %s [%s, %s]", tier.name, tier.min_referrals, tier.max_referrals)
    return tier


async def update_referral_tier(
    db: AsyncSession, tier_id: uuid.UUID, changes: dict[str, Any]
) -> ReferralTier:
    changes = {k: v for k, v in changes.items() if v is not None or k in _NULLABLE_REFERRAL_FIELDS}
    tier = await get_referral_tier(db, tier_id)
    min_referrals = changes.get("min_referrals", tier.min_referrals)
    max_referrals = changes["max_referrals"] if "max_referrals" in changes else tier.max_referrals
    _validate_range(min_referrals, max_referrals)

    overlap = await find_overlapping_tier(db, min_referrals, max_referrals, exclude_id=tier.id)
    if overlap is not None:
        raise ConflictError(OVERLAP_MESSAGE, overlap=_tier_range(overlap))

    for key, value in changes.items():
        setattr(tier, key, value)
    await db.flush()
    logger.info("Updated referral tier %s", tier.id)
    return tier


async def delete_referral_tier(db: AsyncSession, tier_id: uuid.UUID) -> None:
    tier = await get_referral_tier(db, tier_id)
    await db.delete(tier)
    await db.flush()
    logger.info("Deleted referral tier %s", tier_id)


async def get_tier_for_referral_count(db: AsyncSession, count: int) -> ReferralTier | None:
    """The tier whose range contains ``count``, if any."""
    for tier in await list_referral_tiers(db):
        if tier.min_referrals <= count and (tier.max_referrals is None or count <= tier.max_referrals):
            return tier
    return None


async def get_next_referral_tier(db: AsyncSession, count: int) -> ReferralTier | None:
    """The lowest tier that starts above ``count``."""
    result = await db.execute(
        select(ReferralTier)
        .where(ReferralTier.min_referrals > count)
        .order_by(ReferralTier.min_referrals)
        .limit(1)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Sales milestones
# ---------------------------------------------------------------------------


async def list_sales_milestone_tiers(db: AsyncSession) -> list[SalesMilestoneTier]:
    result = await db.execute(select(SalesMilestoneTier).order_by(SalesMilestoneTier.required_sales))
    return list(result.scalars().all())


async def get_sales_milestone_tier(db: AsyncSession, tier_id: uuid.UUID) -> SalesMilestoneTier:
    tier = await db.get(SalesMilestoneTier, tier_id)
    if tier is None:
        raise NotFoundError("Sales milestone tier not found")
    return tier


async def get_milestone_tier_for_sales_count(db: AsyncSession, count: int) -> SalesMilestoneTier | None:
    """The highest tier whose ``required_sales`` has been reached."""
    result = await db.execute(
        select(SalesMilestoneTier)
        .where(SalesMilestoneTier.required_sales <= count)
        .order_by(SalesMilestoneTier.required_sales.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_next_milestone_tier(db: AsyncSession, count: int) -> SalesMilestoneTier | None:
    result = await db.execute(
        select(SalesMilestoneTier)
        .where(SalesMilestoneTier.required_sales > count)
        .order_by(SalesMilestoneTier.required_sales)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _ensure_unique_required_sales(
    db: AsyncSession, required_sales: int, exclude_id: uuid.UUID | None = None
) -> None:
    query = select(SalesMilestoneTier.id).where(SalesMilestoneTier.required_sales == required_sales)
    if exclude_id is not None:
        query = query.where(SalesMilestoneTier.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise ConflictError(DUPLICATE_SALES_MESSAGE)


async def create_sales_milestone_tier(db: AsyncSession, data: dict[str, Any]) -> SalesMilestoneTier:
    await _ensure_unique_required_sales(db, data["required_sales"])
    tier = SalesMilestoneTier(**data)
    db.add(tier)
    await db.flush()
    logger.info("Created sales milestone tier %s at %d sales", tier.name, tier.required_sales)
    return tier


async def update_sales_milestone_tier(
    db: AsyncSession, tier_id: uuid.UUID, changes: dict[str, Any]
) -> SalesMilestoneTier:
    changes = {k: v for k, v in changes.items() if v is not None or k in _NULLABLE_MILESTONE_FIELDS}
    tier = await get_sales_milestone_tier(db, tier_id)
    if "required_sales" in changes:
        await _ensure_unique_required_sales(db, changes["required_sales"], exclude_id=tier.id)
    for key, value in changes.items():
        setattr(tier, key, value)
    await db.flush()
    return tier


async def delete_sales_milestone_tier(db: AsyncSession, tier_id: uuid.UUID) -> None:
    tier = await get_sales_milestone_tier(db, tier_id)
    awarded = await db.execute(
        select(func.count())
        .select_from(AffiliateReward)
        .where(AffiliateReward.milestone_tier_id == tier.id)
    )
    if awarded.scalar_one() > 0:
        raise BusinessRuleError("Cannot delete a tier that has already been awarded to users")
    await db.delete(tier)
    await db.flush()
    logger.info("Deleted sales milestone tier %s", tier_id)


# ---------------------------------------------------------------------------
# Affiliate rewards
# ---------------------------------------------------------------------------


async def list_affiliate_rewards(
    db: AsyncSession, status: str | None = None, user_id: uuid.UUID | None = None
) -> list[AffiliateReward]:
    query = select(AffiliateReward).order_by(AffiliateReward.created_at.desc())
    if status:
        query = query.where(AffiliateReward.status == status)
    if user_id:
        query = query.where(AffiliateReward.user_id == user_id)
    return list((await db.execute(query)).scalars().all())


async def update_reward_status(
    db: AsyncSession, reward_id: uuid.UUID, status: str, notes: str | None = None
) -> AffiliateReward:
    if status not in REWARD_STATUSES:
        raise ConflictError(f"Invalid reward status: {status}")
    reward = await db.get(AffiliateReward, reward_id)
    if reward is None:
        raise NotFoundError("Affiliate reward not found")

    if status == "fulfilled" and reward.status != "fulfilled":
        reward.fulfilled_at = utcnow()
    reward.status = status
    if notes is not None:
        reward.notes = notes
    await db.flush()
    logger.info("Affiliate reward %s moved to %s", reward.id, status)
    return reward
