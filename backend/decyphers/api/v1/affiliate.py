"""Affiliate sales for the current user, plus admin milestone tiers and rewards."""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db, require_admin
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.referral import AffiliateStatusResponse, TrackSaleRequest, TrackSaleResponse
from decyphers.schemas.tier import (
    AffiliateRewardResponse,
    RewardStatusUpdate,
    SalesMilestoneTierCreate,
    SalesMilestoneTierResponse,
    SalesMilestoneTierUpdate,
)
from decyphers.services import referral_service, tier_service

router = APIRouter(prefix="/api/v1/affiliate", tags=["affiliate"])


@router.post("/track-sale", response_model=Envelope[TrackSaleResponse])
async def track_sale(
    body: TrackSaleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[TrackSaleResponse]:
    result = await referral_service.track_referred_sale(
        db, current_user, body.customer_id, body.subscription_id, body.amount
    )
    if result.sale is not None:
        await db.refresh(result.sale)
    for reward in result.rewards:
        await db.refresh(reward)
    message = "Affiliate sale tracked successfully" if result.sale else "Sale already tracked"
    return ok(TrackSaleResponse.model_validate(result, from_attributes=True), message)


@router.get("/status", response_model=Envelope[AffiliateStatusResponse])
async def affiliate_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[AffiliateStatusResponse]:
    progress = await referral_service.get_affiliate_status(db, current_user)
    return ok(AffiliateStatusResponse.model_validate(progress, from_attributes=True))


@router.post("/check-milestones", response_model=Envelope[list[AffiliateRewardResponse]])
async def check_milestones(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[list[AffiliateRewardResponse]]:
    """Award the milestone for the current sales count if it is still unclaimed."""
    rewards = await referral_service.check_and_award_milestone(db, current_user)
    for reward in rewards:
        await db.refresh(reward)
    return ok([AffiliateRewardResponse.model_validate(r) for r in rewards])


@router.get("/milestone-tiers", response_model=Envelope[list[SalesMilestoneTierResponse]])
async def list_milestone_tiers(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[list[SalesMilestoneTierResponse]]:
    tiers = await tier_service.list_sales_milestone_tiers(db)
    return ok([SalesMilestoneTierResponse.model_validate(t) for t in tiers])


@router.get("/milestone-tiers/{tier_id}", response_model=Envelope[SalesMilestoneTierResponse])
async def get_milestone_tier(
    tier_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[SalesMilestoneTierResponse]:
    tier = await tier_service.get_sales_milestone_tier(db, tier_id)
    return ok(SalesMilestoneTierResponse.model_validate(tier))


@router.post(
    "/milestone-tiers",
    response_model=Envelope[SalesMilestoneTierResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_milestone_tier(
    body: SalesMilestoneTierCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[SalesMilestoneTierResponse]:
    tier = await tier_service.create_sales_milestone_tier(db, body.model_dump())
    await db.refresh(tier)
    return ok(SalesMilestoneTierResponse.model_validate(tier), "Milestone tier created successfully")


@router.put("/milestone-tiers/{tier_id}", response_model=Envelope[SalesMilestoneTierResponse])
async def update_milestone_tier(
    tier_id: uuid.UUID,
    body: SalesMilestoneTierUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[SalesMilestoneTierResponse]:
    tier = await tier_service.update_sales_milestone_tier(
        db, tier_id, body.model_dump(exclude_unset=True)
    )
    await db.refresh(tier)
    return ok(SalesMilestoneTierResponse.model_validate(tier), "Milestone tier updated successfully")


@router.delete("/milestone-tiers/{tier_id}", response_model=Envelope[None])
async def delete_milestone_tier(
    tier_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[None]:
    await tier_service.delete_sales_milestone_tier(db, tier_id)
    return ok(message="Milestone tier deleted successfully")


@router.get("/rewards", response_model=Envelope[list[AffiliateRewardResponse]])
async def list_rewards(
    status: str | None = Query(None),
    user_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[list[AffiliateRewardResponse]]:
    rewards = await tier_service.list_affiliate_rewards(db, status=status, user_id=user_id)
    return ok([AffiliateRewardResponse.model_validate(r) for r in rewards])


@router.patch("/rewards/{reward_id}", response_model=Envelope[AffiliateRewardResponse])
async def update_reward(
    reward_id: uuid.UUID,
    body: RewardStatusUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[AffiliateRewardResponse]:
    reward = await tier_service.update_reward_status(db, reward_id, body.status, body.notes)
    await db.refresh(reward)
    return ok(AffiliateRewardResponse.model_validate(reward), "Reward status updated successfully")
