"""Admin CRUD for referral tiers."""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db, require_admin
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.tier import ReferralTierCreate, ReferralTierResponse, ReferralTierUpdate
from decyphers.services import tier_service

router = APIRouter(prefix="/api/v1/referral-tiers", tags=["referral-tiers"])


@router.get("", response_model=Envelope[list[ReferralTierResponse]])
async def list_tiers(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[list[ReferralTierResponse]]:
    tiers = await tier_service.list_referral_tiers(db)
    return ok([ReferralTierResponse.model_validate(t) for t in tiers])


@router.get("/lookup", response_model=Envelope[dict[str, ReferralTierResponse | None]])
async def lookup_tier(
    count: int | None = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[dict[str, ReferralTierResponse | None]]:
    """Current and next tier for ``count`` (defaults to the caller's referral count)."""
    count = current_user.referral_count if count is None else count
    current = await tier_service.get_tier_for_referral_count(db, count)
    upcoming = await tier_service.get_next_referral_tier(db, count)
    return ok(
        {
            "current": ReferralTierResponse.model_validate(current) if current else None,
            "next": ReferralTierResponse.model_validate(upcoming) if upcoming else None,
        }
    )


@router.get("/{tier_id}", response_model=Envelope[ReferralTierResponse])
async def get_tier(
    tier_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[ReferralTierResponse]:
    tier = await tier_service.get_referral_tier(db, tier_id)
    return ok(ReferralTierResponse.model_validate(tier))


@router.post("", response_model=Envelope[ReferralTierResponse], status_code=status.HTTP_201_CREATED)
async def create_tier(
    body: ReferralTierCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[ReferralTierResponse]:
    tier = await tier_service.create_referral_tier(db, body.model_dump())
    await db.refresh(tier)
    return ok(ReferralTierResponse.model_validate(tier), "Referral tier created successfully")


@router.put("/{tier_id}", response_model=Envelope[ReferralTierResponse])
async def update_tier(
    tier_id: uuid.UUID,
    body: ReferralTierUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[ReferralTierResponse]:
    tier = await tier_service.update_referral_tier(db, tier_id, body.model_dump(exclude_unset=True))
    await db.refresh(tier)
    return ok(ReferralTierResponse.model_validate(tier), "Referral tier updated successfully")


@router.delete("/{tier_id}", response_model=Envelope[None])
async def delete_tier(
    tier_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[None]:
    await tier_service.delete_referral_tier(db, tier_id)
    return ok(message="Referral tier deleted successfully")
