"""Referral codes and referral progress for the current user."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db, require_admin
from decyphers.exceptions import BusinessRuleError, NotFoundError
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.referral import (
    ApplyReferralRequest,
    ConvertReferralRequest,
    ReferralCodeResponse,
    ReferralConversionResponse,
    ReferralOverviewResponse,
    ReferralResponse,
    ReferralStatusResponse,
)
from decyphers.services import referral_service

router = APIRouter(prefix="/api/v1/referral", tags=["referral"])


@router.get("/code", response_model=Envelope[ReferralCodeResponse])
async def get_code(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ReferralCodeResponse]:
    code = await referral_service.generate_referral_code(db, current_user)
    return ok(ReferralCodeResponse(referral_code=code))


@router.post("/apply", response_model=Envelope[ReferralResponse])
async def apply_code(
    body: ApplyReferralRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ReferralResponse]:
    referral = await referral_service.apply_referral_code(db, current_user, body.referral_code)
    await db.refresh(referral)
    return ok(ReferralResponse.model_validate(referral), "Referral code applied successfully")


@router.get("/list", response_model=Envelope[ReferralOverviewResponse])
async def list_referrals(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ReferralOverviewResponse]:
    overview = await referral_service.get_referral_overview(db, current_user)
    return ok(ReferralOverviewResponse.model_validate(overview, from_attributes=True))


@router.get("/status", response_model=Envelope[ReferralStatusResponse])
async def referral_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ReferralStatusResponse]:
    status = await referral_service.get_referral_status(db, current_user)
    return ok(ReferralStatusResponse.model_validate(status, from_attributes=True))


@router.post("/convert", response_model=Envelope[ReferralConversionResponse])
async def convert(
    body: ConvertReferralRequest,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[ReferralConversionResponse]:
    """Convert a user's pending referral by hand (normally done on first subscription)."""
    user = await db.get(User, body.user_id)
    if user is None:
        raise NotFoundError("User not found")
    conversion = await referral_service.convert_referral(db, user, body.referrer_tokens)
    if conversion is None:
        raise BusinessRuleError("No unconverted referral found for this user")
    await db.refresh(conversion.referral)
    return ok(
        ReferralConversionResponse.model_validate(conversion, from_attributes=True),
        "Referral converted successfully",
    )
