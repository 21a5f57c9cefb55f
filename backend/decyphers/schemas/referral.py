"""Schemas for referral codes, conversions and affiliate sales."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from decyphers.schemas.tier import (
    AffiliateRewardResponse,
    ReferralTierResponse,
    SalesMilestoneTierResponse,
)

# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------


class ApplyReferralRequest(BaseModel):
    referral_code: str = Field(..., min_length=1, max_length=32)


class ConvertReferralRequest(BaseModel):
    """Admin conversion; ``referrer_tokens`` overrides the tier amount."""

    user_id: uuid.UUID
    referrer_tokens: int | None = Field(None, ge=1)


class ReferralCodeResponse(BaseModel):
    referral_code: str


class ReferralResponse(BaseModel):
    id: uuid.UUID
    referrer_id: uuid.UUID
    referred_id: uuid.UUID
    referral_code: str
    referred_email: str | None = None
    is_converted: bool
    tokens_awarded: int
    converted_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReferralConversionResponse(BaseModel):
    referral: ReferralResponse
    referrer_tokens: int
    referee_tokens: int
    tier_name: str


class ReferralStatusResponse(BaseModel):
    referral_code: str | None = None
    referral_count: int
    current_tier: ReferralTierResponse | None = None
    next_tier: ReferralTierResponse | None = None
    referrals_needed: int | None = None


class ReferralStats(BaseModel):
    total_referrals: int
    pending_referrals: int
    converted_referrals: int
    total_tokens_earned: int


class ReferralOverviewResponse(ReferralStatusResponse):
    referrals: list[ReferralResponse]
    stats: ReferralStats


# ---------------------------------------------------------------------------
# Affiliate sales
# ---------------------------------------------------------------------------


class TrackSaleRequest(BaseModel):
    customer_id: uuid.UUID
    subscription_id: uuid.UUID
    amount: Decimal | None = Field(None, ge=0)


class AffiliateSaleResponse(BaseModel):
    id: uuid.UUID
    affiliate_id: uuid.UUID
    customer_id: uuid.UUID
    subscription_id: uuid.UUID | None = None
    plan_id: uuid.UUID | None = None
    amount: Decimal
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TrackSaleResponse(BaseModel):
    sale: AffiliateSaleResponse | None = None
    rewards: list[AffiliateRewardResponse] = []


class AffiliateStatusResponse(BaseModel):
    sales_count: int
    total_sales_amount: Decimal
    current_tier: SalesMilestoneTierResponse | None = None
    next_tier: SalesMilestoneTierResponse | None = None
    sales_needed: int | None = None
    rewards: list[AffiliateRewardResponse]
