"""Schemas for referral tiers, sales milestone tiers and affiliate rewards."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SubscriptionReward = Literal["basic", "pro", "enterprise"]

# ---------------------------------------------------------------------------
# Referral tiers
# ---------------------------------------------------------------------------


class ReferralTierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    min_referrals: int = Field(..., ge=0)
    max_referrals: int | None = Field(None, ge=0)
    referrer_tokens: int = Field(0, ge=0)
    referee_tokens: int = Field(0, ge=0)
    badge: str | None = Field(None, max_length=100)
    subscription_reward: SubscriptionReward | None = None
    subscription_months: int = Field(0, ge=0)


class ReferralTierUpdate(BaseModel):
    """Partial update. Send ``max_referrals: null`` to make the range unbounded."""

    name: str | None = Field(None, min_length=1, max_length=100)
    min_referrals: int | None = Field(None, ge=0)
    max_referrals: int | None = Field(None, ge=0)
    referrer_tokens: int | None = Field(None, ge=0)
    referee_tokens: int | None = Field(None, ge=0)
    badge: str | None = Field(None, max_length=100)
    subscription_reward: SubscriptionReward | None = None
    subscription_months: int | None = Field(None, ge=0)


class ReferralTierResponse(BaseModel):
    id: uuid.UUID
    name: str
    min_referrals: int
    max_referrals: int | None = None
    referrer_tokens: int
    referee_tokens: int
    badge: str | None = None
    subscription_reward: str | None = None
    subscription_months: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Sales milestone tiers
# ---------------------------------------------------------------------------


class SalesMilestoneTierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    required_sales: int = Field(..., ge=1)
    badge: str | None = Field(None, max_length=100)
    subscription_reward: SubscriptionReward | None = None
    subscription_months: int = Field(0, ge=0)
    cash_bonus: Decimal | None = Field(None, ge=0)
    has_physical_plaque: bool = False
    perks: list[Any] | None = None


class SalesMilestoneTierUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    required_sales: int | None = Field(None, ge=1)
    badge: str | None = Field(None, max_length=100)
    subscription_reward: SubscriptionReward | None = None
    subscription_months: int | None = Field(None, ge=0)
    cash_bonus: Decimal | None = Field(None, ge=0)
    has_physical_plaque: bool | None = None
    perks: list[Any] | None = None


class SalesMilestoneTierResponse(BaseModel):
    id: uuid.UUID
    name: str
    required_sales: int
    badge: str | None = None
    subscription_reward: str | None = None
    subscription_months: int
    cash_bonus: Decimal | None = None
    has_physical_plaque: bool
    perks: list[Any] | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Affiliate rewards
# ---------------------------------------------------------------------------


class AffiliateRewardResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    milestone_tier_id: uuid.UUID | None = None
    reward_type: str
    value: str | None = None
    plan_id: uuid.UUID | None = None
    status: str
    notes: str | None = None
    fulfilled_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RewardStatusUpdate(BaseModel):
    status: Literal["pending", "awarded", "fulfilled", "cancelled"]
    notes: str | None = None
