"""Schemas for token balances, packages, purchases and admin additions."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TokenBalanceResponse(BaseModel):
    registration_token: int
    free_token: int
    subscription_token: int
    addons_token: int
    total: int


class TokenPackageResponse(BaseModel):
    id: str
    name: str
    tokens: int
    price: Decimal
    description: str


class TokenPurchaseRequest(BaseModel):
    package_id: Literal["micro", "starter", "standard", "premium"]
    success_url: str | None = None
    cancel_url: str | None = None


class TokenPurchaseResponse(BaseModel):
    """Returned flat rather than inside the usual envelope; clients read the ids directly."""

    success: bool = True
    session_id: str
    checkout_url: str


class VerifyPurchaseRequest(BaseModel):
    session_id: str = Field(..., min_length=1)


class VerifyPurchaseResponse(BaseModel):
    credited: bool
    tokens: int
    balance: TokenBalanceResponse


class TokenHistoryResponse(BaseModel):
    id: uuid.UUID
    token_type: str
    change: int
    balance_after: int
    reason: str
    reference: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ManualTokenAdditionRequest(BaseModel):
    user_id: uuid.UUID
    token_amount: int = Field(..., gt=0)
    token_type: Literal["subscription_token", "addons_token"]
    reason: str | None = None


class ManualTokenAdditionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    admin_id: uuid.UUID
    token_amount: int
    token_type: str
    reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
