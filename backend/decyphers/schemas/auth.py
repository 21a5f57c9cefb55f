"""Pydantic v2 request/response schemas for authentication endpoints."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Registration through the web app or one of the messaging channels.

    ``telegram`` requires ``telegram_id``; ``whatsapp`` requires a verified
    ``phone_number``.
    """

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    channel: Literal["standard", "telegram", "whatsapp"] = "standard"
    telegram_id: int | None = None
    telegram_username: str | None = Field(None, max_length=255)
    phone_number: str | None = Field(None, max_length=32)
    referral_code: str | None = Field(None, max_length=32)

    @model_validator(mode="after")
    def _check_channel_fields(self) -> "RegisterRequest":
        if self.channel == "telegram" and self.telegram_id is None:
            raise ValueError("telegram_id is required for Telegram registration")
        if self.channel == "whatsapp" and not self.phone_number:
            raise ValueError("phone_number is required for WhatsApp registration")
        return self


class LoginRequest(BaseModel):
    """Schema for email/password login."""

    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    """Schema for token refresh."""

    refresh_token: str


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """JWT token pair returned on successful authentication."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: str
    is_active: bool
    telegram_id: int | None = None
    telegram_username: str | None = None
    phone_number: str | None = None
    whatsapp_verified: bool = False
    referral_code: str | None = None
    referral_count: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuthResponse(BaseModel):
    """Combined user + tokens returned on register/login."""

    user: UserResponse
    tokens: TokenResponse
