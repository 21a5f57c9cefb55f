"""Schemas for Telegram account linking."""

from pydantic import BaseModel, Field

from decyphers.schemas.token import TokenBalanceResponse


class VerifyCodeRequest(BaseModel):
    code: str = Field(..., pattern=r"^\d{6}$")


class TelegramLinkResponse(BaseModel):
    telegram_id: int
    telegram_username: str | None = None
    tokens_awarded: int
    balance: TokenBalanceResponse


class TelegramStatusResponse(BaseModel):
    connected: bool
    telegram_id: int | None = None
    telegram_username: str | None = None
