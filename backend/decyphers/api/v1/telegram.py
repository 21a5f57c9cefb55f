"""Telegram bot webhook and account-link endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.telegram import TelegramLinkResponse, TelegramStatusResponse, VerifyCodeRequest
from decyphers.schemas.token import TokenBalanceResponse
from decyphers.services.telegram_service import handle_update, verify_connect_code
from decyphers.services.token_service import get_user_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/telegram", tags=["telegram"])


@router.post("/webhook")
async def telegram_webhook(
    update: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Bot API update receiver (unauthenticated, called by Telegram)."""
    outcome = await handle_update(db, update)
    logger.info("Telegram update %s: %s", update.get("update_id"), outcome)
    return {"ok": True, "result": outcome}


@router.post("/verify-code", response_model=Envelope[TelegramLinkResponse])
async def verify_code(
    body: VerifyCodeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[TelegramLinkResponse]:
    result = await verify_connect_code(db, current_user, body.code)
    return ok(
        TelegramLinkResponse(
            telegram_id=result.user.telegram_id,
            telegram_username=result.user.telegram_username,
            tokens_awarded=result.tokens_awarded,
            balance=TokenBalanceResponse(**get_user_tokens(result.user)),
        ),
        result.message,
    )


@router.get("/check-connect", response_model=Envelope[TelegramStatusResponse])
async def check_telegram_connect(
    current_user: User = Depends(get_current_active_user),
) -> Envelope[TelegramStatusResponse]:
    return ok(
        TelegramStatusResponse(
            connected=current_user.telegram_id is not None,
            telegram_id=current_user.telegram_id,
            telegram_username=current_user.telegram_username,
        )
    )
