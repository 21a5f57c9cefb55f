"""Telegram bot: webhook updates, account-link codes, and webhook management."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.config import settings
from decyphers.database import utcnow
from decyphers.exceptions import BusinessRuleError
from decyphers.models.user import User
from decyphers.models.verification import TELEGRAM_APP, TELEGRAM_CONNECT, Verification
from decyphers.services.token_service import credit_tokens

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Welcome to Decyphers!\n\nUse /start to link your account."
CODE_TEXT = (
    "🔐 Your verification code is: {code}\n\n"
    "This code will expire in {minutes} minutes.\n\n"
    "Enter this code in the Decyphers app to connect your Telegram account."
)
ERROR_TEXT = "Sorry, there was an error processing your request. Please try again later."
INVALID_CODE = "Invalid or expired verification code"

START_KEYBOARD = {
    "keyboard": [[{"text": "/start"}]],
    "resize_keyboard": True,
    "one_time_keyboard": False,
}


class TelegramAPIError(Exception):
    """The Bot API answered with ``ok: false``."""


# ---------------------------------------------------------------------------
# Bot API
# ---------------------------------------------------------------------------


async def call_bot_api(
    method: str, payload: dict[str, Any] | None = None, client: httpx.AsyncClient | None = None
) -> Any:
    """POST to a Bot API method and return its ``result``."""
    if not settings.telegram_bot_token:
        raise TelegramAPIError("TELEGRAM_BOT_TOKEN is not configured")

    url = f"{settings.telegram_bot_api_url}/{method}"
    if client is not None:
        response = await client.post(url, json=payload or {})
    else:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as owned:
            response = await owned.post(url, json=payload or {})

    response.raise_for_status()
    body = response.json()
    if not body.get("ok"):
        raise TelegramAPIError(f"{method} failed: {body.get('description', 'unknown error')}")
    return body.get("result")


async def send_message(chat_id: int | str, text: str, with_keyboard: bool = True) -> None:
    payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
    if with_keyboard:
        payload["reply_markup"] = START_KEYBOARD
    await call_bot_api("sendMessage", payload)


async def set_webhook(url: str | None = None) -> dict[str, Any]:
    """Register the webhook URL and return ``getWebhookInfo``."""
    url = url or settings.telegram_webhook_url
    if not url:
        raise BusinessRuleError("TELEGRAM_WEBHOOK_URL is not configured")
    await call_bot_api("setWebhook", {"url": url})
    info = await call_bot_api("getWebhookInfo")
    logger.info("Telegram webhook set to %s", url)
    return info


async def remove_webhook() -> bool:
    result = await call_bot_api("deleteWebhook")
    logger.info("Telegram webhook removed")
    return bool(result)


# ---------------------------------------------------------------------------
# Link codes
# ---------------------------------------------------------------------------


def generate_verification_code() -> str:
    """Random six-digit code, zero padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


async def issue_connect_code(
    db: AsyncSession,
    chat_id: int | str,
    username: str | None = None,
    now: datetime | None = None,
) -> Verification:
    now = now or utcnow()
    verification = Verification(
        uid=str(chat_id),
        username=username,
        verification_code=generate_verification_code(),
        app=TELEGRAM_APP,
        type=TELEGRAM_CONNECT,
        expires_at=now + timedelta(minutes=settings.verification_code_ttl_minutes),
    )
    db.add(verification)
    await db.flush()
    return verification


async def handle_update(db: AsyncSession, update: dict[str, Any]) -> str:
    """React to one Bot API update and return what was done.

    ``my_chat_member`` gets the welcome text, ``/start`` gets a fresh link
    code, anything else is acknowledged without a reply.
    """
    if "my_chat_member" in update:
        chat_id = update["my_chat_member"]["chat"]["id"]
        await send_message(chat_id, WELCOME_TEXT)
        return "welcomed"

    message = update.get("message") or {}
    text = message.get("text")
    if text is None:
        return "ignored"

    chat = message.get("chat") or {}
    chat_id = chat.get("id")
    if text.strip() != "/start" or chat_id is None:
        return "ignored"

    try:
        verification = await issue_connect_code(db, chat_id, chat.get("username"))
        await send_message(
            chat_id,
            CODE_TEXT.format(
                code=verification.verification_code,
                minutes=settings.verification_code_ttl_minutes,
            ),
        )
    except (TelegramAPIError, httpx.HTTPError):
        logger.exception("Error processing /start for chat %s", chat_id)
        try:
            await send_message(chat_id, ERROR_TEXT, with_keyboard=False)
        except (TelegramAPIError, httpx.HTTPError):
            logger.exception("Could not send error reply to chat %s", chat_id)
        return "error"

    logger.info("Verification code sent to chat %s", chat_id)
    return "code_sent"


@dataclass
class LinkResult:
    user: User
    tokens_awarded: int
    message: str


async def verify_connect_code(
    db: AsyncSession, user: User, code: str, now: datetime | None = None
) -> LinkResult:
    """Link the Telegram chat that requested ``code`` to ``user``.

    Users with a phone number on file receive the channel starting allotment
    as free tokens the first time they link.
    """
    now = now or utcnow()
    result = await db.execute(
        select(Verification)
        .where(
            Verification.verification_code == code,
            Verification.app == TELEGRAM_APP,
            Verification.type == TELEGRAM_CONNECT,
            Verification.verified_at.is_(None),
            Verification.expires_at > now,
        )
        .order_by(Verification.created_at.desc())
        .limit(1)
    )
    verification = result.scalar_one_or_none()
    if verification is None:
        raise BusinessRuleError(INVALID_CODE)

    telegram_id = int(verification.uid)
    owner = await db.execute(select(User.id).where(User.telegram_id == telegram_id, User.id != user.id))
    if owner.first() is not None:
        raise BusinessRuleError("This Telegram account is already linked to another user")

    first_link = user.telegram_id is None
    user.telegram_id = telegram_id
    if verification.username:
        user.telegram_username = verification.username

    verification.verified_at = now
    verification.email = user.email
    await db.flush()

    tokens_awarded = 0
    if first_link and user.phone_number:
        tokens_awarded = settings.channel_starting_tokens
        await credit_tokens(db, user, tokens_awarded, "free_token", "telegram_link")
        message = f"Telegram account connected successfully! You have been awarded {tokens_awarded} free tokens."
    elif first_link:
        message = (
            "Telegram account connected successfully! Add a phone number to your profile "
            f"to receive {settings.channel_starting_tokens} free tokens."
        )
    else:
        message = "Telegram account connected successfully"

    logger.info("Linked Telegram chat %s to user %s", telegram_id, user.id)
    return LinkResult(user=user, tokens_awarded=tokens_awarded, message=message)
