"""Token service: balance mutations, the monthly grant, and purchase gating.

A user holds four balances (see ``decyphers.models.user.TOKEN_FIELDS``).
Every mutation goes through this module so it lands in ``token_history``.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.config import settings
from decyphers.exceptions import BusinessRuleError, InsufficientTokensError
from decyphers.models.subscription import ACTIVE, Subscription
from decyphers.models.token_history import ManualTokenAddition, TokenHistory
from decyphers.models.user import TOKEN_FIELDS, User

logger = logging.getLogger(__name__)

# Consumption order when tokens are spent
DEDUCTION_ORDER: tuple[str, ...] = (
    "registration_token",
    "free_token",
    "subscription_token",
    "addons_token",
)

MANUAL_TOKEN_TYPES: tuple[str, ...] = ("subscription_token", "addons_token")

TOKEN_PURCHASE_REASON = "token_purchase"


def _check_token_type(token_type: str) -> None:
    if token_type not in TOKEN_FIELDS:
        raise BusinessRuleError(f"Unknown token type: {token_type}")


def _record(
    db: AsyncSession,
    user: User,
    token_type: str,
    change: int,
    reason: str,
    reference: str | None = None,
) -> None:
    db.add(
        TokenHistory(
            user_id=user.id,
            token_type=token_type,
            change=change,
            balance_after=getattr(user, token_type),
            reason=reason,
            reference=reference,
        )
    )


def get_user_tokens(user: User) -> dict[str, int]:
    """The four balances plus their total."""
    balances = {field: getattr(user, field) or 0 for field in TOKEN_FIELDS}
    balances["total"] = sum(balances.values())
    return balances


async def credit_tokens(
    db: AsyncSession,
    user: User,
    amount: int,
    token_type: str,
    reason: str,
    reference: str | None = None,
) -> int:
    """Add ``amount`` to one balance and return the new balance."""
    _check_token_type(token_type)
    if amount <= 0:
        raise BusinessRuleError("Token amount must be positive")

    setattr(user, token_type, (getattr(user, token_type) or 0) + amount)
    _record(db, user, token_type, amount, reason, reference)
    await db.flush()
    logger.info("Credited %d %s to user %s (%s)", amount, token_type, user.id, reason)
    return getattr(user, token_type)


async def reset_tokens(
    db: AsyncSession,
    user: User,
    token_type: str,
    amount: int,
    reason: str,
) -> int:
    """Set one balance to an absolute value, recording the delta."""
    _check_token_type(token_type)
    previous = getattr(user, token_type) or 0
    setattr(user, token_type, max(amount, 0))
    delta = getattr(user, token_type) - previous
    if delta:
        _record(db, user, token_type, delta, reason)
    await db.flush()
    return getattr(user, token_type)


async def deduct_tokens(
    db: AsyncSession,
    user: User,
    amount: int,
    reason: str,
    reference: str | None = None,
) -> dict[str, int]:
    """Spend ``amount`` tokens across balances in ``DEDUCTION_ORDER``.

    Returns how much was taken from each balance. Nothing is changed when
    the combined balance is short.
    """
    if amount <= 0:
        return {}

    available = user.total_tokens
    if available < amount:
        raise InsufficientTokensError(required=amount, available=available)

    remaining = amount
    consumed: dict[str, int] = {}
    for field in DEDUCTION_ORDER:
        if remaining == 0:
            break
        balance = getattr(user, field) or 0
        take = min(balance, remaining)
        if take:
            setattr(user, field, balance - take)
            _record(db, user, field, -take, reason, reference)
            consumed[field] = take
            remaining -= take

    await db.flush()
    logger.info("Deducted %d tokens from user %s (%s): %s", amount, user.id, reason, consumed)
    return consumed


def requires_subscription_for_purchase(user: User, has_active_subscription: bool) -> bool:
    """Whether a token purchase must be refused until the user subscribes.

    Only Telegram/WhatsApp users are gated, and only once they have dropped
    below the channel starting allotment.
    """
    if has_active_subscription or not user.is_channel_user:
        return False
    return user.total_tokens < settings.channel_starting_tokens


@dataclass
class MonthlyGrantResult:
    subscribed_users: int = 0
    free_users: int = 0

    @property
    def total(self) -> int:
        return self.subscribed_users + self.free_users


async def grant_monthly_tokens(db: AsyncSession, amount: int | None = None) -> MonthlyGrantResult:
    """Reset every user's monthly allowance in a single transaction.

    Subscribed users get ``subscription_token = amount``; everybody else gets
    ``free_token = amount``. Other balances are left alone. Any failure
    rolls back the whole batch and is re-raised.
    """
    amount = settings.monthly_token_amount if amount is None else amount
    if amount < 0:
        raise BusinessRuleError("Monthly token amount cannot be negative")

    result = MonthlyGrantResult()
    async with db.begin_nested():
        subscribed_ids = set(
            (
                await db.execute(
                    select(Subscription.user_id).where(Subscription.status == ACTIVE)
                )
            ).scalars()
        )
        users = (await db.execute(select(User).order_by(User.created_at))).scalars().all()

        for user in users:
            if user.id in subscribed_ids:
                await reset_tokens(db, user, "subscription_token", amount, "monthly_grant")
                result.subscribed_users += 1
            else:
                await reset_tokens(db, user, "free_token", amount, "monthly_grant")
                result.free_users += 1

    logger.info(
        "Monthly token grant of %d: %d subscribed users, %d free users",
        amount,
        result.subscribed_users,
        result.free_users,
    )
    return result


async def add_manual_tokens(
    db: AsyncSession,
    admin: User,
    user: User,
    amount: int,
    token_type: str,
    reason: str | None = None,
) -> ManualTokenAddition:
    """Admin grant to ``subscription_token`` or ``addons_token`` with an audit row."""
    if token_type not in MANUAL_TOKEN_TYPES:
        raise BusinessRuleError("Manual additions are limited to subscription_token and addons_token")

    await credit_tokens(db, user, amount, token_type, "manual_addition", reference=str(admin.id))
    addition = ManualTokenAddition(
        user_id=user.id,
        admin_id=admin.id,
        token_amount=amount,
        token_type=token_type,
        reason=reason,
    )
    db.add(addition)
    await db.flush()
    logger.info("Admin %s added %d %s to user %s", admin.id, amount, token_type, user.id)
    return addition


async def fulfil_token_purchase(
    db: AsyncSession, user: User, tokens: int, session_id: str
) -> bool:
    """Credit a paid token package once per Checkout Session.

    Returns False when the session was already credited (webhook retries and
    the client-side verify call can both arrive).
    """
    existing = await db.execute(
        select(TokenHistory.id).where(
            TokenHistory.reason == TOKEN_PURCHASE_REASON,
            TokenHistory.reference == session_id,
        )
    )
    if existing.first() is not None:
        logger.info("Checkout session %s already credited, skipping", session_id)
        return False

    await credit_tokens(db, user, tokens, "addons_token", TOKEN_PURCHASE_REASON, reference=session_id)
    return True
