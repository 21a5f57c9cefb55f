"""Purchase gating dependencies: channel users need a subscription before buying tokens."""

import logging

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.auth.dependencies import get_current_active_user
from decyphers.database import get_db
from decyphers.exceptions import SubscriptionRequiredError
from decyphers.models.user import User
from decyphers.services.subscription_service import has_active_subscription
from decyphers.services.token_service import requires_subscription_for_purchase

logger = logging.getLogger(__name__)

SUBSCRIPTION_REQUIRED_MESSAGE = "You must purchase a subscription before buying additional tokens."


async def require_subscription_for_token_purchase(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_active_user),
) -> User:
    """Raise 403 when a Telegram/WhatsApp user below the starting allotment has no subscription."""
    subscribed = await has_active_subscription(db, user.id)
    if requires_subscription_for_purchase(user, subscribed):
        logger.info("Token purchase blocked for channel user %s without subscription", user.id)
        raise SubscriptionRequiredError(SUBSCRIPTION_REQUIRED_MESSAGE)
    return user
