"""Shared API dependencies: single import point for all routers.

    from decyphers.api.deps import get_db, get_current_active_user
"""

from decyphers.auth.dependencies import (
    get_current_active_user,
    get_current_user,
    require_admin,
)
from decyphers.billing.dependencies import require_subscription_for_token_purchase
from decyphers.database import get_db

__all__ = [
    "get_db",
    "get_current_user",
    "get_current_active_user",
    "require_admin",
    "require_subscription_for_token_purchase",
]
