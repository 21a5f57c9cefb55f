"""FastAPI authentication dependencies for route protection."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.auth.jwt import InvalidTokenError, user_id_from_token
from decyphers.database import get_db
from decyphers.models.user import User

# Strict bearer: 403 when the header is missing
_bearer_scheme = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the Bearer access token to a user.

    Raises:
        HTTPException 401: invalid, expired or refresh token, or unknown user.
    """
    try:
        user_id = user_id_from_token(credentials.credentials)
    except InvalidTokenError as e:
        raise _unauthorized(str(e)) from None

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("Could not validate credentials")
    return user


async def get_current_active_user(
    user: User = Depends(get_current_user),
) -> User:
    """Return the current user only if their account is active.

    Raises:
        HTTPException 403: If the user account is inactive or banned.
    """
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return user


async def require_admin(
    user: User = Depends(get_current_active_user),
) -> User:
    """Admin and super_admin only."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user
