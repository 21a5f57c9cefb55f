"""Access/refresh JWTs for the API and the user id they carry."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from decyphers.config import settings

ACCESS = "access"
REFRESH = "refresh"


class InvalidTokenError(Exception):
    """Token failed to decode, has the wrong type, or carries no usable subject."""


def _encode(claims: dict[str, Any], token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "iat": now, "exp": now + lifetime, "type": token_type}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    return _encode(data, ACCESS, lifetime)


def create_refresh_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(days=settings.jwt_refresh_token_expire_days)
    return _encode(data, REFRESH, lifetime)


def decode_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry. Raises ``jose.JWTError``."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def user_id_from_token(token: str, expected_type: str = ACCESS) -> uuid.UUID:
    """Return the ``sub`` claim of a valid token of ``expected_type``.

    Raises:
        InvalidTokenError: on any decoding or claim problem.
    """
    try:
        payload = decode_token(token)
    except JWTError as e:
        raise InvalidTokenError("Invalid or expired token") from e

    if payload.get("type") != expected_type:
        raise InvalidTokenError("Invalid token type")

    try:
        return uuid.UUID(str(payload["sub"]))
    except (KeyError, ValueError):
        raise InvalidTokenError("Invalid token payload") from None


def create_token_pair(user_id: str, role: str = "user") -> dict[str, str]:
    """Access and refresh token for ``user_id``; the access token also carries the role."""
    return {
        "access_token": create_access_token({"sub": user_id, "role": role}),
        "refresh_token": create_refresh_token({"sub": user_id}),
        "token_type": "bearer",
    }
