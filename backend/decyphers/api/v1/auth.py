"""Auth API router: register, login, refresh, me."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db
from decyphers.auth.jwt import REFRESH, InvalidTokenError, create_token_pair, user_id_from_token
from decyphers.auth.passwords import hash_password, verify_password
from decyphers.config import settings
from decyphers.models.user import User
from decyphers.schemas.auth import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from decyphers.schemas.common import Envelope, ok
from decyphers.services.referral_service import apply_referral_code, generate_referral_code
from decyphers.services.token_service import credit_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _auth_response(user: User) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.model_validate(user),
        tokens=TokenResponse(**create_token_pair(str(user.id), user.role)),
    )


@router.post("/register", response_model=Envelope[AuthResponse], status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)) -> Envelope[AuthResponse]:
    """Create an account and grant the registration allotment for its channel.

    Telegram and WhatsApp signups start with the channel allotment; web
    signups get the (usually zero) standard allotment. Every account gets its
    own referral code, and an invalid ``referral_code`` fails the signup.
    """
    existing = await db.execute(select(User.id).where(User.email == body.email))
    if existing.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    if body.telegram_id is not None:
        taken = await db.execute(select(User.id).where(User.telegram_id == body.telegram_id))
        if taken.first() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Telegram account already registered",
            )

    user = User(
        email=body.email,
        hashed_password=hash_password(body.password),
        name=body.name,
        phone_number=body.phone_number,
    )
    if body.channel == "telegram":
        user.telegram_id = body.telegram_id
        user.telegram_username = body.telegram_username
    elif body.channel == "whatsapp":
        user.whatsapp_verified = True
    db.add(user)
    await db.flush()

    allotment = (
        settings.channel_starting_tokens
        if body.channel in ("telegram", "whatsapp")
        else settings.standard_registration_tokens
    )
    if allotment > 0:
        await credit_tokens(db, user, allotment, "registration_token", "registration")

    await generate_referral_code(db, user)
    if body.referral_code:
        await apply_referral_code(db, user, body.referral_code)

    # Load server-side timestamps for the response
    await db.refresh(user)

    logger.info("Registered user %s via %s channel", user.id, body.channel)
    return ok(_auth_response(user), "Registration successful")


@router.post("/login", response_model=Envelope[AuthResponse])
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)) -> Envelope[AuthResponse]:
    """Authenticate with email and password."""
    result = await db.execute(select(User).where(User.email == body.email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(body.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    return ok(_auth_response(user))


@router.post("/refresh", response_model=Envelope[TokenResponse])
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)) -> Envelope[TokenResponse]:
    """Exchange a valid refresh token for a new token pair."""
    try:
        user_id = user_id_from_token(body.refresh_token, expected_type=REFRESH)
    except InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return ok(TokenResponse(**create_token_pair(str(user.id), user.role)))


@router.get("/me", response_model=Envelope[UserResponse])
async def me(current_user: User = Depends(get_current_active_user)) -> Envelope[UserResponse]:
    """Return the currently authenticated user's profile."""
    return ok(UserResponse.model_validate(current_user))
