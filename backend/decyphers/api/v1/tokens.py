"""Token API: balances, packages, Stripe purchases and admin grants."""

import logging
import uuid

import stripe
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import (
    get_current_active_user,
    get_db,
    require_admin,
    require_subscription_for_token_purchase,
)
from decyphers.billing.plans import TOKEN_PACKAGES, get_token_package
from decyphers.billing.stripe_client import create_token_checkout_session, get_checkout_session
from decyphers.billing.webhooks import TOKEN_PURCHASE_ACTION
from decyphers.config import settings
from decyphers.exceptions import BusinessRuleError, NotFoundError, PaymentGatewayError
from decyphers.models.token_history import ManualTokenAddition, TokenHistory
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.token import (
    ManualTokenAdditionRequest,
    ManualTokenAdditionResponse,
    TokenBalanceResponse,
    TokenHistoryResponse,
    TokenPackageResponse,
    TokenPurchaseRequest,
    TokenPurchaseResponse,
    VerifyPurchaseRequest,
    VerifyPurchaseResponse,
)
from decyphers.services.token_service import add_manual_tokens, fulfil_token_purchase, get_user_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tokens", tags=["tokens"])


@router.get("/packages", response_model=Envelope[list[TokenPackageResponse]])
async def list_packages() -> Envelope[list[TokenPackageResponse]]:
    """Token packages on sale (public)."""
    return ok(
        [
            TokenPackageResponse(
                id=p.id,
                name=p.name,
                tokens=p.tokens,
                price=p.price,
                description=p.description,
            )
            for p in TOKEN_PACKAGES.values()
        ]
    )


@router.get("/balance", response_model=Envelope[TokenBalanceResponse])
async def get_balance(
    current_user: User = Depends(get_current_active_user),
) -> Envelope[TokenBalanceResponse]:
    return ok(TokenBalanceResponse(**get_user_tokens(current_user)))


@router.get("/history", response_model=Envelope[list[TokenHistoryResponse]])
async def get_history(
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[list[TokenHistoryResponse]]:
    result = await db.execute(
        select(TokenHistory)
        .where(TokenHistory.user_id == current_user.id)
        .order_by(TokenHistory.created_at.desc())
        .limit(limit)
    )
    return ok([TokenHistoryResponse.model_validate(row) for row in result.scalars()])


@router.post("/purchase", response_model=TokenPurchaseResponse)
async def purchase_tokens(
    body: TokenPurchaseRequest,
    current_user: User = Depends(require_subscription_for_token_purchase),
) -> TokenPurchaseResponse:
    """Open a one-off Stripe Checkout session for a token package.

    Telegram/WhatsApp users below the starting allotment are refused with
    403 until they subscribe (see ``require_subscription_for_token_purchase``).
    """
    package = get_token_package(body.package_id)
    if package is None:
        raise NotFoundError("Token package not found")
    if not package.stripe_price_id:
        raise BusinessRuleError(f"Token package '{package.id}' is not configured for checkout")

    success_url = (
        body.success_url
        or f"{settings.frontend_url}/tokens?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = body.cancel_url or f"{settings.frontend_url}/tokens"

    try:
        session = await create_token_checkout_session(
            price_id=package.stripe_price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "action": TOKEN_PURCHASE_ACTION,
                "user_id": str(current_user.id),
                "package_id": package.id,
                "token_amount": str(package.tokens),
            },
        )
    except stripe.StripeError as e:
        logger.error("Stripe token checkout error for user %s: %s", current_user.id, e)
        raise PaymentGatewayError(f"Payment processing error: {e}") from e

    return TokenPurchaseResponse(session_id=session.id, checkout_url=session.url)


@router.post("/verify-purchase", response_model=Envelope[VerifyPurchaseResponse])
async def verify_purchase(
    body: VerifyPurchaseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[VerifyPurchaseResponse]:
    """Credit a paid session from the success page, in case the webhook is late."""
    try:
        session = await get_checkout_session(body.session_id)
    except stripe.StripeError as e:
        logger.error("Could not retrieve checkout session %s: %s", body.session_id, e)
        raise PaymentGatewayError(f"Payment processing error: {e}") from e

    metadata = dict(getattr(session, "metadata", None) or {})
    if metadata.get("action") != TOKEN_PURCHASE_ACTION or metadata.get("user_id") != str(current_user.id):
        raise NotFoundError("Token purchase not found")
    if getattr(session, "payment_status", None) != "paid":
        raise BusinessRuleError("Payment has not been completed")

    tokens = int(metadata.get("token_amount") or 0)
    credited = await fulfil_token_purchase(db, current_user, tokens, session.id)
    return ok(
        VerifyPurchaseResponse(
            credited=credited,
            tokens=tokens,
            balance=TokenBalanceResponse(**get_user_tokens(current_user)),
        ),
        "Tokens added to your balance" if credited else "Purchase already credited",
    )


@router.post("/admin/manual-additions", response_model=Envelope[ManualTokenAdditionResponse])
async def manually_add_tokens(
    body: ManualTokenAdditionRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> Envelope[ManualTokenAdditionResponse]:
    user = await db.get(User, body.user_id)
    if user is None:
        raise NotFoundError("User not found")
    addition = await add_manual_tokens(db, admin, user, body.token_amount, body.token_type, body.reason)
    await db.refresh(addition)
    return ok(ManualTokenAdditionResponse.model_validate(addition), "Tokens added successfully")


@router.get("/admin/manual-additions", response_model=Envelope[list[ManualTokenAdditionResponse]])
async def list_manual_additions(
    user_id: uuid.UUID | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[list[ManualTokenAdditionResponse]]:
    query = select(ManualTokenAddition).order_by(ManualTokenAddition.created_at.desc()).limit(limit)
    if user_id is not None:
        query = query.where(ManualTokenAddition.user_id == user_id)
    result = await db.execute(query)
    return ok([ManualTokenAdditionResponse.model_validate(row) for row in result.scalars()])
