"""Stripe webhook endpoint: receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_db
from decyphers.billing.stripe_client import construct_webhook_event
from decyphers.billing.webhooks import EVENT_HANDLERS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    """Verify the signature and dispatch the event.

    A handler failure returns 500 so that Stripe retries the delivery.
    """
    # Signature is computed over the raw bytes
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.debug("Unhandled webhook event type: %s", event.type)
        return {"status": "ignored"}

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)
    try:
        await handler(db, event)
    except Exception as e:
        logger.exception("Error processing webhook event %s", event.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from e

    return {"status": "processed"}
