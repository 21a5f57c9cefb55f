"""Async Stripe API wrapper for Decyphers."""

import logging
from datetime import datetime, timezone
from typing import Any

import stripe
from stripe import StripeClient

from decyphers.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


async def create_customer(email: str, name: str, user_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a Decyphers user."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "name": name,
            "metadata": {"user_id": user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def create_subscription_checkout_session(
    customer_id: str,
    price_id: str,
    success_url: str,
    cancel_url: str,
    metadata: dict[str, str],
) -> stripe.checkout.Session:
    """Create a Checkout Session that starts a recurring subscription."""
    client = get_stripe_client()
    logger.info("Creating subscription checkout for customer %s, price %s", customer_id, price_id)
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
    )


async def create_token_checkout_session(
    price_id: str,
    success_url: str,
    cancel_url: str,
    metadata: dict[str, str],
    customer_id: str | None = None,
) -> stripe.checkout.Session:
    """Create a one-off payment Checkout Session for a token package."""
    client = get_stripe_client()
    params: dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
    }
    if customer_id:
        params["customer"] = customer_id
    logger.info("Creating token checkout for package %s", metadata.get("package_id"))
    return await client.v1.checkout.sessions.create_async(params=params)


async def get_checkout_session(session_id: str) -> stripe.checkout.Session:
    client = get_stripe_client()
    return await client.v1.checkout.sessions.retrieve_async(session_id)


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


async def switch_subscription_price(
    subscription_id: str,
    item_id: str,
    price_id: str,
    proration_behavior: str,
    metadata: dict[str, str] | None = None,
) -> stripe.Subscription:
    """Move the subscription's single item onto another price."""
    client = get_stripe_client()
    params: dict[str, Any] = {
        "items": [{"id": item_id, "price": price_id}],
        "proration_behavior": proration_behavior,
    }
    if metadata:
        params["metadata"] = metadata
    logger.info(
        "Switching Stripe subscription %s to price %s (proration=%s)",
        subscription_id,
        price_id,
        proration_behavior,
    )
    return await client.v1.subscriptions.update_async(subscription_id, params=params)


async def set_cancel_at_period_end(subscription_id: str, cancel: bool) -> stripe.Subscription:
    client = get_stripe_client()
    logger.info("Setting cancel_at_period_end=%s on Stripe subscription %s", cancel, subscription_id)
    return await client.v1.subscriptions.update_async(
        subscription_id, params={"cancel_at_period_end": cancel}
    )


async def cancel_subscription(subscription_id: str) -> stripe.Subscription:
    """Cancel a Stripe subscription immediately."""
    client = get_stripe_client()
    logger.info("Cancelling Stripe subscription %s immediately", subscription_id)
    return await client.v1.subscriptions.cancel_async(subscription_id)


async def create_and_finalize_invoice(
    customer_id: str, subscription_id: str, description: str
) -> stripe.Invoice:
    """Create an invoice for pending proration items and finalize it."""
    client = get_stripe_client()
    invoice = await client.v1.invoices.create_async(
        params={
            "customer": customer_id,
            "subscription": subscription_id,
            "description": description,
            "auto_advance": True,
        }
    )
    logger.info("Created invoice %s for subscription %s", invoice.id, subscription_id)
    return await client.v1.invoices.finalize_invoice_async(invoice.id)


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)


def ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def first_item(stripe_sub: Any) -> Any:
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    sub_items = stripe_sub["items"]
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None
