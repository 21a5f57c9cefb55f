"""Tests for Stripe webhook handler functions with mocked Stripe events."""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe
from conftest import create_subscription_row, create_user
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.billing.stripe_client import ts_to_naive
from decyphers.billing.webhooks import (
    EVENT_HANDLERS,
    SUBSCRIPTION_ACTION,
    TOKEN_PURCHASE_ACTION,
    handle_checkout_session_completed,
    handle_invoice_paid,
    handle_invoice_payment_failed,
    handle_subscription_deleted,
    handle_subscription_updated,
)
from decyphers.models.plan import Plan
from decyphers.models.subscription import ACTIVE, CANCELED, INCOMPLETE, PAST_DUE, Subscription
from decyphers.models.token_history import TokenHistory
from decyphers.models.user import User


class _StripeObj(SimpleNamespace):
    """SimpleNamespace with bracket notation support (like Stripe API objects).

    Stripe API 2025-08-27 (basil) changed subscription.items to require
    bracket notation to avoid collision with Python dict .items().
    """

    def __getitem__(self, key: str):
        return getattr(self, key)


def _make_event(event_type: str, data_object: dict) -> _StripeObj:
    """Create a fake Stripe Event-like object."""
    obj = _StripeObj(**data_object)
    return _StripeObj(
        type=event_type,
        id=f"evt_test_{uuid.uuid4().hex[:8]}",
        data=_StripeObj(object=obj),
    )


def _make_stripe_sub(
    sub_id: str,
    status: str = "active",
    cancel_at_period_end: bool = False,
    current_period_end: int | None = None,
) -> dict:
    item = _StripeObj(id="si_test", current_period_end=current_period_end)
    return {
        "id": sub_id,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "items": _StripeObj(data=[item]),
    }


def _ts(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


class TestTsToNaive:
    def test_converts_unix_timestamp(self):
        assert ts_to_naive(_ts(datetime(2026, 6, 1, 8, 30))) == datetime(2026, 6, 1, 8, 30)

    def test_none_passthrough(self):
        assert ts_to_naive(None) is None


class TestCheckoutSessionCompleted:
    @pytest.mark.asyncio
    async def test_token_purchase_credits_addons_once(
        self, db_session: AsyncSession, test_user: User
    ):
        event = _make_event(
            "checkout.session.completed",
            {
                "id": "cs_test_tokens",
                "metadata": {
                    "action": TOKEN_PURCHASE_ACTION,
                    "user_id": str(test_user.id),
                    "package_id": "starter",
                    "token_amount": "35000",
                },
            },
        )
        await handle_checkout_session_completed(db_session, event)
        # Stripe retries deliver the same session again
        await handle_checkout_session_completed(db_session, event)

        assert test_user.addons_token == 35000
        count = await db_session.scalar(
            select(func.count()).select_from(TokenHistory).where(TokenHistory.reference == "cs_test_tokens")
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_subscription_checkout_creates_subscription(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        event = _make_event(
            "checkout.session.completed",
            {
                "id": "cs_test_sub",
                "subscription": "sub_checkout_1",
                "customer": "cus_checkout_1",
                "metadata": {
                    "action": SUBSCRIPTION_ACTION,
                    "user_id": str(test_user.id),
                    "plan_id": str(basic_plan.id),
                },
            },
        )
        await handle_checkout_session_completed(db_session, event)

        subscription = (
            await db_session.execute(
                select(Subscription).where(Subscription.stripe_subscription_id == "sub_checkout_1")
            )
        ).scalar_one()
        assert subscription.user_id == test_user.id
        assert subscription.stripe_customer_id == "cus_checkout_1"
        assert test_user.subscription_token == basic_plan.tokens_per_cycle

    @pytest.mark.asyncio
    async def test_unknown_user_is_skipped(self, db_session: AsyncSession):
        event = _make_event(
            "checkout.session.completed",
            {"id": "cs_nobody", "metadata": {"user_id": str(uuid.uuid4()), "action": TOKEN_PURCHASE_ACTION}},
        )
        await handle_checkout_session_completed(db_session, event)
        count = await db_session.scalar(select(func.count()).select_from(TokenHistory))
        assert count == 0

    @pytest.mark.asyncio
    async def test_existing_live_subscription_not_duplicated(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        await create_subscription_row(db_session, test_user, basic_plan, stripe_subscription_id="sub_old")
        event = _make_event(
            "checkout.session.completed",
            {
                "id": "cs_second",
                "subscription": "sub_second",
                "customer": "cus_test",
                "metadata": {
                    "action": SUBSCRIPTION_ACTION,
                    "user_id": str(test_user.id),
                    "plan_id": str(pro_plan.id),
                },
            },
        )
        await handle_checkout_session_completed(db_session, event)
        count = await db_session.scalar(
            select(func.count()).select_from(Subscription).where(Subscription.user_id == test_user.id)
        )
        assert count == 1


class TestInvoiceEvents:
    @pytest.mark.asyncio
    async def test_payment_failed_marks_past_due(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_inv"
        )
        event = _make_event("invoice.payment_failed", {"id": "in_fail", "subscription": "sub_inv"})
        await handle_invoice_payment_failed(db_session, event)
        assert subscription.status == PAST_DUE

    @pytest.mark.asyncio
    async def test_paid_invoice_reactivates(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, status=PAST_DUE, stripe_subscription_id="sub_paid"
        )
        # Newer API versions nest the subscription id under parent.subscription_details
        event = _make_event(
            "invoice.paid",
            {
                "id": "in_paid",
                "subscription": None,
                "parent": _StripeObj(subscription_details=_StripeObj(subscription="sub_paid")),
            },
        )
        await handle_invoice_paid(db_session, event)
        assert subscription.status == ACTIVE

    @pytest.mark.asyncio
    async def test_one_time_invoice_ignored(self, db_session: AsyncSession):
        event = _make_event("invoice.paid", {"id": "in_once", "subscription": None, "parent": None})
        await handle_invoice_paid(db_session, event)


class TestSubscriptionLifecycle:
    @pytest.mark.asyncio
    async def test_updated_syncs_cancel_flag_and_period(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_upd"
        )
        period_end = datetime(2026, 12, 1, 0, 0)
        event = _make_event(
            "customer.subscription.updated",
            _make_stripe_sub("sub_upd", cancel_at_period_end=True, current_period_end=_ts(period_end)),
        )
        await handle_subscription_updated(db_session, event)

        assert subscription.next_billing_date == period_end
        assert subscription.canceled_at is not None
        assert subscription.ends_at == period_end

    @pytest.mark.asyncio
    async def test_deleted_ends_subscription(self, db_session: AsyncSession, basic_plan: Plan):
        user = await create_user(db_session, subscription_token=700, free_token=20)
        subscription = await create_subscription_row(
            db_session, user, basic_plan, stripe_subscription_id="sub_del"
        )
        ended = datetime(2026, 7, 1, 0, 0)
        event = _make_event(
            "customer.subscription.deleted", {"id": "sub_del", "ended_at": _ts(ended)}
        )
        await handle_subscription_deleted(db_session, event)

        assert subscription.status == CANCELED
        assert subscription.ends_at == ended
        assert user.subscription_token == 0
        assert user.free_token == 20

    @pytest.mark.parametrize(
        ("stripe_status", "local_status"),
        [
            ("trialing", ACTIVE),
            ("unpaid", PAST_DUE),
            ("paused", PAST_DUE),
            ("incomplete", INCOMPLETE),
            ("incomplete_expired", CANCELED),
        ],
    )
    @pytest.mark.asyncio
    async def test_updated_maps_stripe_status(
        self,
        db_session: AsyncSession,
        test_user: User,
        basic_plan: Plan,
        stripe_status: str,
        local_status: str,
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_map"
        )
        event = _make_event("customer.subscription.updated", _make_stripe_sub("sub_map", status=stripe_status))
        await handle_subscription_updated(db_session, event)
        assert subscription.status == local_status

    @pytest.mark.asyncio
    async def test_updated_keeps_status_for_unmapped_value(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, status=PAST_DUE, stripe_subscription_id="sub_odd"
        )
        event = _make_event("customer.subscription.updated", _make_stripe_sub("sub_odd", status="on_hold"))
        await handle_subscription_updated(db_session, event)
        assert subscription.status == PAST_DUE

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_ignored(self, db_session: AsyncSession):
        event = _make_event("customer.subscription.updated", _make_stripe_sub("sub_missing"))
        await handle_subscription_updated(db_session, event)


class TestWebhookEndpoint:
    """POST /api/v1/webhooks/stripe with signature verification mocked out."""

    @pytest.mark.asyncio
    async def test_invalid_signature(self, client: AsyncClient):
        with patch(
            "decyphers.api.v1.webhooks.construct_webhook_event",
            side_effect=stripe.SignatureVerificationError("bad", "sig"),
        ):
            response = await client.post(
                "/api/v1/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"}
            )
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid signature"

    @pytest.mark.asyncio
    async def test_unhandled_event_type(self, client: AsyncClient):
        event = _make_event("customer.created", {"id": "cus_new"})
        with patch("decyphers.api.v1.webhooks.construct_webhook_event", return_value=event):
            response = await client.post("/api/v1/webhooks/stripe", content=b"{}")
        assert response.json() == {"status": "ignored"}

    @pytest.mark.asyncio
    async def test_dispatches_to_handler(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_http"
        )
        event = _make_event("invoice.payment_failed", {"id": "in_http", "subscription": "sub_http"})
        with patch("decyphers.api.v1.webhooks.construct_webhook_event", return_value=event):
            response = await client.post("/api/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 200
        assert response.json() == {"status": "processed"}
        assert subscription.status == PAST_DUE

    def test_handler_registry(self):
        assert set(EVENT_HANDLERS) == {
            "checkout.session.completed",
            "invoice.paid",
            "customer.subscription.updated",
            "customer.subscription.deleted",
            "invoice.payment_failed",
        }
