"""Tests for the subscription service: plan changes, renewals, cancel and resume."""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from conftest import create_plan, create_subscription_row, create_user
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.database import utcnow
from decyphers.exceptions import BusinessRuleError, ConflictError, PaymentGatewayError
from decyphers.models.plan import Plan
from decyphers.models.subscription import ACTIVE, CANCELED
from decyphers.models.user import User
from decyphers.services.subscription_service import (
    ALREADY_SUBSCRIBED,
    cancel_subscription,
    change_plan,
    create_subscription,
    get_current_subscription,
    get_subscriptions_due_for_renewal,
    process_due_renewals,
    process_renewal,
    resume_subscription,
)

SERVICE = "decyphers.services.subscription_service"


class _StripeObj(SimpleNamespace):
    """SimpleNamespace with bracket notation support (like Stripe API objects)."""

    def __getitem__(self, key: str):
        return getattr(self, key)


def _ts(value: datetime | None) -> int | None:
    return int(value.replace(tzinfo=timezone.utc).timestamp()) if value else None


def _stripe_sub(period_end: datetime | None = None) -> _StripeObj:
    item = _StripeObj(id="si_test_1", current_period_end=_ts(period_end))
    return _StripeObj(id="sub_test_1", customer="cus_test", items=_StripeObj(data=[item]))


class TestCreateSubscription:
    @pytest.mark.asyncio
    async def test_grants_plan_tokens(self, db_session: AsyncSession, test_user: User, basic_plan: Plan):
        now = datetime(2026, 1, 31, 9, 0)
        subscription = await create_subscription(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_new", now=now
        )
        assert subscription.status == ACTIVE
        assert subscription.next_billing_date == datetime(2026, 2, 28, 9, 0)
        assert test_user.subscription_token == basic_plan.tokens_per_cycle

    @pytest.mark.asyncio
    async def test_same_stripe_id_is_idempotent(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        first = await create_subscription(db_session, test_user, basic_plan, stripe_subscription_id="sub_dup")
        second = await create_subscription(db_session, test_user, basic_plan, stripe_subscription_id="sub_dup")
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_second_live_subscription_conflicts(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        await create_subscription(db_session, test_user, basic_plan, stripe_subscription_id="sub_a")
        with pytest.raises(ConflictError):
            await create_subscription(db_session, test_user, pro_plan, stripe_subscription_id="sub_b")


class TestChangePlanUpgrade:
    @pytest.mark.asyncio
    async def test_upgrade_prorates_and_switches_plan(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        now = utcnow().replace(microsecond=0)
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_up"
        )
        subscription.next_billing_date = now + timedelta(days=15)
        await db_session.flush()
        period_end = now + timedelta(days=15)

        with (
            patch(f"{SERVICE}.get_subscription", new_callable=AsyncMock) as mock_get,
            patch(f"{SERVICE}.switch_subscription_price", new_callable=AsyncMock) as mock_switch,
            patch(f"{SERVICE}.create_and_finalize_invoice", new_callable=AsyncMock) as mock_invoice,
        ):
            mock_get.return_value = _stripe_sub()
            mock_switch.return_value = _stripe_sub(period_end)
            mock_invoice.return_value = _StripeObj(id="in_1", hosted_invoice_url="https://pay.test/in_1")

            result = await change_plan(db_session, subscription, pro_plan, now=now)

        assert result == {
            "type": "upgrade",
            "invoice_url": "https://pay.test/in_1",
            "prorated_amount": 5.0,
            "amount_due": 25.0,
        }
        mock_switch.assert_awaited_once()
        assert mock_switch.await_args.kwargs["price_id"] == pro_plan.stripe_price_id
        assert mock_switch.await_args.kwargs["proration_behavior"] == "always_invoice"

        assert subscription.plan_id == pro_plan.id
        assert subscription.metadata_["original_plan_id"] == str(basic_plan.id)
        assert len(subscription.metadata_["upgrade_history"]) == 1
        assert test_user.subscription_token == pro_plan.tokens_per_cycle

    @pytest.mark.asyncio
    async def test_second_upgrade_prorates_from_original_plan(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        elite = await create_plan(db_session, "Elite", "60.00", tokens_per_cycle=500000)
        now = utcnow().replace(microsecond=0)
        subscription = await create_subscription_row(
            db_session, test_user, pro_plan, stripe_subscription_id="sub_twice"
        )
        subscription.next_billing_date = now + timedelta(days=15)
        subscription.metadata_ = {"original_plan_id": str(basic_plan.id), "upgrade_history": [{}]}
        await db_session.flush()

        with (
            patch(f"{SERVICE}.get_subscription", new_callable=AsyncMock, return_value=_stripe_sub()),
            patch(f"{SERVICE}.switch_subscription_price", new_callable=AsyncMock, return_value=_stripe_sub()),
            patch(f"{SERVICE}.create_and_finalize_invoice", new_callable=AsyncMock) as mock_invoice,
        ):
            mock_invoice.return_value = _StripeObj(id="in_2", hosted_invoice_url=None)
            result = await change_plan(db_session, subscription, elite, now=now)

        # Credit is half of the $10 basic price, not of the $30 pro price
        assert result["prorated_amount"] == 5.0
        assert result["amount_due"] == 55.0
        assert len(subscription.metadata_["upgrade_history"]) == 2

    @pytest.mark.asyncio
    async def test_stripe_failure_leaves_subscription_untouched(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_fail"
        )
        with patch(
            f"{SERVICE}.get_subscription",
            new_callable=AsyncMock,
            side_effect=stripe.APIConnectionError("network down"),
        ):
            with pytest.raises(PaymentGatewayError):
                await change_plan(db_session, subscription, pro_plan)

        assert subscription.plan_id == basic_plan.id
        assert subscription.metadata_ == {}

    @pytest.mark.asyncio
    async def test_same_price_rejected(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        twin = await create_plan(db_session, "BasicTwin", "10.00")
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_same"
        )
        with pytest.raises(BusinessRuleError, match=ALREADY_SUBSCRIBED):
            await change_plan(db_session, subscription, twin)

    @pytest.mark.asyncio
    async def test_requires_stripe_subscription(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        subscription = await create_subscription_row(db_session, test_user, basic_plan)
        with pytest.raises(BusinessRuleError, match="No Stripe subscription ID"):
            await change_plan(db_session, subscription, pro_plan)


class TestDowngradeAndRenewal:
    @pytest.mark.asyncio
    async def test_downgrade_is_deferred(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, pro_plan, stripe_subscription_id="sub_down"
        )
        result = await change_plan(db_session, subscription, basic_plan)

        assert result["type"] == "downgrade"
        assert result["effective_date"] == subscription.next_billing_date
        assert subscription.plan_id == pro_plan.id
        assert subscription.pending_downgrade_plan_id == str(basic_plan.id)

    @pytest.mark.asyncio
    async def test_renewal_applies_pending_downgrade(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        billing_date = datetime(2026, 4, 30, 0, 0)
        subscription = await create_subscription_row(
            db_session, test_user, pro_plan, stripe_subscription_id="sub_renew"
        )
        subscription.next_billing_date = billing_date
        subscription.metadata_ = {
            "pending_downgrade_plan_id": str(basic_plan.id),
            "pending_downgrade_effective_date": billing_date.isoformat(),
            "original_plan_id": str(pro_plan.id),
        }
        await db_session.flush()

        with (
            patch(f"{SERVICE}.get_subscription", new_callable=AsyncMock, return_value=_stripe_sub()),
            patch(f"{SERVICE}.switch_subscription_price", new_callable=AsyncMock) as mock_switch,
        ):
            await process_renewal(db_session, subscription, now=billing_date)

        assert subscription.plan_id == basic_plan.id
        assert subscription.metadata_ == {}
        assert subscription.next_billing_date == datetime(2026, 5, 30, 0, 0)
        assert test_user.subscription_token == basic_plan.tokens_per_cycle
        assert mock_switch.await_args.kwargs["proration_behavior"] == "none"

    @pytest.mark.asyncio
    async def test_renewal_survives_stripe_rejecting_downgrade(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan, pro_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, pro_plan, stripe_subscription_id="sub_renew_err"
        )
        subscription.metadata_ = {"pending_downgrade_plan_id": str(basic_plan.id)}
        await db_session.flush()

        with patch(
            f"{SERVICE}.get_subscription",
            new_callable=AsyncMock,
            side_effect=stripe.InvalidRequestError("no such subscription", param="id"),
        ):
            await process_renewal(db_session, subscription)

        assert subscription.plan_id == basic_plan.id

    @pytest.mark.asyncio
    async def test_due_renewals_selection(
        self, db_session: AsyncSession, basic_plan: Plan
    ):
        now = utcnow()
        due_user = await create_user(db_session)
        later_user = await create_user(db_session)
        ending_user = await create_user(db_session)

        due = await create_subscription_row(db_session, due_user, basic_plan, days_until_billing=-1)
        await create_subscription_row(db_session, later_user, basic_plan, days_until_billing=10)
        ended = await create_subscription_row(db_session, ending_user, basic_plan, days_until_billing=-1)
        ended.canceled_at = now - timedelta(days=5)
        ended.ends_at = now - timedelta(hours=1)
        await db_session.flush()

        selected = await get_subscriptions_due_for_renewal(db_session, now)
        assert [s.id for s in selected] == [due.id]

    @pytest.mark.asyncio
    async def test_one_failed_renewal_does_not_block_others(
        self, db_session: AsyncSession, basic_plan: Plan
    ):
        good_user = await create_user(db_session)
        bad_user = await create_user(db_session)
        good = await create_subscription_row(db_session, good_user, basic_plan, days_until_billing=-1)
        bad = await create_subscription_row(db_session, bad_user, basic_plan, days_until_billing=-2)
        bad.metadata_ = {"pending_downgrade_plan_id": str(uuid.uuid4())}
        await db_session.flush()
        good_id, bad_id = good.id, bad.id

        result = await process_due_renewals(db_session)

        assert result.renewed == [good_id]
        assert result.failed == [bad_id]
        await db_session.refresh(good_user)
        assert good_user.subscription_token == basic_plan.tokens_per_cycle


class TestCancelResume:
    @pytest.mark.asyncio
    async def test_cancel_at_period_end(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(
            db_session, test_user, basic_plan, stripe_subscription_id="sub_cancel"
        )
        with patch(f"{SERVICE}.set_cancel_at_period_end", new_callable=AsyncMock) as mock_flag:
            await cancel_subscription(db_session, subscription)

        mock_flag.assert_awaited_once_with("sub_cancel", True)
        assert subscription.status == ACTIVE
        assert subscription.canceled_at is not None
        assert subscription.ends_at == subscription.next_billing_date

        # Still the current subscription until the paid period ends
        assert (await get_current_subscription(db_session, test_user.id)).id == subscription.id

    @pytest.mark.asyncio
    async def test_immediate_cancel_drops_subscription_tokens(
        self, db_session: AsyncSession, basic_plan: Plan
    ):
        user = await create_user(db_session, subscription_token=900, addons_token=50)
        subscription = await create_subscription_row(
            db_session, user, basic_plan, stripe_subscription_id="sub_now"
        )
        with patch(f"{SERVICE}.stripe_cancel_subscription", new_callable=AsyncMock) as mock_cancel:
            await cancel_subscription(db_session, subscription, immediate=True)

        mock_cancel.assert_awaited_once_with("sub_now")
        assert subscription.status == CANCELED
        assert user.subscription_token == 0
        assert user.addons_token == 50

    @pytest.mark.asyncio
    async def test_resume_clears_cancellation(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(db_session, test_user, basic_plan)
        await cancel_subscription(db_session, subscription)
        await resume_subscription(db_session, subscription)
        assert subscription.canceled_at is None
        assert subscription.ends_at is None

    @pytest.mark.asyncio
    async def test_resume_requires_cancellation(
        self, db_session: AsyncSession, test_user: User, basic_plan: Plan
    ):
        subscription = await create_subscription_row(db_session, test_user, basic_plan)
        with pytest.raises(BusinessRuleError, match="not canceled"):
            await resume_subscription(db_session, subscription)
