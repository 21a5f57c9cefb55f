"""initial_schema

Revision ID: 7c1e4b2a9d30
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e4b2a9d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("telegram_id", sa.BigInteger(), nullable=True),
        sa.Column("telegram_username", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("whatsapp_verified", sa.Boolean(), nullable=False),
        sa.Column("firebase_uid", sa.String(128), nullable=True),
        sa.Column("registration_token", sa.Integer(), nullable=False),
        sa.Column("free_token", sa.Integer(), nullable=False),
        sa.Column("subscription_token", sa.Integer(), nullable=False),
        sa.Column("addons_token", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(32), nullable=True),
        sa.Column("referral_count", sa.Integer(), nullable=False),
        sa.Column("sales_count", sa.Integer(), nullable=False),
        sa.Column("free_plan_used", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("telegram_id"),
        sa.UniqueConstraint("firebase_uid"),
        sa.UniqueConstraint("referral_code"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "plans",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("interval", sa.String(20), nullable=False),
        sa.Column("tokens_per_cycle", sa.Integer(), nullable=False),
        sa.Column("stripe_price_id", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("next_billing_date", sa.DateTime(), nullable=True),
        sa.Column("canceled_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("stripe_subscription_id"),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_next_billing_date", "subscriptions", ["next_billing_date"])

    op.create_table(
        "schedule_tasks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("command", sa.String(100), nullable=False),
        sa.Column("cron_expression", sa.String(100), nullable=False),
        sa.Column("parameter", sa.JSON(), nullable=False),
        sa.Column("execute_at", sa.DateTime(), nullable=True),
        sa.Column("executed", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_schedule_tasks_user_id", "schedule_tasks", ["user_id"])
    op.create_index("ix_schedule_tasks_execute_at", "schedule_tasks", ["execute_at"])

    op.create_table(
        "referral_tiers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("min_referrals", sa.Integer(), nullable=False),
        sa.Column("max_referrals", sa.Integer(), nullable=True),
        sa.Column("referrer_tokens", sa.Integer(), nullable=False),
        sa.Column("referee_tokens", sa.Integer(), nullable=False),
        sa.Column("badge", sa.String(100), nullable=True),
        sa.Column("subscription_reward", sa.String(50), nullable=True),
        sa.Column("subscription_months", sa.Integer(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "sales_milestone_tiers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("required_sales", sa.Integer(), nullable=False),
        sa.Column("badge", sa.String(100), nullable=True),
        sa.Column("subscription_reward", sa.String(50), nullable=True),
        sa.Column("subscription_months", sa.Integer(), nullable=False),
        sa.Column("cash_bonus", sa.Numeric(10, 2), nullable=True),
        sa.Column("has_physical_plaque", sa.Boolean(), nullable=False),
        sa.Column("perks", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sales_milestone_tiers_required_sales", "sales_milestone_tiers", ["required_sales"])

    op.create_table(
        "affiliate_rewards",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("milestone_tier_id", sa.Uuid(), sa.ForeignKey("sales_milestone_tiers.id"), nullable=True),
        sa.Column("reward_type", sa.String(50), nullable=False),
        sa.Column("value", sa.String(255), nullable=True),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("fulfilled_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_affiliate_rewards_user_id", "affiliate_rewards", ["user_id"])
    op.create_index("ix_affiliate_rewards_milestone_tier_id", "affiliate_rewards", ["milestone_tier_id"])

    op.create_table(
        "token_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_type", sa.String(50), nullable=False),
        sa.Column("change", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("reference", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_token_history_user_id", "token_history", ["user_id"])

    op.create_table(
        "manual_token_additions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("admin_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_amount", sa.Integer(), nullable=False),
        sa.Column("token_type", sa.String(50), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_manual_token_additions_user_id", "manual_token_additions", ["user_id"])

    op.create_table(
        "verifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("uid", sa.String(64), nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("verification_code", sa.String(6), nullable=False),
        sa.Column("app", sa.String(50), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_verifications_uid", "verifications", ["uid"])
    op.create_index("ix_verifications_verification_code", "verifications", ["verification_code"])

    op.create_table(
        "smtp_configurations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("host", sa.String(255), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("password", sa.String(255), nullable=True),
        sa.Column("encryption", sa.String(10), nullable=True),
        sa.Column("from_address", sa.String(255), nullable=False),
        sa.Column("from_name", sa.String(255), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "forex_news",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("country", sa.String(10), nullable=True),
        sa.Column("impact", sa.String(20), nullable=True),
        sa.Column("forecast", sa.String(50), nullable=True),
        sa.Column("previous", sa.String(50), nullable=True),
        sa.Column("date", sa.String(40), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_forex_news_title", "forex_news", ["title"])

    op.create_table(
        "analysis_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "schedule_task_id",
            sa.Uuid(),
            sa.ForeignKey("schedule_tasks.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("symbol", sa.String(50), nullable=False),
        sa.Column("intervals", sa.JSON(), nullable=False),
        sa.Column("image_count", sa.Integer(), nullable=False),
        sa.Column("analysis", sa.Text(), nullable=False),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=False),
        sa.Column("extra", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_analysis_history_user_id", "analysis_history", ["user_id"])


def downgrade() -> None:
    op.drop_table("analysis_history")
    op.drop_table("forex_news")
    op.drop_table("smtp_configurations")
    op.drop_table("verifications")
    op.drop_table("manual_token_additions")
    op.drop_table("token_history")
    op.drop_table("affiliate_rewards")
    op.drop_table("sales_milestone_tiers")
    op.drop_table("referral_tiers")
    op.drop_table("schedule_tasks")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_table("users")
