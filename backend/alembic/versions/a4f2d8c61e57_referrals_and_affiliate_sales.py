"""referrals_and_affiliate_sales

Revision ID: a4f2d8c61e57
Revises: 7c1e4b2a9d30
Create Date: 2026-10-18 16:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a4f2d8c61e57'
down_revision: Union[str, Sequence[str], None] = '7c1e4b2a9d30'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "referrals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("referrer_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("referred_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("referral_code", sa.String(32), nullable=False),
        sa.Column("referred_email", sa.String(255), nullable=True),
        sa.Column("is_converted", sa.Boolean(), nullable=False),
        sa.Column("tokens_awarded", sa.Integer(), nullable=False),
        sa.Column("converted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("referred_id", name="uq_referrals_referred_id"),
    )
    op.create_index("ix_referrals_referrer_id", "referrals", ["referrer_id"])

    op.create_table(
        "affiliate_sales",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("affiliate_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "subscription_id", sa.Uuid(), sa.ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("subscription_id", name="uq_affiliate_sales_subscription_id"),
    )
    op.create_index("ix_affiliate_sales_affiliate_id", "affiliate_sales", ["affiliate_id"])
    op.create_index("ix_affiliate_sales_customer_id", "affiliate_sales", ["customer_id"])


def downgrade() -> None:
    op.drop_table("affiliate_sales")
    op.drop_table("referrals")
