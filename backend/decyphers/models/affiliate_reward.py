"""AffiliateReward model: a reward earned by reaching a sales milestone."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

REWARD_STATUSES: tuple[str, ...] = ("pending", "awarded", "fulfilled", "cancelled")


class AffiliateReward(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "affiliate_rewards"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    milestone_tier_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("sales_milestone_tiers.id"), nullable=True, index=True
    )
    reward_type: Mapped[str] = mapped_column(String(50), nullable=False)  # cash, subscription, badge, plaque
    value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("plans.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<AffiliateReward(user_id={self.user_id}, type={self.reward_type}, status={self.status})>"
