"""Referral model: one user signing up with another user's referral code."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Referral(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Pending until the referred user's first paid subscription converts it."""

    __tablename__ = "referrals"

    referrer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # A user can only be referred once
    referred_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False)
    referred_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tokens_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    converted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Referral(referrer_id={self.referrer_id}, referred_id={self.referred_id})>"
