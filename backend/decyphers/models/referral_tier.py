"""ReferralTier model: reward bands keyed on a user's referral count."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ReferralTier(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Closed range ``[min_referrals, max_referrals]``; a null max is unbounded.

    Ranges must not overlap. This is checked when tiers are written, not by a
    database constraint.
    """

    __tablename__ = "referral_tiers"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    min_referrals: Mapped[int] = mapped_column(Integer, nullable=False)
    max_referrals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    referrer_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    referee_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    badge: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subscription_reward: Mapped[str | None] = mapped_column(String(50), nullable=True)  # basic, pro, enterprise
    subscription_months: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<ReferralTier(name={self.name}, range=[{self.min_referrals}, {self.max_referrals}])>"
