"""SalesMilestoneTier model: affiliate rewards unlocked at a sales count."""

from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SalesMilestoneTier(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "sales_milestone_tiers"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    required_sales: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    badge: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subscription_reward: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subscription_months: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cash_bonus: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    has_physical_plaque: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    perks: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<SalesMilestoneTier(name={self.name}, required_sales={self.required_sales})>"
