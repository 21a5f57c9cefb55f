"""ForexNews model: economic calendar entries imported from the weekly feed."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ForexNews(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "forex_news"

    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    country: Mapped[str | None] = mapped_column(String(10), nullable=True)
    impact: Mapped[str | None] = mapped_column(String(20), nullable=True)
    forecast: Mapped[str | None] = mapped_column(String(50), nullable=True)
    previous: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Kept as the feed's ISO-8601 string with offset
    date: Mapped[str | None] = mapped_column(String(40), nullable=True)
