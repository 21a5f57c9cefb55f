"""AnalysisHistory model: one generated chart-analysis report."""

import uuid
from typing import Any

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AnalysisHistory(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "analysis_history"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    schedule_task_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("schedule_tasks.id", ondelete="SET NULL"), nullable=True
    )
    symbol: Mapped[str] = mapped_column(String(50), nullable=False)
    intervals: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    image_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    analysis: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    extra: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
