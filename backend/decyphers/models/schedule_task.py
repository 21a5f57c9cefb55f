"""ScheduleTask model: a user's recurring chart-analysis job."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, ForeignKey, String, false
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

SCHEDULE_ANALYSIS = "schedule-analysis"


class ScheduleTask(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A cron-driven task.

    ``parameter`` holds the chart request replayed on each run (symbol,
    intervals, studies, drawings, ...). ``execute_at`` is the next time the
    dispatcher should pick the task up.
    """

    __tablename__ = "schedule_tasks"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    command: Mapped[str] = mapped_column(String(100), nullable=False, default=SCHEDULE_ANALYSIS)
    cron_expression: Mapped[str] = mapped_column(String(100), nullable=False)
    parameter: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    execute_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    executed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    def __repr__(self) -> str:
        return f"<ScheduleTask(id={self.id}, command={self.command}, execute_at={self.execute_at})>"
