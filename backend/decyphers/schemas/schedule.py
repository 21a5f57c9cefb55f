"""Schemas for scheduled analysis tasks."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ScheduleTaskCreate(BaseModel):
    """``parameter`` is the chart request replayed on every run.

    It needs at least ``symbol`` and ``intervals`` (or ``interval``); studies,
    drawings and display options are forwarded to the chart renderer.
    """

    cron_expression: str = Field(..., min_length=1, max_length=100)
    parameter: dict[str, Any]


class ScheduleTaskUpdate(BaseModel):
    cron_expression: str | None = Field(None, min_length=1, max_length=100)
    parameter: dict[str, Any] | None = None
    executed: bool | None = None


class ScheduleTaskResponse(BaseModel):
    id: uuid.UUID
    command: str
    cron_expression: str
    parameter: dict[str, Any]
    execute_at: datetime | None = None
    executed: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AnalysisHistoryResponse(BaseModel):
    id: uuid.UUID
    schedule_task_id: uuid.UUID | None = None
    symbol: str
    intervals: list[str]
    image_count: int
    analysis: str
    model: str | None = None
    tokens_used: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
