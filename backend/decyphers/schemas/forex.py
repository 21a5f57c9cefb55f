"""Schemas for imported forex calendar items."""

import uuid

from pydantic import BaseModel, ConfigDict


class ForexNewsResponse(BaseModel):
    id: uuid.UUID
    title: str
    country: str | None = None
    impact: str | None = None
    forecast: str | None = None
    previous: str | None = None
    date: str | None = None

    model_config = ConfigDict(from_attributes=True)
