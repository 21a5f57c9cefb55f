"""Schemas for SMTP configuration management. Passwords are write-only."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Encryption = Literal["tls", "ssl", "none"]


class SmtpConfigurationCreate(BaseModel):
    name: str = Field("Default System SMTP", min_length=1, max_length=100)
    host: str = Field(..., min_length=1, max_length=255)
    port: int = Field(587, ge=1, le=65535)
    username: str | None = Field(None, max_length=255)
    password: str | None = Field(None, max_length=255)
    encryption: Encryption | None = None
    from_address: EmailStr
    from_name: str | None = Field(None, max_length=255)
    is_default: bool = False


class SmtpConfigurationUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    host: str | None = Field(None, min_length=1, max_length=255)
    port: int | None = Field(None, ge=1, le=65535)
    username: str | None = Field(None, max_length=255)
    password: str | None = Field(None, max_length=255)
    encryption: Encryption | None = None
    from_address: EmailStr | None = None
    from_name: str | None = Field(None, max_length=255)
    is_default: bool | None = None


class SmtpConfigurationResponse(BaseModel):
    id: uuid.UUID
    name: str
    host: str
    port: int
    username: str | None = None
    encryption: str | None = None
    from_address: str
    from_name: str | None = None
    is_default: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
