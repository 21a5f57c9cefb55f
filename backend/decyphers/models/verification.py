"""Verification model: one-time codes used to link a Telegram chat to an account."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

TELEGRAM_APP = "telegram"
TELEGRAM_CONNECT = "telegram_connect"


class Verification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "verifications"

    uid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # Telegram chat id
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verification_code: Mapped[str] = mapped_column(String(6), nullable=False, index=True)
    app: Mapped[str] = mapped_column(String(50), nullable=False, default=TELEGRAM_APP)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default=TELEGRAM_CONNECT)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
