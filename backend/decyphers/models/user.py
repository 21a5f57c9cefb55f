"""User model: authentication, acquisition channel, and token balances."""

from sqlalchemy import BigInteger, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from decyphers.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

TOKEN_FIELDS: tuple[str, ...] = (
    "registration_token",
    "free_token",
    "subscription_token",
    "addons_token",
)


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Account holder. Tokens are held in four separate balances."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="user", nullable=False)  # user, admin, super_admin

    # Acquisition channel
    telegram_id: Mapped[int | None] = mapped_column(BigInteger, unique=True, nullable=True)
    telegram_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    whatsapp_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    firebase_uid: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)

    # Token balances
    registration_token: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    free_token: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    subscription_token: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    addons_token: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Referral / affiliate
    referral_code: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    referral_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sales_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    free_plan_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "super_admin")

    @property
    def is_channel_user(self) -> bool:
        """Acquired through the Telegram bot or WhatsApp rather than standard signup."""
        return self.telegram_id is not None or bool(self.whatsapp_verified)

    @property
    def total_tokens(self) -> int:
        return sum(getattr(self, field) or 0 for field in TOKEN_FIELDS)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
