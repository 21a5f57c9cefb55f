"""Billing-cycle math, proration, and the token packages sold through Checkout."""

import calendar
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from decyphers.config import settings

MONTHLY = "monthly"
YEARLY = "yearly"

CYCLE_DAYS: dict[str, int] = {MONTHLY: 30, YEARLY: 365}

_CENTS = Decimal("0.01")


def is_yearly(interval: str | None) -> bool:
    return (interval or MONTHLY).lower() in (YEARLY, "year", "annual", "annually")


def cycle_length_days(interval: str | None) -> int:
    """Nominal length of a billing cycle used for proration (30 or 365 days)."""
    return CYCLE_DAYS[YEARLY] if is_yearly(interval) else CYCLE_DAYS[MONTHLY]


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by calendar months, clamping to the last day of the month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance_billing_date(value: datetime, interval: str | None) -> datetime:
    """Next billing date one cycle after ``value``."""
    return add_months(value, 12 if is_yearly(interval) else 1)


@dataclass(frozen=True)
class Proration:
    """Credit for the unused part of the current cycle when upgrading."""

    remaining_days: int
    total_days: int
    remaining_value: Decimal
    amount_due: Decimal


def remaining_days(next_billing_date: datetime | None, now: datetime) -> int:
    """Whole days from ``now`` until the next billing date, never negative."""
    if next_billing_date is None:
        return 0
    return max((next_billing_date - now).days, 0)


def calculate_proration(
    old_price: Decimal,
    new_price: Decimal,
    interval: str | None,
    next_billing_date: datetime | None,
    now: datetime,
) -> Proration:
    """Prorate an upgrade.

    ``remaining_value = old_price * remaining_days / total_days`` is credited
    against the new price; ``amount_due`` is the difference floored at zero.
    """
    total = cycle_length_days(interval)
    days = min(remaining_days(next_billing_date, now), total)
    credit = (Decimal(old_price) * days / total).quantize(_CENTS, rounding=ROUND_HALF_UP)
    due = max(Decimal(new_price) - credit, Decimal("0")).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return Proration(remaining_days=days, total_days=total, remaining_value=credit, amount_due=due)


@dataclass(frozen=True)
class TokenPackage:
    """One-off token bundle credited to ``addons_token`` after payment."""

    id: str
    name: str
    tokens: int
    price: Decimal
    description: str
    stripe_price_id: str | None


TOKEN_PACKAGES: dict[str, TokenPackage] = {
    "micro": TokenPackage(
        id="micro",
        name="Micro Package",
        tokens=15000,
        price=Decimal("5.00"),
        description="A small top-up to finish an analysis",
        stripe_price_id=settings.stripe_price_micro_tokens or None,
    ),
    "starter": TokenPackage(
        id="starter",
        name="Starter Package",
        tokens=35000,
        price=Decimal("10.00"),
        description="Great for casual users and basic analysis",
        stripe_price_id=settings.stripe_price_starter_tokens or None,
    ),
    "standard": TokenPackage(
        id="standard",
        name="Standard Package",
        tokens=175000,
        price=Decimal("50.00"),
        description="Our most popular package for regular users",
        stripe_price_id=settings.stripe_price_standard_tokens or None,
    ),
    "premium": TokenPackage(
        id="premium",
        name="Premium Package",
        tokens=350000,
        price=Decimal("100.00"),
        description="Best value for power users and teams",
        stripe_price_id=settings.stripe_price_premium_tokens or None,
    ),
}


def get_token_package(package_id: str) -> TokenPackage | None:
    return TOKEN_PACKAGES.get(package_id)
