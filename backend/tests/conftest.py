"""Shared test configuration and fixtures.

Uses a transactional rollback strategy per test for full isolation:
- Each test gets its own outer transaction that rolls back after the test.
- Services that open savepoints (renewals, the monthly grant, the scheduler
  tick) run inside that transaction.
- Defaults to in-memory SQLite via aiosqlite; set TEST_DATABASE_URL to run
  against PostgreSQL instead.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import timedelta
from decimal import Decimal

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

import decyphers.models  # noqa: F401  (registers every table on Base.metadata)
from decyphers.auth.jwt import create_token_pair
from decyphers.auth.passwords import hash_password
from decyphers.database import Base, get_db, utcnow
from decyphers.main import app
from decyphers.models.plan import Plan
from decyphers.models.subscription import Subscription
from decyphers.models.user import User

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")


def _make_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine
    return create_async_engine(TEST_DATABASE_URL, pool_pre_ping=True)


# ---------------------------------------------------------------------------
# Per-test: fresh schema and transactional rollback for isolation
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back."""
    async with test_engine.connect() as connection:
        transaction = await connection.begin()
        session = AsyncSession(
            bind=connection,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )

        try:
            yield session
        finally:
            await session.close()
            await transaction.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers shared by test modules
# ---------------------------------------------------------------------------


async def create_user(
    db_session: AsyncSession,
    *,
    role: str = "user",
    telegram_id: int | None = None,
    whatsapp_verified: bool = False,
    phone_number: str | None = None,
    name: str = "Test User",
    **balances: int,
) -> User:
    """Insert a user directly; ``balances`` sets any of the four token fields."""
    unique = uuid.uuid4().hex[:8]
    user = User(
        email=f"user-{unique}@test.com",
        hashed_password=hash_password("testpass123"),
        name=name,
        is_active=True,
        role=role,
        telegram_id=telegram_id,
        whatsapp_verified=whatsapp_verified,
        phone_number=phone_number,
        **balances,
    )
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


async def create_plan(
    db_session: AsyncSession,
    name: str,
    price: str,
    tokens_per_cycle: int = 0,
    interval: str = "monthly",
    stripe_price_id: str | None = None,
) -> Plan:
    plan = Plan(
        name=name,
        price=Decimal(price),
        interval=interval,
        tokens_per_cycle=tokens_per_cycle,
        stripe_price_id=stripe_price_id or f"price_{name.lower()}",
        is_active=True,
    )
    db_session.add(plan)
    await db_session.flush()
    await db_session.refresh(plan)
    return plan


async def create_subscription_row(
    db_session: AsyncSession,
    user: User,
    plan: Plan,
    status: str = "active",
    stripe_subscription_id: str | None = None,
    days_until_billing: int = 15,
) -> Subscription:
    subscription = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        status=status,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id="cus_test",
        next_billing_date=utcnow() + timedelta(days=days_until_billing),
        metadata_={},
    )
    db_session.add(subscription)
    await db_session.flush()
    await db_session.refresh(subscription)
    return subscription


def headers_for(user: User) -> dict[str, str]:
    tokens = create_token_pair(str(user.id), user.role)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


# ---------------------------------------------------------------------------
# Convenience fixtures: users, plans, auth headers
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """A standard (web signup) user with no tokens."""
    return await create_user(db_session)


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    """Return Authorization headers for the test user."""
    return headers_for(test_user)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, role="admin")


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict[str, str]:
    return headers_for(admin_user)


@pytest_asyncio.fixture
async def telegram_user(db_session: AsyncSession) -> User:
    """A Telegram-acquired user who has spent part of the starting allotment."""
    return await create_user(db_session, telegram_id=555000111, registration_token=1500)


@pytest_asyncio.fixture
async def telegram_headers(telegram_user: User) -> dict[str, str]:
    return headers_for(telegram_user)


@pytest_asyncio.fixture
async def basic_plan(db_session: AsyncSession) -> Plan:
    return await create_plan(db_session, "Basic", "10.00", tokens_per_cycle=50000)


@pytest_asyncio.fixture
async def pro_plan(db_session: AsyncSession) -> Plan:
    return await create_plan(db_session, "Pro", "30.00", tokens_per_cycle=200000)
