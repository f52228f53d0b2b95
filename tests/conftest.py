"""Shared test fixtures."""

from collections.abc import AsyncIterator
from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from health_analytics_server.core.config import Settings
from health_analytics_server.models.base import Base

TEST_USER_ID = "user_001"


@pytest.fixture
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory) -> AsyncIterator[AsyncSession]:
    """Create async session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests: open API, no background jobs."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        api_key=None,
        scheduler_enabled=False,
        monitoring_ring_capacity=5,
        monitoring_max_sessions=3,
    )


@pytest.fixture
def today() -> date:
    """Current UTC date."""
    return datetime.now(UTC).date()


# =============================================================================
# Health Test Data Fixtures
# =============================================================================


@pytest.fixture
async def health_user_30d(async_session: AsyncSession, today: date):
    """User with 30 days of meals, workouts, sleep and metrics ending today."""
    from tests.fixtures.health_seed import seed_health_data

    counts = await seed_health_data(
        session=async_session,
        user_id=TEST_USER_ID,
        end=today,
        days=30,
    )
    return TEST_USER_ID, counts


@pytest.fixture
async def health_user_rising_weight(async_session: AsyncSession):
    """User whose weight rises by 0.2 kg per day over the last 10 days."""
    from tests.fixtures.health_seed import seed_weight_series

    now = datetime.now(UTC)
    await seed_weight_series(
        session=async_session,
        user_id=TEST_USER_ID,
        start=now - timedelta(days=9),
        values=[80.0 + 0.2 * i for i in range(10)],
    )
    return TEST_USER_ID
