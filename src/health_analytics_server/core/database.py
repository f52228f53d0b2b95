"""Database initialization and session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from health_analytics_server.core.config import settings

logger = logging.getLogger(__name__)


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the database engine.

    Pool sizing only applies to server databases; SQLite URLs (used for
    local runs and tests) fall back to the driver's default pool.

    Args:
        database_url: Override for settings.database_url

    Returns:
        Async SQLAlchemy engine
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)

    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_recycle=300,  # Recycle connections every 5 minutes
    )


# Process-wide engine for code running outside the app (CLI commands).
# Created on first use so importing this module opens no pool.
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the session maker bound to the process-wide engine."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_maker


def _has_migrations(conn: Connection) -> bool:
    return inspect(conn).has_table("alembic_version")


async def init_database(db_engine: AsyncEngine | None = None) -> None:
    """Verify database is ready and migrations have been applied.

    Checks that the database is accessible and the alembic_version table exists,
    indicating migrations have been run. Does NOT create tables - use Alembic
    migrations for schema management.

    Args:
        db_engine: Engine to check (defaults to the process-wide engine)
    """
    db_engine = db_engine or get_engine()
    async with db_engine.connect() as conn:
        has_migrations = await conn.run_sync(_has_migrations)

        if not has_migrations:
            logger.warning(
                "Database migrations have not been applied. "
                "Run 'alembic upgrade head' to initialize the database schema."
            )
        else:
            result = await conn.execute(text("SELECT version_num FROM alembic_version"))
            version = result.scalar()
            logger.info(f"Database initialized with migration version: {version}")


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(select(HealthMetric))
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_database(db_engine: AsyncEngine | None = None) -> None:
    """Close a database connection pool.

    Without an argument the process-wide engine is disposed, if it was
    ever created, and the next get_engine() call builds a fresh one.
    """
    global _engine, _session_maker
    if db_engine is not None:
        await db_engine.dispose()
        return
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None
