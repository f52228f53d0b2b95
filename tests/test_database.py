"""Tests for database engine management."""

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from health_analytics_server.app import create_app
from health_analytics_server.core import database
from health_analytics_server.core.config import Settings


@pytest.fixture
def fresh_database_module(monkeypatch: pytest.MonkeyPatch):
    """Process-wide engine reset and pointed at an in-memory database."""
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_session_maker", None)
    monkeypatch.setattr(database.settings, "database_url", "sqlite+aiosqlite:///:memory:")
    return database


class TestProcessEngine:
    """Tests for the lazily created process-wide engine."""

    def test_app_with_engine_leaves_process_engine_alone(
        self, fresh_database_module, test_settings: Settings, async_engine: AsyncEngine
    ) -> None:
        """Building the app with its own engine never creates the module engine."""
        create_app(settings=test_settings, engine=async_engine)

        assert fresh_database_module._engine is None

    async def test_engine_created_once_on_first_use(self, fresh_database_module) -> None:
        """get_engine() builds one engine and keeps returning it."""
        first = fresh_database_module.get_engine()
        try:
            assert fresh_database_module.get_engine() is first
            assert fresh_database_module.get_session_maker().kw["bind"] is first
        finally:
            await fresh_database_module.close_database()

    async def test_get_session_and_close(self, fresh_database_module) -> None:
        """Sessions run on the process engine; closing drops it."""
        async with fresh_database_module.get_session() as session:
            result = await session.execute(text("SELECT 1"))
            assert result.scalar() == 1

        assert fresh_database_module._engine is not None
        await fresh_database_module.close_database()
        assert fresh_database_module._engine is None
        assert fresh_database_module._session_maker is None

    async def test_close_without_engine_is_noop(self, fresh_database_module) -> None:
        """Closing before first use creates nothing."""
        await fresh_database_module.close_database()
        assert fresh_database_module._engine is None
