"""Litestar application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from advanced_alchemy.config.asyncio import AsyncSessionConfig
from litestar import Litestar
from litestar.contrib.sqlalchemy.plugins import SQLAlchemyAsyncConfig, SQLAlchemyPlugin
from litestar.datastructures import State
from litestar.di import Provide
from litestar.openapi import OpenAPIConfig
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from health_analytics_server import __version__
from health_analytics_server.api import api_routers
from health_analytics_server.api.dependencies import (
    provide_locks,
    provide_monitoring,
    provide_settings,
)
from health_analytics_server.core.config import Settings, settings as default_settings
from health_analytics_server.core.database import close_database, create_engine, init_database
from health_analytics_server.core.exceptions import exception_handlers
from health_analytics_server.core.locks import KeyedLockRegistry
from health_analytics_server.monitoring.service import MonitoringService
from health_analytics_server.services.scheduler import MonitoringScheduler

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def create_app(settings: Settings | None = None, engine: AsyncEngine | None = None) -> Litestar:
    """Create Litestar application.

    Args:
        settings: Settings override (defaults to the environment)
        engine: Engine override; an engine passed in is not disposed on shutdown

    Returns:
        Configured Litestar app instance
    """
    settings = settings or default_settings
    owns_engine = engine is None
    db_engine = engine or create_engine(settings.database_url)
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    monitoring = MonitoringService.from_settings(settings)
    scheduler = MonitoringScheduler(session_factory, monitoring, settings)

    @asynccontextmanager
    async def lifespan(app: Litestar) -> AsyncIterator[None]:
        """Application lifespan manager.

        Handles startup and shutdown tasks:
        - Check database migrations on startup
        - Start monitoring ticks and retention cleanup
        - Stop scheduler and close database connections on shutdown
        """
        logger.info(
            "Starting health-analytics-server",
            version=__version__,
            scheduler_enabled=settings.scheduler_enabled,
            cleanup_interval=settings.cleanup_interval_minutes,
        )

        await init_database(db_engine)
        logger.info("Database initialized")

        await scheduler.start()

        yield

        await scheduler.stop()

        if owns_engine:
            await close_database(db_engine)
        logger.info("Shutdown complete")

    return Litestar(
        route_handlers=api_routers,
        lifespan=[lifespan],
        openapi_config=OpenAPIConfig(
            title="health-analytics-server API",
            version=__version__,
            description="Health scoring, predictions, pattern analysis and live monitoring",
        ),
        plugins=[
            SQLAlchemyPlugin(
                config=SQLAlchemyAsyncConfig(
                    engine_instance=db_engine,
                    session_dependency_key="session",
                    session_config=AsyncSessionConfig(expire_on_commit=False),
                ),
            ),
        ],
        dependencies={
            "settings": Provide(provide_settings, sync_to_thread=False),
            "locks": Provide(provide_locks, sync_to_thread=False),
            "monitoring": Provide(provide_monitoring, sync_to_thread=False),
        },
        state=State(
            {
                "settings": settings,
                "locks": KeyedLockRegistry(),
                "monitoring": monitoring,
                "scheduler": scheduler,
            }
        ),
        exception_handlers=exception_handlers,
        debug=settings.log_level == "DEBUG",
    )


# Application instance
app = create_app()
