"""CLI entry point for health-analytics-server."""

import asyncio
from datetime import UTC, datetime, timedelta

import typer
import uvicorn

from health_analytics_server import __version__
from health_analytics_server.core.config import settings
from health_analytics_server.core.database import close_database, get_session
from health_analytics_server.services.metric_store import MetricStore

app = typer.Typer(
    name="health-analytics-server",
    help="Health scoring, prediction and real-time monitoring server",
    no_args_is_help=True,
)


@app.command()
def serve(
    host: str = typer.Option(None, help="Host to bind to (overrides config)"),
    port: int = typer.Option(None, help="Port to bind to (overrides config)"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the API server.

    Example:
        health-analytics-server serve
        health-analytics-server serve --host 0.0.0.0 --port 8080 --reload
    """
    uvicorn.run(
        "health_analytics_server.app:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"health-analytics-server v{__version__}")


@app.command()
def cleanup(
    days: int = typer.Option(
        None, help="Delete stored metrics older than this many days (overrides config)"
    ),
) -> None:
    """Apply metric retention once, outside the scheduler.

    Example:
        health-analytics-server cleanup --days 180
    """
    retention_days = days or settings.metric_retention_days
    cutoff = datetime.now(UTC) - timedelta(days=retention_days)

    async def _run() -> dict[str, int]:
        try:
            async with get_session() as session:
                return await MetricStore(session).cleanup_retention(cutoff)
        finally:
            await close_database()

    deleted = asyncio.run(_run())
    for table, count in deleted.items():
        typer.echo(f"{table}: {count} rows deleted")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
