"""Health check endpoint."""

from typing import Any

from litestar import Router, get
from litestar.datastructures import State
from litestar.status_codes import HTTP_200_OK

from health_analytics_server import __version__


@get("/health", status_code=HTTP_200_OK, sync_to_thread=False)
def health_check(state: State) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Status, version and scheduler information
    """
    scheduler = getattr(state, "scheduler", None)
    monitoring = getattr(state, "monitoring", None)
    return {
        "status": "ok",
        "version": __version__,
        "monitoring_sessions": len(monitoring.registry) if monitoring else 0,
        "scheduler": scheduler.get_status() if scheduler else None,
    }


health_router = Router(path="/", route_handlers=[health_check])
