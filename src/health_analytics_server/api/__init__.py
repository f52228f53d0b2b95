"""API routes."""

from litestar import Router

from health_analytics_server.api.data import data_router
from health_analytics_server.api.export import export_router
from health_analytics_server.api.goals import goals_router
from health_analytics_server.api.health import health_router
from health_analytics_server.api.insights import insights_router
from health_analytics_server.api.monitoring import monitoring_router
from health_analytics_server.api.patterns import patterns_router
from health_analytics_server.api.predictions import predictions_router
from health_analytics_server.api.reports import reports_router
from health_analytics_server.api.scores import scores_router

# Versioned API routers (user data endpoints)
# These get the /api/v1 prefix
_v1_routers = [
    data_router,  # Metric samples and day logs
    scores_router,
    predictions_router,
    patterns_router,
    reports_router,
    goals_router,
    insights_router,  # Insights and the dashboard overview
    monitoring_router,  # Live sessions, alerts and dashboard
    export_router,  # JSON/CSV/PDF export
]

api_v1_router = Router(path="/api/v1", route_handlers=_v1_routers)

# - health_router: /health - no auth needed, no version prefix
# - api_v1_router: /api/v1/* - all user data endpoints
api_routers = [health_router, api_v1_router]

__all__ = ["api_routers"]
