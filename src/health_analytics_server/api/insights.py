"""Health insight and dashboard API endpoints."""

from typing import Annotated, Any

from litestar import Router, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.schemas import HealthInsightOut
from health_analytics_server.services.dashboard import DEFAULT_RANGE, DashboardService
from health_analytics_server.services.insights import InsightService


def _dump(insight: Any) -> dict[str, Any]:
    return HealthInsightOut.model_validate(insight).model_dump(mode="json")


@post("/users/{user_id:str}/insights/generate", status_code=HTTP_201_CREATED)
async def generate_insights(user_id: str, session: AsyncSession) -> dict[str, Any]:
    """Derive new insights from stored scores, predictions, patterns and goals.

    Returns only the insights created by this call; sources that already
    produced an insight are skipped.
    """
    validate_user_id(user_id)
    created = await InsightService(session).generate_insights(user_id)
    return {
        "user_id": user_id,
        "created": len(created),
        "insights": [_dump(i) for i in created],
    }


@get("/users/{user_id:str}/insights", status_code=HTTP_200_OK)
async def get_insights(
    user_id: str,
    session: AsyncSession,
    insight_types: Annotated[list[str] | None, Parameter(query="insight_type")] = None,
    categories: Annotated[list[str] | None, Parameter(query="category")] = None,
    priorities: Annotated[list[str] | None, Parameter(query="priority")] = None,
    is_read: Annotated[bool | None, Parameter(query="is_read")] = None,
    is_bookmarked: Annotated[bool | None, Parameter(query="is_bookmarked")] = None,
    include_expired: Annotated[bool, Parameter(query="include_expired", default=False)] = False,
    limit: Annotated[int, Parameter(query="limit", default=50, ge=1, le=500)] = 50,
) -> dict[str, Any]:
    """List insights, newest first.

    Args:
        insight_types: Repeatable filter (score, prediction, pattern, goal)
        categories: Repeatable filter (positive, negative, neutral)
        priorities: Repeatable filter (low, medium, high)
        include_expired: Also return insights whose prediction has passed
    """
    validate_user_id(user_id)
    insights = await InsightService(session).get_insights(
        user_id,
        insight_types=insight_types,
        categories=categories,
        priorities=priorities,
        is_read=is_read,
        is_bookmarked=is_bookmarked,
        include_expired=include_expired,
        limit=limit,
    )
    return {"user_id": user_id, "count": len(insights), "insights": [_dump(i) for i in insights]}


@post("/users/{user_id:str}/insights/{insight_id:str}/read", status_code=HTTP_200_OK)
async def mark_insight_read(user_id: str, insight_id: str, session: AsyncSession) -> dict[str, Any]:
    """Mark an insight read."""
    validate_user_id(user_id)
    return _dump(await InsightService(session).mark_insight_read(insight_id, user_id))


@post("/users/{user_id:str}/insights/{insight_id:str}/bookmark", status_code=HTTP_200_OK)
async def toggle_insight_bookmark(
    user_id: str, insight_id: str, session: AsyncSession
) -> dict[str, Any]:
    """Bookmark an insight, or remove the bookmark if it has one."""
    validate_user_id(user_id)
    return _dump(await InsightService(session).toggle_insight_bookmark(insight_id, user_id))


@get("/users/{user_id:str}/dashboard", status_code=HTTP_200_OK)
async def get_dashboard_overview(
    user_id: str,
    session: AsyncSession,
    date_range: Annotated[str, Parameter(query="range", default=DEFAULT_RANGE)] = DEFAULT_RANGE,
) -> dict[str, Any]:
    """Latest scores, active goals, unread insights and active predictions.

    Example:
        GET /api/v1/users/12345/dashboard?range=7d
    """
    validate_user_id(user_id)
    return await DashboardService(session).get_dashboard_overview(user_id, date_range)


insights_router = Router(
    path="/",
    route_handlers=[
        generate_insights,
        get_insights,
        mark_insight_read,
        toggle_insight_bookmark,
        get_dashboard_overview,
    ],
    guards=[api_key_guard],
    tags=["Insights"],
)
