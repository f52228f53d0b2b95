"""User data export endpoint.

User-scoped downloads of scores, predictions, reports and goals.
"""

from datetime import date
from typing import Annotated

from litestar import Router, get
from litestar.params import Parameter
from litestar.response import Response
from litestar.status_codes import HTTP_200_OK
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.services.export import ExportService


@get("/users/{user_id:str}/export", status_code=HTTP_200_OK)
async def export_user_data(
    user_id: str,
    session: AsyncSession,
    fmt: Annotated[str, Parameter(query="format", default="json")] = "json",
    export_type: Annotated[str, Parameter(query="type", default="all")] = "all",
    start_date: Annotated[date | None, Parameter(query="start_date")] = None,
    end_date: Annotated[date | None, Parameter(query="end_date")] = None,
) -> Response[bytes]:
    """Export a user's analytics data as JSON, CSV or PDF.

    Args:
        user_id: User identifier
        session: Database session (injected)
        fmt: json, csv or pdf (default: json)
        export_type: health_scores, predictions, reports, goals or all (default: all)
        start_date: Optional inclusive start date
        end_date: Optional inclusive end date

    Returns:
        File download

    Example:
        GET /api/v1/users/12345/export?format=csv&type=health_scores
    """
    validate_user_id(user_id)
    service = ExportService(session)
    result = await service.export_user_data(
        user_id, fmt, export_type=export_type, start=start_date, end=end_date
    )
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f"attachment; filename={result.filename}"},
    )


export_router = Router(
    path="/",
    route_handlers=[export_user_data],
    guards=[api_key_guard],
    tags=["Export"],
)
