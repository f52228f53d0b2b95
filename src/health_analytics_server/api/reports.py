"""Health report API endpoints."""

from datetime import date
from typing import Annotated, Any

from litestar import Router, delete, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED, HTTP_204_NO_CONTENT
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.core.config import Settings
from health_analytics_server.schemas import HealthReportOut, ReportRequest
from health_analytics_server.services.reports import ReportGenerator


@post("/users/{user_id:str}/reports", status_code=HTTP_201_CREATED)
async def generate_health_report(
    user_id: str,
    data: ReportRequest,
    session: AsyncSession,
    settings: Settings,
) -> dict[str, Any]:
    """Generate a report snapshot for a period.

    Reports are deterministic and immutable. Asking again for the same
    (type, period_start, period_end) returns the stored snapshot.
    """
    validate_user_id(user_id)
    generator = ReportGenerator(session, settings=settings)
    report = await generator.generate_health_report(
        user_id, data.report_type, data.period_start, data.period_end
    )
    return HealthReportOut.model_validate(report).model_dump(mode="json")


@get("/users/{user_id:str}/reports", status_code=HTTP_200_OK)
async def get_health_reports(
    user_id: str,
    session: AsyncSession,
    report_types: Annotated[list[str] | None, Parameter(query="report_type")] = None,
    start_date: Annotated[date | None, Parameter(query="start_date")] = None,
    end_date: Annotated[date | None, Parameter(query="end_date")] = None,
) -> dict[str, Any]:
    """List a user's reports, newest period first."""
    validate_user_id(user_id)
    generator = ReportGenerator(session)
    reports = await generator.get_health_reports(
        user_id, report_types=report_types, start=start_date, end=end_date
    )
    return {
        "user_id": user_id,
        "count": len(reports),
        "reports": [HealthReportOut.model_validate(r).model_dump(mode="json") for r in reports],
    }


@get("/users/{user_id:str}/reports/{report_id:str}", status_code=HTTP_200_OK)
async def get_health_report_by_id(
    user_id: str,
    report_id: str,
    session: AsyncSession,
) -> dict[str, Any]:
    """Get one report. Reports of other users are reported as not found."""
    validate_user_id(user_id)
    generator = ReportGenerator(session)
    report = await generator.get_health_report_by_id(report_id, user_id)
    return HealthReportOut.model_validate(report).model_dump(mode="json")


@delete("/users/{user_id:str}/reports/{report_id:str}", status_code=HTTP_204_NO_CONTENT)
async def delete_health_report(
    user_id: str,
    report_id: str,
    session: AsyncSession,
) -> None:
    """Delete one report."""
    validate_user_id(user_id)
    generator = ReportGenerator(session)
    await generator.delete_health_report(report_id, user_id)


reports_router = Router(
    path="/",
    route_handlers=[
        generate_health_report,
        get_health_reports,
        get_health_report_by_id,
        delete_health_report,
    ],
    guards=[api_key_guard],
    tags=["Reports"],
)
