"""Pattern analysis API endpoints."""

from datetime import date
from typing import Annotated, Any

from litestar import Router, get, post
from litestar.exceptions import ValidationException
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.schemas import PatternAnalysisOut, PatternAnalysisRequest
from health_analytics_server.services.pattern import PatternAnalyzer


@post("/users/{user_id:str}/patterns/analyze", status_code=HTTP_200_OK)
async def analyze_patterns(
    user_id: str,
    data: PatternAnalysisRequest,
    session: AsyncSession,
) -> dict[str, Any]:
    """Run a pattern analysis over a window and store it.

    The window defaults from the period (daily: 7 days, weekly: 30,
    monthly: 90) ending today. Analyses are immutable: repeating the same
    (pattern, period, start, end) returns the stored result.
    """
    validate_user_id(user_id)
    analyzer = PatternAnalyzer(session)
    analysis = await analyzer.analyze_patterns(
        user_id,
        data.pattern_type,
        data.analysis_period,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    return PatternAnalysisOut.model_validate(analysis).model_dump(mode="json")


@get("/users/{user_id:str}/patterns", status_code=HTTP_200_OK)
async def get_pattern_analysis(
    user_id: str,
    session: AsyncSession,
    pattern_types: Annotated[list[str] | None, Parameter(query="pattern_type")] = None,
    analysis_period: Annotated[str | None, Parameter(query="analysis_period")] = None,
    start_date: Annotated[date | None, Parameter(query="start_date")] = None,
    end_date: Annotated[date | None, Parameter(query="end_date")] = None,
) -> dict[str, Any]:
    """Get stored pattern analyses, newest window first."""
    validate_user_id(user_id)
    analyzer = PatternAnalyzer(session)
    analyses = await analyzer.get_pattern_analysis(
        user_id,
        pattern_types=pattern_types,
        analysis_period=analysis_period,
        start_date=start_date,
        end_date=end_date,
    )
    return {
        "user_id": user_id,
        "count": len(analyses),
        "analyses": [
            PatternAnalysisOut.model_validate(a).model_dump(mode="json") for a in analyses
        ],
    }


@get("/users/{user_id:str}/patterns/correlations", status_code=HTTP_200_OK)
async def get_correlation_analysis(
    user_id: str,
    session: AsyncSession,
    pairs: Annotated[list[str], Parameter(query="pair")],
    days: Annotated[int, Parameter(query="days", default=30, ge=7, le=365)] = 30,
) -> dict[str, Any]:
    """Correlate metric pairs over the last N days (not stored).

    Each pair is given as "metric_a,metric_b", e.g.
    GET /api/v1/users/12345/patterns/correlations?pair=sleep_duration,steps
    """
    validate_user_id(user_id)
    metric_pairs = []
    for pair in pairs:
        parts = [p.strip() for p in pair.split(",")]
        if len(parts) != 2 or not all(parts):
            raise ValidationException(f"Invalid pair '{pair}': expected 'metric_a,metric_b'")
        metric_pairs.append((parts[0], parts[1]))

    analyzer = PatternAnalyzer(session)
    correlations = await analyzer.get_correlation_analysis(user_id, metric_pairs, days=days)
    return {"user_id": user_id, "days": days, "correlations": correlations}


@get("/users/{user_id:str}/patterns/trends", status_code=HTTP_200_OK)
async def get_trend_analysis(
    user_id: str,
    session: AsyncSession,
    metrics: Annotated[list[str], Parameter(query="metric")],
    days: Annotated[int, Parameter(query="days", default=30, ge=7, le=365)] = 30,
    aggregation: Annotated[str, Parameter(query="aggregation", default="daily")] = "daily",
) -> dict[str, Any]:
    """Bucketed averages and a trend label per metric over the last N days."""
    validate_user_id(user_id)
    analyzer = PatternAnalyzer(session)
    trends = await analyzer.get_trend_analysis(
        user_id, metrics, days=days, aggregation=aggregation
    )
    return {"user_id": user_id, "days": days, "aggregation": aggregation, "trends": trends}


patterns_router = Router(
    path="/",
    route_handlers=[
        analyze_patterns,
        get_pattern_analysis,
        get_correlation_analysis,
        get_trend_analysis,
    ],
    guards=[api_key_guard],
    tags=["Patterns"],
)
