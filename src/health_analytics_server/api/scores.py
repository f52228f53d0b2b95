"""Health score API endpoints."""

from datetime import UTC, date, datetime
from typing import Annotated, Any

from litestar import Router, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.core.config import Settings
from health_analytics_server.core.locks import KeyedLockRegistry
from health_analytics_server.schemas import HealthScoreOut, ScoreCalculationRequest
from health_analytics_server.services.scoring import ScoreEngine


@post("/users/{user_id:str}/scores/calculate", status_code=HTTP_200_OK)
async def calculate_health_scores(
    user_id: str,
    data: ScoreCalculationRequest,
    session: AsyncSession,
    locks: KeyedLockRegistry,
    settings: Settings,
) -> dict[str, Any]:
    """Calculate and store health scores for one day.

    Component scores (nutrition, fitness, recovery, consistency) are computed
    from the day's logs; overall is their weighted blend. Recalculating the
    same day overwrites that day's rows.

    Example:
        POST /api/v1/users/12345/scores/calculate
        {"day": "2026-01-15", "include_recovery": false}
    """
    validate_user_id(user_id)
    engine = ScoreEngine(session, locks=locks, settings=settings)
    result = await engine.calculate_health_scores(
        user_id,
        data.day or datetime.now(UTC).date(),
        include_nutrition=data.include_nutrition,
        include_fitness=data.include_fitness,
        include_recovery=data.include_recovery,
        include_consistency=data.include_consistency,
    )
    return result.to_dict()


@get("/users/{user_id:str}/scores", status_code=HTTP_200_OK)
async def get_health_scores(
    user_id: str,
    session: AsyncSession,
    score_types: Annotated[list[str] | None, Parameter(query="score_type")] = None,
    start_date: Annotated[date | None, Parameter(query="start_date")] = None,
    end_date: Annotated[date | None, Parameter(query="end_date")] = None,
    limit: Annotated[int, Parameter(query="limit", default=50, ge=1, le=500)] = 50,
) -> dict[str, Any]:
    """Get stored health scores, newest day first.

    Args:
        user_id: User identifier
        session: Database session (injected)
        score_types: Repeatable filter (nutrition, fitness, recovery, consistency, overall)
        start_date: Inclusive lower bound on calculation date
        end_date: Inclusive upper bound on calculation date
        limit: Maximum rows (default: 50, max: 500)
    """
    validate_user_id(user_id)
    engine = ScoreEngine(session)
    scores = await engine.get_health_scores(
        user_id, score_types=score_types, start=start_date, end=end_date, limit=limit
    )
    return {
        "user_id": user_id,
        "count": len(scores),
        "scores": [HealthScoreOut.model_validate(s).model_dump(mode="json") for s in scores],
    }


scores_router = Router(
    path="/",
    route_handlers=[calculate_health_scores, get_health_scores],
    guards=[api_key_guard],
    tags=["Scores"],
)
