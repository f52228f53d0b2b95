"""Per-user dashboard overview."""

import re
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.models.goal import GoalStatus, HealthGoal
from health_analytics_server.models.prediction import Prediction
from health_analytics_server.models.score import HealthScore, ScoreType
from health_analytics_server.schemas import (
    HealthGoalOut,
    HealthInsightOut,
    HealthScoreOut,
    PredictionOut,
)
from health_analytics_server.services.insights import InsightService

logger = structlog.get_logger()

DEFAULT_RANGE = "30d"
MAX_RANGE_DAYS = 365
RECENT_SCORES = 5
RECENT_INSIGHTS = 3
RECENT_PREDICTIONS = 3

_RANGE_PATTERN = re.compile(r"^(\d+)d$")


def parse_date_range(date_range: str) -> int:
    """Days covered by a range such as '30d'.

    Raises:
        InvalidInputError: If the range isn't '<n>d' with n from 1 to 365
    """
    match = _RANGE_PATTERN.match(date_range)
    days = int(match.group(1)) if match else 0
    if not 1 <= days <= MAX_RANGE_DAYS:
        raise InvalidInputError(
            f"Invalid date range '{date_range}'",
            details={"expected": f"<days>d with days from 1 to {MAX_RANGE_DAYS}"},
        )
    return days


class DashboardService:
    """Aggregates the latest analytics for one user into a single view."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.insights = InsightService(session)
        self.logger = logger.bind(service="dashboard")

    async def get_dashboard_overview(
        self,
        user_id: str,
        date_range: str = DEFAULT_RANGE,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Build the dashboard.

        latest_scores are the newest scores calculated within the range;
        active_goals, recent_insights (unread) and latest_predictions
        (active) ignore the range. summary.overall_score is the newest
        overall score in the range, or 0 when there is none.
        """
        days = parse_date_range(date_range)
        now = now or datetime.now(UTC)
        start = (now - timedelta(days=days)).date()

        scores = await self._scalars(
            select(HealthScore)
            .where(HealthScore.user_id == user_id, HealthScore.calculation_date >= start)
            .order_by(HealthScore.calculation_date.desc(), HealthScore.created_at.desc())
            .limit(RECENT_SCORES)
        )
        goals = await self._scalars(
            select(HealthGoal)
            .where(HealthGoal.user_id == user_id, HealthGoal.status == GoalStatus.ACTIVE.value)
            .order_by(HealthGoal.target_date.asc())
        )
        insights = await self.insights.get_insights(
            user_id, is_read=False, limit=RECENT_INSIGHTS, now=now
        )
        predictions = await self._scalars(
            select(Prediction)
            .where(Prediction.user_id == user_id, Prediction.is_active.is_(True))
            .order_by(Prediction.created_at.desc())
            .limit(RECENT_PREDICTIONS)
        )

        active_predictions = await self._count(
            select(func.count())
            .select_from(Prediction)
            .where(Prediction.user_id == user_id, Prediction.is_active.is_(True))
        )
        overall = await self._scalars(
            select(HealthScore)
            .where(
                HealthScore.user_id == user_id,
                HealthScore.score_type == ScoreType.OVERALL.value,
                HealthScore.calculation_date >= start,
            )
            .order_by(HealthScore.calculation_date.desc())
            .limit(1)
        )

        self.logger.debug("Dashboard built", user_id=user_id, range=date_range)
        return {
            "user_id": user_id,
            "period": {
                "range": date_range,
                "start": start.isoformat(),
                "end": now.date().isoformat(),
            },
            "latest_scores": [
                HealthScoreOut.model_validate(s).model_dump(mode="json") for s in scores
            ],
            "active_goals": [
                HealthGoalOut.model_validate(g).model_dump(mode="json") for g in goals
            ],
            "recent_insights": [
                HealthInsightOut.model_validate(i).model_dump(mode="json") for i in insights
            ],
            "latest_predictions": [
                PredictionOut.model_validate(p).model_dump(mode="json") for p in predictions
            ],
            "summary": {
                "total_goals": len(goals),
                "unread_insights": await self.insights.count_unread(user_id),
                "active_predictions": active_predictions,
                "overall_score": overall[0].value if overall else 0,
            },
        }

    async def _scalars(self, stmt: Any) -> list[Any]:
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _count(self, stmt: Any) -> int:
        result = await self.session.execute(stmt)
        return int(result.scalar_one())
