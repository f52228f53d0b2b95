"""Health insights derived from stored scores, predictions, patterns and goals."""

from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from health_analytics_server.models.goal import GoalStatus, HealthGoal
from health_analytics_server.models.insight import (
    HealthInsight,
    InsightCategory,
    InsightPriority,
    InsightType,
)
from health_analytics_server.models.pattern import PatternAnalysis
from health_analytics_server.models.prediction import Prediction, PredictionType
from health_analytics_server.models.score import HealthScore, ScoreTrend, ScoreType

logger = structlog.get_logger()

STRONG_SCORE = 80
WEAK_SCORE = 50
GOAL_NEARLY_DONE = 75.0
HIGH_RISK = 40.0
LOW_RISK = 20.0
LIKELY_GOALS = 70.0
UNLIKELY_GOALS = 30.0
NOTABLE_STRENGTHS = ("strong", "moderate")


def _check_values(enum_cls: Any, values: Sequence[str] | None, label: str) -> None:
    valid = {e.value for e in enum_cls}
    for value in values or ():
        if value not in valid:
            raise InvalidInputError(
                f"Unknown {label} '{value}'",
                details={"valid": sorted(valid)},
            )


def _score_insights(score: HealthScore) -> list[HealthInsight]:
    if score.confidence <= 0:
        return []

    label = score.score_type.replace("_", " ")
    base = f"score:{score.score_type}:{score.calculation_date.isoformat()}"
    data = {
        "score_type": score.score_type,
        "value": score.value,
        "calculation_date": score.calculation_date.isoformat(),
        "trend": score.trend,
    }
    insights = []
    if score.value >= STRONG_SCORE:
        insights.append(
            HealthInsight(
                user_id=score.user_id,
                insight_type=InsightType.SCORE.value,
                category=InsightCategory.POSITIVE.value,
                priority=InsightPriority.LOW.value,
                title=f"Strong {label} score",
                description=f"Your {label} score is {score.value}. Keep up the current routine.",
                data=data,
                confidence_score=score.confidence,
                related_metrics=[score.score_type],
                source_key=f"{base}:strong",
            )
        )
    elif score.value < WEAK_SCORE:
        overall = score.score_type == ScoreType.OVERALL.value
        priority = InsightPriority.HIGH if overall else InsightPriority.MEDIUM
        insights.append(
            HealthInsight(
                user_id=score.user_id,
                insight_type=InsightType.SCORE.value,
                category=InsightCategory.NEGATIVE.value,
                priority=priority.value,
                title=f"Low {label} score",
                description=f"Your {label} score is {score.value}, below {WEAK_SCORE}.",
                data=data,
                confidence_score=score.confidence,
                action_items=[f"Review the {label} factors in your latest score breakdown"],
                related_metrics=[score.score_type],
                source_key=f"{base}:weak",
            )
        )
    if score.trend == ScoreTrend.DECLINING.value:
        insights.append(
            HealthInsight(
                user_id=score.user_id,
                insight_type=InsightType.SCORE.value,
                category=InsightCategory.NEGATIVE.value,
                priority=InsightPriority.LOW.value,
                title=f"{label.capitalize()} score is declining",
                description=f"Your {label} score dropped compared with the previous day.",
                data=data,
                confidence_score=score.confidence,
                related_metrics=[score.score_type],
                source_key=f"{base}:declining",
            )
        )
    return insights


def _prediction_insight(prediction: Prediction) -> HealthInsight | None:
    value = prediction.predicted_value
    kind = prediction.prediction_type

    if kind == PredictionType.HEALTH_RISK.value:
        if value >= HIGH_RISK:
            category, priority = InsightCategory.NEGATIVE, InsightPriority.HIGH
            title = "Elevated health risk"
        elif value < LOW_RISK:
            category, priority = InsightCategory.POSITIVE, InsightPriority.LOW
            title = "Low health risk"
        else:
            return None
        description = f"Your assessed risk score is {value:g} out of 100."
    elif kind == PredictionType.WEIGHT_PROJECTION.value:
        category, priority = InsightCategory.NEUTRAL, InsightPriority.MEDIUM
        title = "Weight projection updated"
        description = (
            f"At your current trend you are projected to weigh {value:g} "
            f"by {prediction.target_date.isoformat()}."
        )
    elif kind == PredictionType.GOAL_ACHIEVEMENT.value:
        if value >= LIKELY_GOALS:
            category, priority = InsightCategory.POSITIVE, InsightPriority.MEDIUM
            title = "Goals on track"
        elif value < UNLIKELY_GOALS:
            category, priority = InsightCategory.NEGATIVE, InsightPriority.MEDIUM
            title = "Goals at risk"
        else:
            return None
        description = f"Estimated chance of reaching your goals on time is {value:g}%."
    else:
        category, priority = InsightCategory.NEUTRAL, InsightPriority.LOW
        title = "Performance recommendations"
        description = "A new set of recommendations is available for your routine."

    return HealthInsight(
        user_id=prediction.user_id,
        insight_type=InsightType.PREDICTION.value,
        category=category.value,
        priority=priority.value,
        title=title,
        description=description,
        data={
            "prediction_type": kind,
            "predicted_value": value,
            "target_date": prediction.target_date.isoformat(),
        },
        confidence_score=prediction.confidence_score,
        action_items=list(prediction.recommendations or []),
        source_key=f"prediction:{prediction.id}",
        expires_at=datetime.combine(prediction.target_date, datetime.max.time(), tzinfo=UTC),
    )


def _pattern_insight(analysis: PatternAnalysis) -> HealthInsight | None:
    details = analysis.insights or {}
    strength = details.get("strength")
    if strength not in NOTABLE_STRENGTHS:
        return None

    findings = details.get("key_findings") or []
    description = details.get("description") or analysis.pattern_type.replace("_", " ")
    if findings:
        description = f"{description}. {findings[0]}."
    return HealthInsight(
        user_id=analysis.user_id,
        insight_type=InsightType.PATTERN.value,
        category=InsightCategory.NEUTRAL.value,
        priority=(InsightPriority.MEDIUM if strength == "strong" else InsightPriority.LOW).value,
        title=f"{strength.capitalize()} {analysis.pattern_type.replace('_', ' ')} pattern",
        description=description,
        data={
            "pattern_type": analysis.pattern_type,
            "correlation_score": analysis.correlation_score,
            "significance": analysis.significance,
            "strength": strength,
        },
        confidence_score=analysis.correlation_score,
        action_items=list(analysis.recommendations or []),
        related_metrics=list(analysis.metrics_involved or []),
        source_key=f"pattern:{analysis.id}",
    )


def _goal_insight(goal: HealthGoal, today: date) -> HealthInsight | None:
    label = goal.goal_type.replace("_", " ")
    if goal.status == GoalStatus.COMPLETED.value:
        rule, category, priority = "completed", InsightCategory.POSITIVE, InsightPriority.MEDIUM
        title = f"{label.capitalize()} goal completed"
        description = f"You reached your {label} target of {goal.target_value:g}."
        actions: list[str] = ["Set a new goal to keep the momentum"]
    elif goal.status != GoalStatus.ACTIVE.value:
        return None
    elif goal.target_date < today:
        rule, category, priority = "overdue", InsightCategory.NEGATIVE, InsightPriority.MEDIUM
        title = f"{label.capitalize()} goal is past its target date"
        description = (
            f"The target date {goal.target_date.isoformat()} has passed at "
            f"{goal.progress_percentage:g}% progress."
        )
        actions = ["Adjust the target date or break the goal into milestones"]
    elif goal.progress_percentage >= GOAL_NEARLY_DONE:
        rule, category, priority = "nearly", InsightCategory.POSITIVE, InsightPriority.LOW
        title = f"{label.capitalize()} goal nearly reached"
        description = f"You are {goal.progress_percentage:g}% of the way to your {label} goal."
        actions = []
    else:
        return None

    return HealthInsight(
        user_id=goal.user_id,
        insight_type=InsightType.GOAL.value,
        category=category.value,
        priority=priority.value,
        title=title,
        description=description,
        data={
            "goal_id": goal.id,
            "goal_type": goal.goal_type,
            "progress_percentage": goal.progress_percentage,
            "target_date": goal.target_date.isoformat(),
        },
        confidence_score=1.0,
        action_items=actions,
        source_key=f"goal:{goal.id}:{rule}",
    )


class InsightService:
    """Generates and serves user-facing insights."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.logger = logger.bind(service="insights")

    async def generate_insights(
        self, user_id: str, now: datetime | None = None
    ) -> list[HealthInsight]:
        """Derive insights from the user's stored analytics.

        Reads the latest score of each type, active predictions that are not
        low quality, strong or moderate pattern analyses, and goals. Each
        source row yields at most one insight per rule; rows that already
        produced an insight are skipped, so running this again stores nothing
        new until the underlying data changes.

        Returns:
            The newly stored insights

        Raises:
            ConflictError: If a concurrent run stored the same insights first
        """
        now = now or datetime.now(UTC)

        drafts: list[HealthInsight] = []
        for score in await self._latest_scores(user_id):
            drafts.extend(_score_insights(score))
        for prediction in await self._active_predictions(user_id):
            if (insight := _prediction_insight(prediction)) is not None:
                drafts.append(insight)
        for analysis in await self._patterns(user_id):
            if (insight := _pattern_insight(analysis)) is not None:
                drafts.append(insight)
        for goal in await self._goals(user_id):
            if (insight := _goal_insight(goal, now.date())) is not None:
                drafts.append(insight)

        existing = await self._source_keys(user_id)
        created = [d for d in drafts if d.source_key not in existing]
        if not created:
            self.logger.debug("No new insights", user_id=user_id)
            return []

        self.session.add_all(created)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(
                "Insights were generated concurrently; retry the request",
                details={"user_id": user_id},
            ) from e

        self.logger.info("Insights generated", user_id=user_id, created=len(created))
        return created

    async def get_insights(
        self,
        user_id: str,
        insight_types: Sequence[str] | None = None,
        categories: Sequence[str] | None = None,
        priorities: Sequence[str] | None = None,
        is_read: bool | None = None,
        is_bookmarked: bool | None = None,
        include_expired: bool = False,
        limit: int = 50,
        now: datetime | None = None,
    ) -> list[HealthInsight]:
        """List insights, newest first.

        Raises:
            InvalidInputError: If a filter names an unknown type, category or priority
        """
        _check_values(InsightType, insight_types, "insight type")
        _check_values(InsightCategory, categories, "category")
        _check_values(InsightPriority, priorities, "priority")

        stmt = select(HealthInsight).where(HealthInsight.user_id == user_id)
        if insight_types:
            stmt = stmt.where(HealthInsight.insight_type.in_(list(insight_types)))
        if categories:
            stmt = stmt.where(HealthInsight.category.in_(list(categories)))
        if priorities:
            stmt = stmt.where(HealthInsight.priority.in_(list(priorities)))
        if is_read is not None:
            stmt = stmt.where(HealthInsight.is_read.is_(is_read))
        if is_bookmarked is not None:
            stmt = stmt.where(HealthInsight.is_bookmarked.is_(is_bookmarked))
        if not include_expired:
            cutoff = now or datetime.now(UTC)
            stmt = stmt.where(
                (HealthInsight.expires_at.is_(None)) | (HealthInsight.expires_at > cutoff)
            )
        stmt = stmt.order_by(HealthInsight.created_at.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_insight(self, insight_id: str, user_id: str) -> HealthInsight:
        """Get one insight.

        Raises:
            NotFoundError: If the insight doesn't exist or belongs to another user
        """
        stmt = select(HealthInsight).where(
            HealthInsight.id == insight_id, HealthInsight.user_id == user_id
        )
        result = await self.session.execute(stmt)
        insight = result.scalar_one_or_none()
        if insight is None:
            raise NotFoundError(
                f"Insight '{insight_id}' not found", details={"insight_id": insight_id}
            )
        return insight

    async def mark_insight_read(self, insight_id: str, user_id: str) -> HealthInsight:
        """Mark an insight read. Marking twice is a no-op."""
        insight = await self.get_insight(insight_id, user_id)
        if not insight.is_read:
            insight.is_read = True
            await self.session.commit()
        return insight

    async def toggle_insight_bookmark(self, insight_id: str, user_id: str) -> HealthInsight:
        """Flip the bookmark flag."""
        insight = await self.get_insight(insight_id, user_id)
        insight.is_bookmarked = not insight.is_bookmarked
        await self.session.commit()
        self.logger.debug(
            "Insight bookmark toggled", insight_id=insight_id, bookmarked=insight.is_bookmarked
        )
        return insight

    async def count_unread(self, user_id: str) -> int:
        """Number of unread insights, expired ones included."""
        stmt = (
            select(func.count())
            .select_from(HealthInsight)
            .where(HealthInsight.user_id == user_id, HealthInsight.is_read.is_(False))
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def _latest_scores(self, user_id: str) -> list[HealthScore]:
        latest_day = (
            select(
                HealthScore.score_type,
                func.max(HealthScore.calculation_date).label("day"),
            )
            .where(HealthScore.user_id == user_id)
            .group_by(HealthScore.score_type)
            .subquery()
        )
        stmt = (
            select(HealthScore)
            .join(
                latest_day,
                (HealthScore.score_type == latest_day.c.score_type)
                & (HealthScore.calculation_date == latest_day.c.day),
            )
            .where(HealthScore.user_id == user_id)
            .order_by(HealthScore.score_type.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _active_predictions(self, user_id: str) -> list[Prediction]:
        stmt = (
            select(Prediction)
            .where(Prediction.user_id == user_id)
            .where(Prediction.is_active.is_(True))
            .where(Prediction.low_quality.is_(False))
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _patterns(self, user_id: str) -> list[PatternAnalysis]:
        stmt = select(PatternAnalysis).where(PatternAnalysis.user_id == user_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _goals(self, user_id: str) -> list[HealthGoal]:
        stmt = select(HealthGoal).where(HealthGoal.user_id == user_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _source_keys(self, user_id: str) -> set[str]:
        stmt = select(HealthInsight.source_key).where(HealthInsight.user_id == user_id)
        result = await self.session.execute(stmt)
        return set(result.scalars().all())
