"""Health report generation.

Reports are deterministic snapshots: every value is derived from stored
logs, metrics, scores, predictions and pattern analyses for the period.
A second request for the same (user, type, start, end) returns the stored
snapshot instead of writing a new one.
"""

from collections.abc import Sequence
from datetime import date
from statistics import mean
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.config import Settings, settings as default_settings
from health_analytics_server.core.exceptions import InvalidInputError, NotFoundError
from health_analytics_server.models.base import as_utc
from health_analytics_server.models.goal import GoalStatus, GoalType, HealthGoal
from health_analytics_server.models.metric import MetricType
from health_analytics_server.models.pattern import PatternAnalysis
from health_analytics_server.models.prediction import Prediction
from health_analytics_server.models.report import AccessLevel, HealthReport, ReportType
from health_analytics_server.models.score import HealthScore, ScoreType
from health_analytics_server.services.metric_store import MetricStore, day_bounds
from health_analytics_server.services.scoring import CALORIE_TOLERANCE, SLEEP_HOURS_TARGET

logger = structlog.get_logger()

# Percent change between period halves needed to call a trend
TREND_CHANGE_PERCENT = 5.0
WEEKLY_ACTIVITY_MINUTES = 150
STEP_GOAL = 10000
LOW_STEPS = 5000


def half_trend(values: Sequence[float], higher_is_better: bool = True) -> str:
    """Compare the first and second half of a day-ordered series.

    Args:
        values: Daily values, oldest first
        higher_is_better: Whether growth counts as improvement

    Returns:
        improving, stable or declining
    """
    if len(values) < 2:
        return "stable"

    half = len(values) // 2
    first, second = mean(values[:half]), mean(values[half:])
    if first == 0:
        change = 100.0 if second > 0 else 0.0
    else:
        change = (second - first) / abs(first) * 100

    if abs(change) <= TREND_CHANGE_PERCENT:
        return "stable"
    grew = change > 0
    return "improving" if grew == higher_is_better else "declining"


class ReportGenerator:
    """Builds and stores immutable health report snapshots."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        """Initialize report generator.

        Args:
            session: Database session
            settings: Settings override
        """
        self.session = session
        self.store = MetricStore(session)
        self.settings = settings or default_settings
        self.logger = logger.bind(service="reports")

    async def generate_health_report(
        self,
        user_id: str,
        report_type: str,
        period_start: date,
        period_end: date,
    ) -> HealthReport:
        """Generate (or return the existing) report for a period.

        Args:
            user_id: User identifier
            report_type: One of ReportType
            period_start: First day (inclusive)
            period_end: Last day (inclusive)

        Returns:
            The stored HealthReport

        Raises:
            InvalidInputError: If the type or period is invalid
        """
        try:
            kind = ReportType(report_type)
        except ValueError:
            raise InvalidInputError(
                f"Unknown report type '{report_type}'",
                details={"valid_types": [t.value for t in ReportType]},
            ) from None
        if period_start > period_end:
            raise InvalidInputError(
                "period_start must not be after period_end",
                details={
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                },
            )

        existing = await self._find(user_id, kind, period_start, period_end)
        if existing is not None:
            self.logger.debug("Returning stored report", user_id=user_id, report_id=existing.id)
            return existing

        self.logger.info(
            "Generating health report",
            user_id=user_id,
            report_type=kind.value,
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
        )
        data = await self.build_report_data(user_id, period_start, period_end)

        report = HealthReport(
            user_id=user_id,
            report_type=kind.value,
            period_start=period_start,
            period_end=period_end,
            data=data,
            access_level=AccessLevel.PRIVATE.value,
        )
        try:
            self.session.add(report)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            stored = await self._find(user_id, kind, period_start, period_end)
            if stored is None:
                raise
            return stored
        except Exception as e:
            await self.session.rollback()
            self.logger.error("Report generation failed", user_id=user_id, error=str(e))
            raise

        self.logger.info("Health report stored", user_id=user_id, report_id=report.id)
        return report

    async def build_report_data(
        self, user_id: str, period_start: date, period_end: date
    ) -> dict[str, Any]:
        """Assemble {summary, trends, achievements, recommendations, ...} for a period."""
        start_at, _ = day_bounds(period_start)
        _, end_at = day_bounds(period_end)
        days = (period_end - period_start).days + 1
        target = self.settings.daily_calorie_target

        meals = await self.store.meals_between(user_id, start_at, end_at)
        workouts = await self.store.workouts_between(user_id, start_at, end_at)
        calories = await self.store.daily_calories_eaten(user_id, period_start, period_end)
        workout_minutes = await self.store.daily_workout_minutes(user_id, period_start, period_end)
        sleep_hours = await self.store.daily_sleep_hours(user_id, period_start, period_end)
        steps = await self.store.daily_values(
            user_id, MetricType.STEPS.value, period_start, period_end, agg="sum"
        )
        weight = await self.store.daily_values(
            user_id, MetricType.WEIGHT.value, period_start, period_end
        )

        protein_by_day: dict[date, float] = {}
        for m in meals:
            day = as_utc(m.logged_at).date()
            protein_by_day[day] = protein_by_day.get(day, 0.0) + m.protein_g

        scores = await self._scores_in_period(user_id, period_start, period_end)
        overall = [s for s in scores if s.score_type == ScoreType.OVERALL.value]
        latest_overall = overall[-1].value if overall else None

        summary = {
            "days_in_period": days,
            "total_meals": len(meals),
            "average_daily_calories": _avg(calories.values()),
            "average_daily_protein": _avg(protein_by_day.values()),
            "total_workouts": len(workouts),
            "total_workout_minutes": int(sum(workout_minutes.values())),
            "average_sleep_hours": _avg(sleep_hours.values()),
            "average_steps": _avg(steps.values(), digits=0),
            "average_weight": _avg(weight.values()),
            "latest_overall_score": latest_overall,
        }

        weight_goal = await self._weight_goal_direction(user_id)
        trends = {
            "weight": half_trend(list(weight.values()), higher_is_better=weight_goal == "gain"),
            "fitness": half_trend(list(workout_minutes.values())),
            "nutrition": half_trend(
                [abs(v - target) for v in calories.values()], higher_is_better=False
            ),
            "recovery": half_trend(list(sleep_hours.values())),
        }

        on_target_days = sum(
            1 for v in calories.values() if abs(v - target) <= target * CALORIE_TOLERANCE
        )
        completed_goals = await self._goals_completed_in(user_id, period_start, period_end)

        return {
            "summary": summary,
            "trends": trends,
            "scores": self._score_summary(scores),
            "predictions": await self._active_predictions(user_id),
            "patterns": await self._patterns_in_period(user_id, period_start, period_end),
            "achievements": self._achievements(summary, on_target_days, completed_goals),
            "recommendations": self._recommendations(summary, trends, days),
        }

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_health_report_by_id(self, report_id: str, user_id: str) -> HealthReport:
        """Get a report owned by user_id.

        Raises:
            NotFoundError: If no such report exists for this user
        """
        stmt = select(HealthReport).where(
            HealthReport.id == report_id, HealthReport.user_id == user_id
        )
        result = await self.session.execute(stmt)
        report = result.scalar_one_or_none()
        if report is None:
            raise NotFoundError(f"Report '{report_id}' not found", details={"report_id": report_id})
        return report

    async def get_health_reports(
        self,
        user_id: str,
        report_types: Sequence[str] | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[HealthReport]:
        """List reports, newest period first."""
        stmt = select(HealthReport).where(HealthReport.user_id == user_id)
        if report_types:
            stmt = stmt.where(HealthReport.report_type.in_(list(report_types)))
        if start is not None:
            stmt = stmt.where(HealthReport.period_start >= start)
        if end is not None:
            stmt = stmt.where(HealthReport.period_end <= end)
        stmt = stmt.order_by(HealthReport.period_end.desc(), HealthReport.created_at.desc())

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_health_report(self, report_id: str, user_id: str) -> None:
        """Delete a report on explicit user request.

        Raises:
            NotFoundError: If no such report exists for this user
        """
        report = await self.get_health_report_by_id(report_id, user_id)
        await self.session.delete(report)
        await self.session.commit()
        self.logger.info("Health report deleted", user_id=user_id, report_id=report_id)

    async def _find(
        self, user_id: str, kind: ReportType, period_start: date, period_end: date
    ) -> HealthReport | None:
        stmt = select(HealthReport).where(
            HealthReport.user_id == user_id,
            HealthReport.report_type == kind.value,
            HealthReport.period_start == period_start,
            HealthReport.period_end == period_end,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _scores_in_period(
        self, user_id: str, period_start: date, period_end: date
    ) -> list[HealthScore]:
        stmt = (
            select(HealthScore)
            .where(HealthScore.user_id == user_id)
            .where(HealthScore.calculation_date >= period_start)
            .where(HealthScore.calculation_date <= period_end)
            .order_by(HealthScore.calculation_date.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _active_predictions(self, user_id: str) -> list[dict[str, Any]]:
        stmt = (
            select(Prediction)
            .where(Prediction.user_id == user_id)
            .where(Prediction.is_active.is_(True))
            .order_by(Prediction.prediction_type.asc())
        )
        result = await self.session.execute(stmt)
        return [
            {
                "prediction_type": p.prediction_type,
                "target_date": p.target_date.isoformat(),
                "predicted_value": p.predicted_value,
                "confidence_score": p.confidence_score,
            }
            for p in result.scalars().all()
        ]

    async def _patterns_in_period(
        self, user_id: str, period_start: date, period_end: date
    ) -> list[dict[str, Any]]:
        stmt = (
            select(PatternAnalysis)
            .where(PatternAnalysis.user_id == user_id)
            .where(PatternAnalysis.end_date >= period_start)
            .where(PatternAnalysis.start_date <= period_end)
            .order_by(PatternAnalysis.pattern_type.asc(), PatternAnalysis.end_date.asc())
        )
        result = await self.session.execute(stmt)
        return [
            {
                "pattern_type": p.pattern_type,
                "analysis_period": p.analysis_period,
                "correlation_score": p.correlation_score,
                "significance": p.significance,
            }
            for p in result.scalars().all()
        ]

    async def _weight_goal_direction(self, user_id: str) -> str:
        stmt = select(HealthGoal.goal_type).where(
            HealthGoal.user_id == user_id,
            HealthGoal.status == GoalStatus.ACTIVE.value,
            HealthGoal.goal_type.in_(
                [GoalType.WEIGHT_GAIN.value, GoalType.MUSCLE_GAIN.value, GoalType.WEIGHT_LOSS.value]
            ),
        )
        result = await self.session.execute(stmt)
        goal_types = set(result.scalars().all())
        if goal_types & {GoalType.WEIGHT_GAIN.value, GoalType.MUSCLE_GAIN.value} and (
            GoalType.WEIGHT_LOSS.value not in goal_types
        ):
            return "gain"
        return "loss"

    async def _goals_completed_in(
        self, user_id: str, period_start: date, period_end: date
    ) -> list[HealthGoal]:
        start_at, _ = day_bounds(period_start)
        _, end_at = day_bounds(period_end)
        stmt = select(HealthGoal).where(
            HealthGoal.user_id == user_id,
            HealthGoal.status == GoalStatus.COMPLETED.value,
            HealthGoal.updated_at >= start_at,
            HealthGoal.updated_at < end_at,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _score_summary(scores: Sequence[HealthScore]) -> dict[str, Any]:
        by_type: dict[str, list[int]] = {}
        for s in scores:
            by_type.setdefault(s.score_type, []).append(s.value)
        return {
            score_type: {"average": _avg(values), "days_scored": len(values)}
            for score_type, values in sorted(by_type.items())
        }

    @staticmethod
    def _achievements(
        summary: dict[str, Any], on_target_days: int, completed_goals: Sequence[HealthGoal]
    ) -> list[str]:
        achievements: list[str] = []
        if summary["total_workouts"] >= 3:
            achievements.append(f"Completed {summary['total_workouts']} workouts")
        if (summary["average_sleep_hours"] or 0) >= SLEEP_HOURS_TARGET:
            achievements.append("Averaged 7+ hours of sleep")
        if (summary["average_steps"] or 0) >= STEP_GOAL:
            achievements.append("Averaged 10,000+ daily steps")
        if on_target_days > 0:
            achievements.append(f"Stayed within calorie target on {on_target_days} days")
        for goal in completed_goals:
            achievements.append(f"Completed goal: {goal.goal_type.replace('_', ' ')}")
        if (summary["latest_overall_score"] or 0) >= 80:
            achievements.append(f"Overall health score of {summary['latest_overall_score']}")
        return achievements

    @staticmethod
    def _recommendations(summary: dict[str, Any], trends: dict[str, str], days: int) -> list[str]:
        recommendations: list[str] = []
        if summary["total_meals"] == 0:
            recommendations.append("Log meals to get nutrition insights")
        elif trends["nutrition"] == "declining":
            recommendations.append("Review meal planning to stay near your calorie target")
        if summary["average_sleep_hours"] is not None and (
            summary["average_sleep_hours"] < SLEEP_HOURS_TARGET
        ):
            recommendations.append("Aim for 7-9 hours of sleep per night")
        weeks = max(1.0, days / 7)
        if summary["total_workout_minutes"] / weeks < WEEKLY_ACTIVITY_MINUTES:
            recommendations.append("Build toward 150 minutes of activity per week")
        if summary["average_steps"] is not None and summary["average_steps"] < LOW_STEPS:
            recommendations.append("Increase daily steps toward 7,500")
        if trends["weight"] == "declining":
            recommendations.append("Weight is moving away from your goal; review intake")
        if not recommendations:
            recommendations.append("Keep up your current routine")
        return recommendations


def _avg(values: Any, digits: int = 2) -> float | None:
    values = list(values)
    if not values:
        return None
    return round(mean(values), digits)
