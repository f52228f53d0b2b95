"""Prediction engine: weight projection, goal achievement, risk and optimisation.

Each generator returns a PredictionResult; generate_health_prediction()
persists it and supersedes earlier predictions of the same type, so at most
one row per (user, type) has is_active=True.
"""

import asyncio
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from statistics import mean, pvariance
from typing import Any

import structlog
from scipy import stats
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.config import Settings, settings as default_settings
from health_analytics_server.core.exceptions import ConflictError, InvalidInputError
from health_analytics_server.core.locks import KeyedLockRegistry
from health_analytics_server.models.base import as_utc
from health_analytics_server.models.goal import GoalStatus, HealthGoal
from health_analytics_server.models.metric import MetricType
from health_analytics_server.models.prediction import Prediction, PredictionType
from health_analytics_server.services.metric_store import MetricStore

logger = structlog.get_logger()

WEIGHT_HISTORY_DAYS = 90
RISK_WINDOW_DAYS = 30
LOW_CONFIDENCE = 0.3
MAX_WEIGHT_CONFIDENCE = 0.95
RISK_CONFIDENCE = 0.7

# Additive risk bands: (metric, comparison, threshold, points, label)
RISK_BANDS: list[tuple[MetricType, str, float, int, str]] = [
    (MetricType.HEART_RATE, ">", 100, 25, "Elevated resting heart rate"),
    (MetricType.HEART_RATE, "<", 50, 15, "Low resting heart rate"),
    (MetricType.STEPS, "<", 5000, 20, "Low activity level"),
    (MetricType.WEIGHT, ">", 100, 15, "High body weight"),
    (MetricType.BLOOD_PRESSURE, ">", 140, 20, "Elevated blood pressure"),
    (MetricType.SLEEP_QUALITY, "<", 70, 20, "Poor sleep quality"),
]


@dataclass
class PredictionResult:
    """Output of one prediction generator."""

    prediction_type: str
    target_date: date
    value: float
    confidence: float
    details: dict[str, Any] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)
    low_quality: bool = False
    trend: str | None = None


def fit_weight_trend(
    samples: Sequence[tuple[datetime, float]],
) -> tuple[float, float]:
    """Least-squares fit of weight on days since the first sample.

    Args:
        samples: (timestamp, weight) pairs, oldest first

    Returns:
        (slope per day, intercept). Slope is 0 if every sample shares a timestamp.
    """
    origin = as_utc(samples[0][0])
    xs = [(as_utc(ts) - origin).total_seconds() / 86400 for ts, _ in samples]
    ys = [value for _, value in samples]

    if max(xs) == min(xs):
        return 0.0, mean(ys)

    fit = stats.linregress(xs, ys)
    return float(fit.slope), float(fit.intercept)


def weight_confidence(values: Sequence[float]) -> float:
    """Confidence from the inverse of population variance, clamped to [0.3, 0.95]."""
    variance = pvariance(values)
    return max(LOW_CONFIDENCE, min(MAX_WEIGHT_CONFIDENCE, 1 - variance / 100))


def slope_trend(slope: float) -> str:
    """Label a regression slope."""
    if slope > 0:
        return "increasing"
    if slope < 0:
        return "decreasing"
    return "stable"


def supersession_key(user_id: str, prediction_type: str) -> tuple[str, str, str]:
    """Lock key serialising activation of one (user, type) prediction slot."""
    return ("prediction", user_id, prediction_type)


class PredictionEngine:
    """Generates and stores health predictions."""

    def __init__(
        self,
        session: AsyncSession,
        locks: KeyedLockRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize prediction engine.

        Args:
            session: Database session
            locks: Shared per-key lock registry (one per process)
            settings: Settings override
        """
        self.session = session
        self.locks = locks or KeyedLockRegistry()
        self.store = MetricStore(session)
        self.settings = settings or default_settings
        self.logger = logger.bind(service="prediction")

    async def generate_health_prediction(
        self,
        user_id: str,
        prediction_type: str,
        target_date: date,
        model_version: str | None = None,
    ) -> Prediction:
        """Generate, persist and activate a prediction.

        Earlier active predictions of the same type are marked inactive in the
        same transaction, under a per-(user, type) lock.

        Args:
            user_id: User identifier
            prediction_type: One of PredictionType
            target_date: Date to project to
            model_version: Version tag stored with the row

        Returns:
            The stored Prediction

        Raises:
            InvalidInputError: If prediction_type is unknown
            ConflictError: If concurrent activation keeps conflicting
        """
        try:
            kind = PredictionType(prediction_type)
        except ValueError:
            raise InvalidInputError(
                f"Unknown prediction type '{prediction_type}'",
                details={"valid_types": [t.value for t in PredictionType]},
            ) from None

        generators = {
            PredictionType.WEIGHT_PROJECTION: self.predict_weight,
            PredictionType.GOAL_ACHIEVEMENT: self.predict_goal_achievement,
            PredictionType.HEALTH_RISK: self.assess_health_risk,
            PredictionType.PERFORMANCE_OPTIMIZATION: self.optimize_performance,
        }
        result = await generators[kind](user_id, target_date)

        input_summary = dict(result.details)
        if result.trend is not None:
            input_summary["trend"] = result.trend

        prediction = Prediction(
            user_id=user_id,
            prediction_type=kind.value,
            target_date=target_date,
            predicted_value=result.value,
            confidence_score=result.confidence,
            model_version=model_version or self.settings.model_version,
            low_quality=result.low_quality,
            input_summary=input_summary,
            recommendations=result.recommendations,
            is_active=True,
        )

        async with self.locks.hold(supersession_key(user_id, kind.value)):
            await self._activate_with_retry(prediction)

        self.logger.info(
            "Prediction generated",
            user_id=user_id,
            prediction_type=kind.value,
            value=result.value,
            confidence=result.confidence,
            low_quality=result.low_quality,
        )
        return prediction

    async def _activate_with_retry(self, prediction: Prediction) -> None:
        """Deactivate the previous active row and insert the new one.

        The partial unique index on active rows turns a concurrent writer in
        another process into an IntegrityError, which is retried with backoff.
        """
        retries = self.settings.score_conflict_retries
        for attempt in range(retries + 1):
            try:
                await self.session.execute(
                    update(Prediction)
                    .where(Prediction.user_id == prediction.user_id)
                    .where(Prediction.prediction_type == prediction.prediction_type)
                    .where(Prediction.is_active.is_(True))
                    .values(is_active=False)
                )
                self.session.add(prediction)
                await self.session.commit()
                return
            except IntegrityError as e:
                await self.session.rollback()
                if attempt == retries:
                    raise ConflictError(
                        "Concurrent prediction supersession did not settle",
                        details={
                            "user_id": prediction.user_id,
                            "prediction_type": prediction.prediction_type,
                        },
                    ) from e
                backoff = 0.05 * (2**attempt)
                self.logger.warning(
                    "Prediction activation conflict, retrying",
                    user_id=prediction.user_id,
                    attempt=attempt + 1,
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
            except Exception as e:
                await self.session.rollback()
                self.logger.error(
                    "Prediction persistence failed",
                    user_id=prediction.user_id,
                    prediction_type=prediction.prediction_type,
                    error=str(e),
                )
                raise

    async def predict_weight(self, user_id: str, target_date: date) -> PredictionResult:
        """Project weight to target_date with a linear fit over 90 days.

        With fewer than the minimum history the result is value 0,
        confidence 0.3 and flagged low quality.
        """
        now = datetime.now(UTC)
        metrics = await self.store.query(
            user_id,
            MetricType.WEIGHT.value,
            start=now - timedelta(days=WEIGHT_HISTORY_DAYS),
        )
        minimum = self.settings.min_prediction_history

        if len(metrics) < minimum:
            return PredictionResult(
                prediction_type=PredictionType.WEIGHT_PROJECTION.value,
                target_date=target_date,
                value=0.0,
                confidence=LOW_CONFIDENCE,
                low_quality=True,
                details={
                    "message": "Insufficient data for weight prediction",
                    "data_points": len(metrics),
                    "required": minimum,
                },
                recommendations=["Collect more weight data for better predictions"],
            )

        samples = [(m.timestamp, m.value) for m in metrics]
        slope, intercept = fit_weight_trend(samples)
        origin = as_utc(samples[0][0])
        target_instant = datetime.combine(target_date, datetime.min.time(), tzinfo=UTC)
        target_x = (target_instant - origin).total_seconds() / 86400
        projected = intercept + slope * target_x

        confidence = weight_confidence([v for _, v in samples])
        trend = slope_trend(slope)

        recommendations: list[str] = []
        if slope > 0:
            recommendations += ["Consider reducing calorie intake", "Increase physical activity"]
        elif slope < 0:
            recommendations += [
                "Ensure adequate calorie intake",
                "Monitor for unintended weight loss",
            ]
        if confidence < 0.5:
            recommendations.append("Collect more weight data for better predictions")

        return PredictionResult(
            prediction_type=PredictionType.WEIGHT_PROJECTION.value,
            target_date=target_date,
            value=round(projected, 2),
            confidence=round(confidence, 3),
            trend=trend,
            details={
                "slope": round(slope, 4),
                "intercept": round(intercept, 2),
                "data_points": len(samples),
                "current_weight": samples[-1][1],
            },
            recommendations=recommendations,
        )

    async def predict_goal_achievement(self, user_id: str, target_date: date) -> PredictionResult:
        """Blend progress and probability across active goals due by target_date."""
        stmt = (
            select(HealthGoal)
            .where(HealthGoal.user_id == user_id)
            .where(HealthGoal.status == GoalStatus.ACTIVE.value)
            .where(HealthGoal.target_date <= target_date)
        )
        result = await self.session.execute(stmt)
        goals = list(result.scalars().all())

        if not goals:
            return PredictionResult(
                prediction_type=PredictionType.GOAL_ACHIEVEMENT.value,
                target_date=target_date,
                value=0.0,
                confidence=0.0,
                details={"message": "No active goals found", "goals_analyzed": 0},
                recommendations=["Set health goals to get achievement predictions"],
            )

        avg_progress = mean(g.progress_percentage for g in goals)
        avg_probability = mean(g.achievement_probability for g in goals)

        target_instant = datetime.combine(target_date, datetime.min.time(), tzinfo=UTC)
        days_remaining = math.ceil((target_instant - datetime.now(UTC)).total_seconds() / 86400)
        progress_rate = avg_progress / max(1, days_remaining)
        adjusted = max(0.0, min(100.0, avg_probability + progress_rate * days_remaining * 0.1))
        confidence = min(0.9, avg_progress / 100)

        recommendations: list[str] = []
        if adjusted < 50:
            recommendations += [
                "Consider adjusting your timeline",
                "Break down goals into smaller milestones",
            ]
        if len(goals) > 3:
            recommendations.append("Focus on prioritizing your most important goals")
        recommendations.append("Track progress regularly and adjust as needed")

        return PredictionResult(
            prediction_type=PredictionType.GOAL_ACHIEVEMENT.value,
            target_date=target_date,
            value=round(adjusted, 2),
            confidence=round(max(0.0, confidence), 3),
            details={
                "goals_analyzed": len(goals),
                "average_progress": round(avg_progress, 2),
                "average_probability": round(avg_probability, 2),
                "days_remaining": days_remaining,
                "progress_rate": round(progress_rate, 4),
            },
            recommendations=recommendations,
        )

    async def assess_health_risk(self, user_id: str, target_date: date) -> PredictionResult:
        """Score risk additively from 30-day metric averages.

        Bands are only evaluated for metrics that have data in the window.
        """
        end = datetime.now(UTC)
        start = end - timedelta(days=RISK_WINDOW_DAYS)

        averages: dict[MetricType, float] = {}
        for metric_type in {band[0] for band in RISK_BANDS}:
            avg = await self.store.average(user_id, metric_type.value, start, end)
            if avg is not None:
                averages[metric_type] = avg

        if not averages:
            return PredictionResult(
                prediction_type=PredictionType.HEALTH_RISK.value,
                target_date=target_date,
                value=0.0,
                confidence=LOW_CONFIDENCE,
                low_quality=True,
                details={"risk_factors": [], "averages": {}},
                recommendations=["Collect more health metrics for accurate risk assessment"],
            )

        risk = 0
        factors: list[str] = []
        for metric_type, op, threshold, points, label in RISK_BANDS:
            avg = averages.get(metric_type)
            if avg is None:
                continue
            if (op == ">" and avg > threshold) or (op == "<" and avg < threshold):
                risk += points
                factors.append(label)

        recommendations: list[str] = []
        if risk > 50:
            recommendations += [
                "Consult with a healthcare professional",
                "Consider medical evaluation",
            ]
        if "Elevated resting heart rate" in factors:
            recommendations += [
                "Monitor heart rate regularly",
                "Consider stress management techniques",
            ]
        if "Low activity level" in factors:
            recommendations += ["Gradually increase daily activity", "Set achievable step goals"]

        return PredictionResult(
            prediction_type=PredictionType.HEALTH_RISK.value,
            target_date=target_date,
            value=float(risk),
            confidence=RISK_CONFIDENCE,
            details={
                "risk_factors": factors,
                "averages": {t.value: round(v, 2) for t, v in sorted(averages.items())},
            },
            recommendations=recommendations,
        )

    async def optimize_performance(self, user_id: str, target_date: date) -> PredictionResult:
        """Fixed recommendation bundle."""
        return PredictionResult(
            prediction_type=PredictionType.PERFORMANCE_OPTIMIZATION.value,
            target_date=target_date,
            value=75.0,
            confidence=0.8,
            details={
                "optimization_strategy": "balanced_approach",
                "recommended_focus": ["nutrition", "sleep", "exercise"],
                "performance_projection": "improving",
                "timeline": "4_weeks",
            },
            recommendations=[
                "Maintain consistent meal timing",
                "Prioritize 7-9 hours of sleep",
                "Include both cardio and strength training",
                "Monitor recovery metrics",
            ],
        )

    async def get_predictions(
        self,
        user_id: str,
        prediction_types: Sequence[str] | None = None,
        is_active: bool | None = None,
        limit: int = 20,
    ) -> list[Prediction]:
        """Get stored predictions, newest first."""
        stmt = select(Prediction).where(Prediction.user_id == user_id)
        if prediction_types:
            stmt = stmt.where(Prediction.prediction_type.in_(list(prediction_types)))
        if is_active is not None:
            stmt = stmt.where(Prediction.is_active.is_(is_active))
        stmt = stmt.order_by(Prediction.created_at.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_current_prediction(self, user_id: str, prediction_type: str) -> Prediction | None:
        """The newest active prediction of a type, if any."""
        stmt = (
            select(Prediction)
            .where(Prediction.user_id == user_id)
            .where(Prediction.prediction_type == prediction_type)
            .where(Prediction.is_active.is_(True))
            .order_by(Prediction.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()
