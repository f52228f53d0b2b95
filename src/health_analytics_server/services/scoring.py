"""Composite health score engine.

Turns a day's meals, workouts and sleep into four 0-100 sub-scores and a
weighted overall blend, then upserts one HealthScore row per type.

Score Composition:

    nutrition   = 0.3 calorie consistency + 0.3 protein + 0.2 carbs
                  + 0.1 fat + 0.1 food diversity
    fitness     = 0.4 duration + 0.3 calories burned + 0.2 high intensity ratio
                  + 0.1 workout consistency
    recovery    = 0.4 sleep duration + 0.3 sleep quality + 0.2 deep sleep
                  + 0.1 sleep consistency
    consistency = 0.33 nutrition hit + 0.33 fitness hit + 0.34 recovery hit
    overall     = 0.3 nutrition + 0.25 fitness + 0.25 recovery + 0.2 consistency

A dimension with no data for the day scores 0 and that 0 stays in the
overall blend. Dimensions the caller did not request are dropped from the
blend and the remaining weights are renormalised.
"""

import asyncio
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from statistics import mean
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.config import Settings, settings as default_settings
from health_analytics_server.core.exceptions import ConflictError
from health_analytics_server.core.locks import KeyedLockRegistry
from health_analytics_server.models.daily_log import MealLog, SleepLog, WorkoutLog
from health_analytics_server.models.score import HealthScore, ScoreTrend, ScoreType
from health_analytics_server.services.metric_store import MetricStore

logger = structlog.get_logger()

# Nutrition targets
CALORIE_TOLERANCE = 0.10  # +/-10% of the daily target counts as on target
PROTEIN_TARGET_G = 0.8 * 150 * 0.4  # 48 g
CARB_RANGE_G = (45.0, 65.0)
FAT_RANGE_G = (20.0, 35.0)
DIVERSITY_TARGET = 5  # Unique food categories for full marks

# Fitness targets
WORKOUT_MINUTES_TARGET = 30.0
CALORIES_BURNED_TARGET = 200.0

# Recovery targets
SLEEP_HOURS_TARGET = 7.0
DEEP_SLEEP_RATIO_TARGET = 0.2

# Day-over-day change needed to call a trend
TREND_THRESHOLD = 5

OVERALL_WEIGHTS: dict[ScoreType, float] = {
    ScoreType.NUTRITION: 0.3,
    ScoreType.FITNESS: 0.25,
    ScoreType.RECOVERY: 0.25,
    ScoreType.CONSISTENCY: 0.2,
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    """Round and clamp a score into [0, 100]."""
    if math.isnan(value):
        return 0
    return max(0, min(100, round_half_up(value)))


def _ratio_score(actual: float, target: float) -> float:
    """100 when actual reaches target, else the linear share of it."""
    if actual >= target:
        return 100.0
    return max(0.0, actual / target * 100)


def _band_score(actual: float, low: float, high: float) -> float:
    return 100.0 if low <= actual <= high else 0.0


@dataclass
class ComponentScore:
    """One sub-score with its breakdown."""

    value: int
    details: dict[str, Any] = field(default_factory=dict)
    has_data: bool = False


@dataclass
class HealthScoreResult:
    """Result of one score calculation."""

    user_id: str
    calculation_date: date
    nutrition: int = 0
    fitness: int = 0
    recovery: int = 0
    consistency: int = 0
    overall: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response dict."""
        return {
            "user_id": self.user_id,
            "calculation_date": self.calculation_date.isoformat(),
            "nutrition": self.nutrition,
            "fitness": self.fitness,
            "recovery": self.recovery,
            "consistency": self.consistency,
            "overall": self.overall,
            "details": self.details,
        }


# =============================================================================
# Pure scoring functions
# =============================================================================


def calculate_nutrition_score(
    meals: Sequence[MealLog], calorie_target: float = 2000
) -> ComponentScore:
    """Score a day of meals.

    Args:
        meals: Meals logged for the day
        calorie_target: Daily calorie target

    Returns:
        ComponentScore; 0 with total_meals=0 when nothing was logged
    """
    if not meals:
        return ComponentScore(value=0, details={"total_meals": 0, "avg_calories": 0})

    total_calories = sum(m.calories for m in meals)
    total_protein = sum(m.protein_g for m in meals)
    total_carbs = sum(m.carbs_g for m in meals)
    total_fat = sum(m.fat_g for m in meals)
    categories = {m.food_category for m in meals if m.food_category}

    calorie_consistency = (
        100.0 if abs(total_calories - calorie_target) <= calorie_target * CALORIE_TOLERANCE else 0.0
    )
    protein = 100.0 if total_protein >= PROTEIN_TARGET_G else 0.0
    carbs = _band_score(total_carbs, *CARB_RANGE_G)
    fat = _band_score(total_fat, *FAT_RANGE_G)
    diversity = _ratio_score(len(categories), DIVERSITY_TARGET)

    value = clamp_score(
        0.3 * calorie_consistency + 0.3 * protein + 0.2 * carbs + 0.1 * fat + 0.1 * diversity
    )
    return ComponentScore(
        value=value,
        has_data=True,
        details={
            "total_meals": len(meals),
            "total_calories": round(total_calories, 1),
            "avg_calories": round(total_calories / len(meals), 1),
            "total_protein_g": round(total_protein, 1),
            "total_carbs_g": round(total_carbs, 1),
            "total_fat_g": round(total_fat, 1),
            "unique_categories": len(categories),
            "components": {
                "calorie_consistency": calorie_consistency,
                "protein": protein,
                "carbs": carbs,
                "fat": fat,
                "diversity": round(diversity, 1),
            },
        },
    )


def calculate_fitness_score(workouts: Sequence[WorkoutLog]) -> ComponentScore:
    """Score a day of workouts."""
    if not workouts:
        return ComponentScore(value=0, details={"total_workouts": 0, "total_minutes": 0})

    total_minutes = sum(w.duration_minutes for w in workouts)
    total_burned = sum(w.calories_burned for w in workouts)
    high_intensity = sum(1 for w in workouts if w.is_high_intensity)

    duration = _ratio_score(total_minutes / len(workouts), WORKOUT_MINUTES_TARGET)
    calories = _ratio_score(total_burned, CALORIES_BURNED_TARGET)
    intensity = high_intensity / len(workouts) * 100
    consistency = mean(w.consistency_score for w in workouts)

    value = clamp_score(0.4 * duration + 0.3 * calories + 0.2 * intensity + 0.1 * consistency)
    return ComponentScore(
        value=value,
        has_data=True,
        details={
            "total_workouts": len(workouts),
            "total_minutes": total_minutes,
            "total_calories_burned": round(total_burned, 1),
            "high_intensity_workouts": high_intensity,
            "components": {
                "duration": round(duration, 1),
                "calories": round(calories, 1),
                "intensity": round(intensity, 1),
                "consistency": round(consistency, 1),
            },
        },
    )


def calculate_recovery_score(sleeps: Sequence[SleepLog]) -> ComponentScore:
    """Score a day of sleep."""
    if not sleeps:
        return ComponentScore(value=0, details={"total_sleep_sessions": 0, "total_hours": 0})

    avg_hours = mean(s.duration_hours for s in sleeps)
    quality = mean(s.quality_score for s in sleeps)
    deep_ratio = mean(s.deep_sleep_ratio for s in sleeps)
    consistency = mean(s.consistency for s in sleeps)

    duration = _ratio_score(avg_hours, SLEEP_HOURS_TARGET)
    deep_sleep = _ratio_score(deep_ratio, DEEP_SLEEP_RATIO_TARGET)

    value = clamp_score(0.4 * duration + 0.3 * quality + 0.2 * deep_sleep + 0.1 * consistency)
    return ComponentScore(
        value=value,
        has_data=True,
        details={
            "total_sleep_sessions": len(sleeps),
            "total_hours": round(sum(s.duration_hours for s in sleeps), 2),
            "avg_hours": round(avg_hours, 2),
            "components": {
                "duration": round(duration, 1),
                "quality": round(quality, 1),
                "deep_sleep": round(deep_sleep, 1),
                "consistency": round(consistency, 1),
            },
        },
    )


def calculate_consistency_score(
    meals: Sequence[MealLog],
    workouts: Sequence[WorkoutLog],
    sleeps: Sequence[SleepLog],
    calorie_target: float = 2000,
) -> ComponentScore:
    """Score whether each dimension hit its daily target (binary per dimension)."""
    total_calories = sum(m.calories for m in meals)
    nutrition_hit = bool(meals) and (
        abs(total_calories - calorie_target) <= calorie_target * CALORIE_TOLERANCE
    )
    fitness_hit = sum(w.duration_minutes for w in workouts) >= WORKOUT_MINUTES_TARGET
    recovery_hit = sum(s.duration_hours for s in sleeps) >= SLEEP_HOURS_TARGET

    value = clamp_score(
        0.33 * (100 if nutrition_hit else 0)
        + 0.33 * (100 if fitness_hit else 0)
        + 0.34 * (100 if recovery_hit else 0)
    )
    sources_present = sum(1 for source in (meals, workouts, sleeps) if source)
    return ComponentScore(
        value=value,
        has_data=sources_present > 0,
        details={
            "nutrition_hit": nutrition_hit,
            "fitness_hit": fitness_hit,
            "recovery_hit": recovery_hit,
            "sources_present": sources_present,
        },
    )


def calculate_overall_score(scores: dict[ScoreType, int]) -> int:
    """Blend sub-scores into the overall score.

    Only the score types present in scores take part; their weights are
    renormalised to sum to 1. With all four present this is exactly
    0.3 n + 0.25 f + 0.25 r + 0.2 c.

    Args:
        scores: Sub-scores by type (overall is ignored if present)

    Returns:
        Overall score in [0, 100]
    """
    weights = {t: w for t, w in OVERALL_WEIGHTS.items() if t in scores}
    total_weight = sum(weights.values())
    if total_weight == 0:
        return 0
    blended = sum(scores[t] * w for t, w in weights.items()) / total_weight
    return clamp_score(blended)


def classify_trend(current: int, previous: int | None) -> ScoreTrend:
    """Compare a score with the previous day's value."""
    if previous is None:
        return ScoreTrend.STABLE
    delta = current - previous
    if delta >= TREND_THRESHOLD:
        return ScoreTrend.IMPROVING
    if delta <= -TREND_THRESHOLD:
        return ScoreTrend.DECLINING
    return ScoreTrend.STABLE


# =============================================================================
# Engine
# =============================================================================


class ScoreEngine:
    """Computes and stores daily composite scores.

    Recomputation of one (user, day) is serialised through a keyed lock.
    A unique constraint violation from another writer is retried with
    backoff; the caller only sees ConflictError once retries run out.
    """

    def __init__(
        self,
        session: AsyncSession,
        locks: KeyedLockRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize score engine.

        Args:
            session: Database session
            locks: Shared per-key lock registry (one per process)
            settings: Settings override
        """
        self.session = session
        self.store = MetricStore(session)
        self.locks = locks or KeyedLockRegistry()
        self.settings = settings or default_settings
        self.logger = logger.bind(service="scoring")

    async def calculate_health_scores(
        self,
        user_id: str,
        day: date,
        include_nutrition: bool = True,
        include_fitness: bool = True,
        include_recovery: bool = True,
        include_consistency: bool = True,
    ) -> HealthScoreResult:
        """Calculate and store scores for one user and day.

        Args:
            user_id: User identifier
            day: Day to score
            include_nutrition: Compute the nutrition score
            include_fitness: Compute the fitness score
            include_recovery: Compute the recovery score
            include_consistency: Compute the consistency score

        Returns:
            HealthScoreResult with every requested score plus overall

        Raises:
            ConflictError: If the upsert keeps losing to concurrent writers
        """
        self.logger.info("Calculating health scores", user_id=user_id, date=day.isoformat())

        target = self.settings.daily_calorie_target
        meals = await self.store.meals_for_day(user_id, day)
        workouts = await self.store.workouts_for_day(user_id, day)
        sleeps = await self.store.sleep_for_day(user_id, day)

        components: dict[ScoreType, ComponentScore] = {}
        if include_nutrition:
            components[ScoreType.NUTRITION] = calculate_nutrition_score(meals, target)
        if include_fitness:
            components[ScoreType.FITNESS] = calculate_fitness_score(workouts)
        if include_recovery:
            components[ScoreType.RECOVERY] = calculate_recovery_score(sleeps)
        if include_consistency:
            components[ScoreType.CONSISTENCY] = calculate_consistency_score(
                meals, workouts, sleeps, target
            )

        sub_scores = {t: c.value for t, c in components.items()}
        overall = calculate_overall_score(sub_scores)
        coverage = sum(1 for s in (meals, workouts, sleeps) if s) / 3
        components[ScoreType.OVERALL] = ComponentScore(
            value=overall,
            has_data=coverage > 0,
            details={
                "weights": {t.value: OVERALL_WEIGHTS[t] for t in sub_scores},
                "data_coverage": round(coverage, 2),
            },
        )

        async with self.locks.hold((user_id, day)):
            await self._store_with_retry(user_id, day, components, coverage)

        result = HealthScoreResult(
            user_id=user_id,
            calculation_date=day,
            nutrition=sub_scores.get(ScoreType.NUTRITION, 0),
            fitness=sub_scores.get(ScoreType.FITNESS, 0),
            recovery=sub_scores.get(ScoreType.RECOVERY, 0),
            consistency=sub_scores.get(ScoreType.CONSISTENCY, 0),
            overall=overall,
            details={t.value: c.details for t, c in components.items()},
        )
        self.logger.info(
            "Health scores calculated",
            user_id=user_id,
            date=day.isoformat(),
            overall=overall,
        )
        return result

    async def _store_with_retry(
        self,
        user_id: str,
        day: date,
        components: dict[ScoreType, ComponentScore],
        coverage: float,
    ) -> None:
        retries = self.settings.score_conflict_retries
        for attempt in range(retries + 1):
            try:
                await self._upsert_scores(user_id, day, components, coverage)
                await self.session.commit()
                return
            except IntegrityError as e:
                await self.session.rollback()
                if attempt == retries:
                    raise ConflictError(
                        "Concurrent score recomputation did not settle",
                        details={"user_id": user_id, "date": day.isoformat()},
                    ) from e
                backoff = 0.05 * (2**attempt)
                self.logger.warning(
                    "Score upsert conflict, retrying",
                    user_id=user_id,
                    attempt=attempt + 1,
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
            except Exception as e:
                await self.session.rollback()
                self.logger.error("Score upsert failed", user_id=user_id, error=str(e))
                raise

    async def _upsert_scores(
        self,
        user_id: str,
        day: date,
        components: dict[ScoreType, ComponentScore],
        coverage: float,
    ) -> None:
        """Write every score row for the day in the current transaction."""
        existing = await self._scores_for_day(user_id, day)
        previous = await self._scores_for_day(user_id, day - timedelta(days=1))

        for score_type, component in components.items():
            if score_type in (ScoreType.CONSISTENCY, ScoreType.OVERALL):
                confidence = coverage
            else:
                confidence = 1.0 if component.has_data else 0.0
            prior = previous.get(score_type.value)
            trend = classify_trend(component.value, prior.value if prior else None)

            row = existing.get(score_type.value)
            if row is None:
                self.session.add(
                    HealthScore(
                        user_id=user_id,
                        score_type=score_type.value,
                        calculation_date=day,
                        value=component.value,
                        trend=trend.value,
                        confidence=round(confidence, 2),
                        details=component.details,
                    )
                )
            else:
                row.value = component.value
                row.trend = trend.value
                row.confidence = round(confidence, 2)
                row.details = component.details

        await self.session.flush()

    async def _scores_for_day(self, user_id: str, day: date) -> dict[str, HealthScore]:
        stmt = (
            select(HealthScore)
            .where(HealthScore.user_id == user_id)
            .where(HealthScore.calculation_date == day)
        )
        result = await self.session.execute(stmt)
        return {row.score_type: row for row in result.scalars().all()}

    async def get_health_scores(
        self,
        user_id: str,
        score_types: Sequence[str] | None = None,
        start: date | None = None,
        end: date | None = None,
        limit: int = 50,
    ) -> list[HealthScore]:
        """Get stored scores, newest day first.

        Args:
            user_id: User identifier
            score_types: Restrict to these score types
            start: First day (inclusive)
            end: Last day (inclusive)
            limit: Maximum rows

        Returns:
            Stored HealthScore rows
        """
        stmt = select(HealthScore).where(HealthScore.user_id == user_id)
        if score_types:
            stmt = stmt.where(HealthScore.score_type.in_(list(score_types)))
        if start is not None:
            stmt = stmt.where(HealthScore.calculation_date >= start)
        if end is not None:
            stmt = stmt.where(HealthScore.calculation_date <= end)
        stmt = stmt.order_by(
            HealthScore.calculation_date.desc(), HealthScore.score_type.asc()
        ).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest_overall(self, user_id: str, on_or_before: date) -> HealthScore | None:
        """Most recent overall score on or before a day."""
        stmt = (
            select(HealthScore)
            .where(HealthScore.user_id == user_id)
            .where(HealthScore.score_type == ScoreType.OVERALL.value)
            .where(HealthScore.calculation_date <= on_or_before)
            .order_by(HealthScore.calculation_date.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
