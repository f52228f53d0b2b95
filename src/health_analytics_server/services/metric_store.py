"""Metric store: append-only per-user health time series.

Every analytics component reads through this service. Writes are validated
in full before anything is added to the session, so a rejected batch leaves
no partial rows behind.
"""

import math
from calendar import monthrange
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from statistics import mean
from typing import Any, Literal

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.models.base import as_utc
from health_analytics_server.models.daily_log import (
    MealLog,
    SleepLog,
    WorkoutIntensity,
    WorkoutLog,
)
from health_analytics_server.models.goal import HealthGoal
from health_analytics_server.models.insight import HealthInsight
from health_analytics_server.models.metric import (
    DEFAULT_UNITS,
    HealthMetric,
    MetricSource,
    MetricType,
)
from health_analytics_server.models.pattern import PatternAnalysis
from health_analytics_server.models.prediction import Prediction
from health_analytics_server.models.report import HealthReport
from health_analytics_server.models.score import HealthScore
from health_analytics_server.models.threshold import AlertThresholdConfig

logger = structlog.get_logger()

# Plausible value range per metric type (None = unbounded on that side)
METRIC_BOUNDS: dict[MetricType, tuple[float | None, float | None]] = {
    MetricType.HEART_RATE: (0, 300),
    MetricType.RESTING_HEART_RATE: (0, 250),
    MetricType.HEART_RATE_VARIABILITY: (0, 500),
    MetricType.STEPS: (0, None),
    MetricType.DISTANCE: (0, None),
    MetricType.CALORIES_BURNED: (0, None),
    MetricType.ACTIVITY_MINUTES: (0, 1440),
    MetricType.ACTIVITY_LEVEL: (0, None),
    MetricType.SLEEP_DURATION: (0, 24),
    MetricType.SLEEP_QUALITY: (0, 100),
    MetricType.WEIGHT: (0, 700),
    MetricType.BODY_FAT: (0, 100),
    MetricType.BLOOD_PRESSURE: (0, 350),
    MetricType.BLOOD_OXYGEN: (0, 100),
    MetricType.BLOOD_GLUCOSE: (0, None),
    MetricType.RESPIRATORY_RATE: (0, 100),
    MetricType.SKIN_TEMPERATURE: (20, 45),
    MetricType.STRESS_LEVEL: (0, 10),
    MetricType.WATER_INTAKE: (0, None),
}


@dataclass
class NewMetric:
    """A metric sample waiting to be appended."""

    metric_type: str
    value: float
    unit: str | None = None
    timestamp: datetime | None = None
    source: str = MetricSource.MANUAL.value
    confidence: float = 1.0
    device_id: str | None = None
    metadata: dict[str, Any] | None = field(default=None)


STATISTICS_RANGES = ("hour", "day", "week", "month")


def window_start(end: datetime, time_range: str | None) -> datetime:
    """Start of a statistics window ending at ``end``.

    ``month`` steps back one calendar month, clamping the day to the
    length of the earlier month.

    Raises:
        InvalidInputError: If the range is not one of STATISTICS_RANGES
    """
    if time_range is None or time_range == "week":
        return end - timedelta(days=7)
    if time_range == "hour":
        return end - timedelta(hours=1)
    if time_range == "day":
        return datetime.combine(end.date(), time.min, tzinfo=UTC)
    if time_range == "month":
        year, month = (end.year, end.month - 1) if end.month > 1 else (end.year - 1, 12)
        return end.replace(year=year, month=month, day=min(end.day, monthrange(year, month)[1]))
    raise InvalidInputError(
        f"Unknown time range '{time_range}'",
        details={"valid_ranges": list(STATISTICS_RANGES)},
    )


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the [start, end) UTC instants covering a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def parse_metric_type(metric_type: str) -> MetricType:
    """Resolve a metric type name.

    Raises:
        InvalidInputError: If the name is not a known metric type
    """
    try:
        return MetricType(metric_type)
    except ValueError:
        raise InvalidInputError(
            f"Unknown metric type '{metric_type}'",
            details={"valid_types": [t.value for t in MetricType]},
        ) from None


def validate_metric(sample: NewMetric) -> MetricType:
    """Validate a sample before it is persisted.

    Args:
        sample: Incoming sample

    Returns:
        The parsed metric type

    Raises:
        InvalidInputError: If the type, value, source or confidence is invalid
    """
    metric_type = parse_metric_type(sample.metric_type)

    if (
        isinstance(sample.value, bool)
        or not isinstance(sample.value, int | float)
        or not math.isfinite(sample.value)
    ):
        raise InvalidInputError(
            f"Value for {metric_type.value} must be a finite number",
            details={"value": repr(sample.value)},
        )

    low, high = METRIC_BOUNDS[metric_type]
    if (low is not None and sample.value < low) or (high is not None and sample.value > high):
        raise InvalidInputError(
            f"Value {sample.value} out of range for {metric_type.value}",
            details={"min": low, "max": high},
        )

    if not 0.0 <= sample.confidence <= 1.0:
        raise InvalidInputError(
            "Confidence must be between 0 and 1",
            details={"confidence": sample.confidence},
        )

    if sample.source not in {s.value for s in MetricSource}:
        raise InvalidInputError(f"Unknown metric source '{sample.source}'")

    return metric_type


def _require_range(name: str, value: float, low: float, high: float | None = None) -> None:
    if not math.isfinite(value) or value < low or (high is not None and value > high):
        bound = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise InvalidInputError(f"{name} must be {bound}", details={name: value})


class MetricStore:
    """Append-only access to a user's metrics and day logs.

    Args:
        session: Database session
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.logger = logger.bind(service="metric_store")

    # -------------------------------------------------------------------------
    # Metric writes
    # -------------------------------------------------------------------------

    async def append(self, user_id: str, sample: NewMetric) -> HealthMetric:
        """Validate and append one metric.

        Raises:
            InvalidInputError: If the sample fails validation
        """
        metrics = await self.append_many(user_id, [sample])
        return metrics[0]

    async def append_many(self, user_id: str, samples: Sequence[NewMetric]) -> list[HealthMetric]:
        """Validate every sample, then append them in one transaction.

        Args:
            user_id: Owning user
            samples: Samples to append

        Returns:
            The stored metrics in input order

        Raises:
            InvalidInputError: If any sample fails validation (nothing is stored)
        """
        parsed = [validate_metric(s) for s in samples]
        now = datetime.now(UTC)

        metrics = [
            HealthMetric(
                user_id=user_id,
                metric_type=metric_type.value,
                value=float(sample.value),
                unit=sample.unit or DEFAULT_UNITS[metric_type],
                timestamp=as_utc(sample.timestamp) if sample.timestamp else now,
                source=sample.source,
                confidence=sample.confidence,
                device_id=sample.device_id,
                extra=sample.metadata,
            )
            for sample, metric_type in zip(samples, parsed, strict=True)
        ]
        self.session.add_all(metrics)
        await self.session.commit()

        self.logger.debug("Metrics appended", user_id=user_id, count=len(metrics))
        return metrics

    # -------------------------------------------------------------------------
    # Metric reads
    # -------------------------------------------------------------------------

    async def query(
        self,
        user_id: str,
        metric_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[HealthMetric]:
        """Get metrics for a user ordered by timestamp (oldest first).

        Args:
            user_id: User identifier
            metric_type: Restrict to one metric type
            start: Inclusive lower bound
            end: Exclusive upper bound
            limit: Maximum rows to return

        Returns:
            Matching metrics
        """
        stmt = select(HealthMetric).where(HealthMetric.user_id == user_id)
        if metric_type is not None:
            stmt = stmt.where(HealthMetric.metric_type == parse_metric_type(metric_type).value)
        if start is not None:
            stmt = stmt.where(HealthMetric.timestamp >= as_utc(start))
        if end is not None:
            stmt = stmt.where(HealthMetric.timestamp < as_utc(end))
        stmt = stmt.order_by(HealthMetric.timestamp.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest(self, user_id: str, metric_type: str) -> HealthMetric | None:
        """Get the most recent metric of a type."""
        stmt = (
            select(HealthMetric)
            .where(HealthMetric.user_id == user_id)
            .where(HealthMetric.metric_type == parse_metric_type(metric_type).value)
            .order_by(HealthMetric.timestamp.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def average(
        self, user_id: str, metric_type: str, start: datetime, end: datetime
    ) -> float | None:
        """Mean value of a metric over a window, or None if no samples."""
        metrics = await self.query(user_id, metric_type, start, end)
        if not metrics:
            return None
        return mean(m.value for m in metrics)

    async def daily_values(
        self,
        user_id: str,
        metric_type: str,
        start: date,
        end: date,
        agg: Literal["mean", "sum"] = "mean",
    ) -> dict[date, float]:
        """Aggregate a metric per UTC calendar day.

        Args:
            user_id: User identifier
            metric_type: Metric to aggregate
            start: First day (inclusive)
            end: Last day (inclusive)
            agg: mean or sum of the day's samples

        Returns:
            Mapping of day to aggregated value, only for days with samples
        """
        metrics = await self.query(
            user_id, metric_type, day_bounds(start)[0], day_bounds(end)[1]
        )
        grouped: dict[date, list[float]] = defaultdict(list)
        for m in metrics:
            grouped[as_utc(m.timestamp).date()].append(m.value)

        reducer = sum if agg == "sum" else mean
        return {day: float(reducer(values)) for day, values in sorted(grouped.items())}

    async def count(self, user_id: str) -> int:
        """Number of stored metrics for a user."""
        stmt = (
            select(func.count())
            .select_from(HealthMetric)
            .where(HealthMetric.user_id == user_id)
        )
        return (await self.session.execute(stmt)).scalar_one()

    async def metric_statistics(
        self,
        user_id: str,
        metric_type: str,
        time_range: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Count, mean, min and max of one metric over a trailing window.

        Args:
            user_id: User identifier
            metric_type: Metric to summarise
            time_range: hour, day (since UTC midnight), week or month;
                None means the last 7 days
            now: Window end (defaults to the current time)

        Returns:
            Dict with count, avg, min, max and the window bounds. All
            statistics are 0 when there is no data.
        """
        parsed = parse_metric_type(metric_type)
        end = as_utc(now) if now else datetime.now(UTC)
        start = window_start(end, time_range)

        stmt = select(
            func.count(HealthMetric.id),
            func.avg(HealthMetric.value),
            func.min(HealthMetric.value),
            func.max(HealthMetric.value),
        ).where(
            HealthMetric.user_id == user_id,
            HealthMetric.metric_type == parsed.value,
            HealthMetric.timestamp >= start,
            HealthMetric.timestamp <= end,
        )
        count, avg, low, high = (await self.session.execute(stmt)).one()

        return {
            "metric_type": parsed.value,
            "time_range": time_range or "week",
            "start": start.isoformat(),
            "end": end.isoformat(),
            "count": count,
            "avg": round(float(avg), 2) if count else 0.0,
            "min": float(low) if count else 0.0,
            "max": float(high) if count else 0.0,
        }

    # -------------------------------------------------------------------------
    # Day logs
    # -------------------------------------------------------------------------

    async def log_meal(
        self,
        user_id: str,
        logged_at: datetime,
        calories: float,
        protein_g: float = 0.0,
        carbs_g: float = 0.0,
        fat_g: float = 0.0,
        food_category: str | None = None,
    ) -> MealLog:
        """Validate and append a meal.

        Raises:
            InvalidInputError: If any macro is negative or non-finite
        """
        _require_range("calories", calories, 0)
        _require_range("protein_g", protein_g, 0)
        _require_range("carbs_g", carbs_g, 0)
        _require_range("fat_g", fat_g, 0)

        meal = MealLog(
            user_id=user_id,
            logged_at=as_utc(logged_at),
            calories=calories,
            protein_g=protein_g,
            carbs_g=carbs_g,
            fat_g=fat_g,
            food_category=food_category,
        )
        self.session.add(meal)
        await self.session.commit()
        return meal

    async def log_workout(
        self,
        user_id: str,
        logged_at: datetime,
        duration_minutes: int,
        calories_burned: float = 0.0,
        intensity: str = WorkoutIntensity.MODERATE.value,
        consistency_score: float = 0.0,
    ) -> WorkoutLog:
        """Validate and append a workout.

        Raises:
            InvalidInputError: If duration, calories, intensity or consistency is invalid
        """
        _require_range("duration_minutes", duration_minutes, 0, 1440)
        _require_range("calories_burned", calories_burned, 0)
        _require_range("consistency_score", consistency_score, 0, 100)
        if intensity not in {i.value for i in WorkoutIntensity}:
            raise InvalidInputError(
                f"Unknown workout intensity '{intensity}'",
                details={"valid": [i.value for i in WorkoutIntensity]},
            )

        workout = WorkoutLog(
            user_id=user_id,
            logged_at=as_utc(logged_at),
            duration_minutes=duration_minutes,
            calories_burned=calories_burned,
            intensity=intensity,
            consistency_score=consistency_score,
        )
        self.session.add(workout)
        await self.session.commit()
        return workout

    async def log_sleep(
        self,
        user_id: str,
        logged_at: datetime,
        duration_hours: float,
        quality_score: float = 0.0,
        deep_sleep_ratio: float = 0.0,
        consistency: float = 0.0,
    ) -> SleepLog:
        """Validate and append a sleep session.

        Raises:
            InvalidInputError: If any value is outside its range
        """
        _require_range("duration_hours", duration_hours, 0, 24)
        _require_range("quality_score", quality_score, 0, 100)
        _require_range("deep_sleep_ratio", deep_sleep_ratio, 0, 1)
        _require_range("consistency", consistency, 0, 100)

        sleep = SleepLog(
            user_id=user_id,
            logged_at=as_utc(logged_at),
            duration_hours=duration_hours,
            quality_score=quality_score,
            deep_sleep_ratio=deep_sleep_ratio,
            consistency=consistency,
        )
        self.session.add(sleep)
        await self.session.commit()
        return sleep

    async def meals_between(self, user_id: str, start: datetime, end: datetime) -> list[MealLog]:
        """Meals logged in [start, end), oldest first."""
        return await self._logs_between(MealLog, user_id, start, end)

    async def workouts_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[WorkoutLog]:
        """Workouts logged in [start, end), oldest first."""
        return await self._logs_between(WorkoutLog, user_id, start, end)

    async def sleep_between(self, user_id: str, start: datetime, end: datetime) -> list[SleepLog]:
        """Sleep sessions logged in [start, end), oldest first."""
        return await self._logs_between(SleepLog, user_id, start, end)

    async def meals_for_day(self, user_id: str, day: date) -> list[MealLog]:
        """Meals logged on a UTC calendar day."""
        return await self.meals_between(user_id, *day_bounds(day))

    async def workouts_for_day(self, user_id: str, day: date) -> list[WorkoutLog]:
        """Workouts logged on a UTC calendar day."""
        return await self.workouts_between(user_id, *day_bounds(day))

    async def sleep_for_day(self, user_id: str, day: date) -> list[SleepLog]:
        """Sleep sessions logged on a UTC calendar day."""
        return await self.sleep_between(user_id, *day_bounds(day))

    async def daily_calories_eaten(self, user_id: str, start: date, end: date) -> dict[date, float]:
        """Total calories eaten per day in [start, end]."""
        meals = await self.meals_between(user_id, day_bounds(start)[0], day_bounds(end)[1])
        return _sum_by_day((m.logged_at, m.calories) for m in meals)

    async def daily_workout_minutes(
        self, user_id: str, start: date, end: date
    ) -> dict[date, float]:
        """Total workout minutes per day in [start, end]."""
        workouts = await self.workouts_between(user_id, day_bounds(start)[0], day_bounds(end)[1])
        return _sum_by_day((w.logged_at, float(w.duration_minutes)) for w in workouts)

    async def daily_sleep_hours(self, user_id: str, start: date, end: date) -> dict[date, float]:
        """Total sleep hours per day in [start, end]."""
        sleeps = await self.sleep_between(user_id, day_bounds(start)[0], day_bounds(end)[1])
        return _sum_by_day((s.logged_at, s.duration_hours) for s in sleeps)

    async def _logs_between(
        self, model: Any, user_id: str, start: datetime, end: datetime
    ) -> list[Any]:
        stmt = (
            select(model)
            .where(model.user_id == user_id)
            .where(model.logged_at >= as_utc(start))
            .where(model.logged_at < as_utc(end))
            .order_by(model.logged_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def cleanup_retention(self, cutoff: datetime) -> dict[str, int]:
        """Delete metrics and day logs recorded before cutoff.

        Args:
            cutoff: Rows strictly older than this are removed

        Returns:
            Rows deleted per table
        """
        cutoff = as_utc(cutoff)
        deleted = {
            "health_metrics": await self._delete(
                delete(HealthMetric).where(HealthMetric.timestamp < cutoff)
            ),
            "meal_logs": await self._delete(delete(MealLog).where(MealLog.logged_at < cutoff)),
            "workout_logs": await self._delete(
                delete(WorkoutLog).where(WorkoutLog.logged_at < cutoff)
            ),
            "sleep_logs": await self._delete(delete(SleepLog).where(SleepLog.logged_at < cutoff)),
        }
        await self.session.commit()

        self.logger.info("Retention cleanup complete", cutoff=cutoff.isoformat(), **deleted)
        return deleted

    async def erase_user_data(self, user_id: str) -> dict[str, int]:
        """Delete every stored row belonging to a user.

        Args:
            user_id: User whose data is erased

        Returns:
            Rows deleted per table
        """
        models: Iterable[Any] = (
            HealthMetric,
            MealLog,
            WorkoutLog,
            SleepLog,
            HealthScore,
            Prediction,
            HealthGoal,
            PatternAnalysis,
            HealthReport,
            HealthInsight,
            AlertThresholdConfig,
        )
        try:
            deleted = {
                model.__tablename__: await self._delete(
                    delete(model).where(model.user_id == user_id)
                )
                for model in models
            }
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            self.logger.error("User data erase failed", user_id=user_id, error=str(e))
            raise

        self.logger.info("User data erased", user_id=user_id, **deleted)
        return deleted

    async def _delete(self, stmt: Any) -> int:
        result = await self.session.execute(stmt)
        return result.rowcount or 0


def _sum_by_day(rows: Iterable[tuple[datetime, float]]) -> dict[date, float]:
    totals: dict[date, float] = defaultdict(float)
    for ts, value in rows:
        totals[as_utc(ts).date()] += value
    return dict(sorted(totals.items()))
