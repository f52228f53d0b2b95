"""Pattern analysis service for metric-pair correlations and trends."""

import math
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from statistics import mean
from typing import Any

import structlog
from scipy import stats
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.models.metric import MetricType
from health_analytics_server.models.pattern import (
    AnalysisPeriod,
    PatternAnalysis,
    PatternType,
    Significance,
)
from health_analytics_server.services.metric_store import MetricStore, parse_metric_type

logger = structlog.get_logger()

# Minimum aligned days before a correlation is reported
MIN_SAMPLES_CORRELATION = 7
MIN_SAMPLES_TREND = 7
TREND_CHANGE_PERCENT = 5.0

PERIOD_DAYS: dict[AnalysisPeriod, int] = {
    AnalysisPeriod.DAILY: 7,
    AnalysisPeriod.WEEKLY: 30,
    AnalysisPeriod.MONTHLY: 90,
}

# Metrics whose daily value is a total rather than an average
SUMMED_METRICS = {
    MetricType.STEPS,
    MetricType.DISTANCE,
    MetricType.CALORIES_BURNED,
    MetricType.ACTIVITY_MINUTES,
    MetricType.WATER_INTAKE,
}

PATTERN_METRICS: dict[PatternType, tuple[str, str]] = {
    PatternType.SLEEP_NUTRITION: ("sleep_hours", "calories_eaten"),
    PatternType.EXERCISE_NUTRITION: ("workout_minutes", "calories_eaten"),
    PatternType.STRESS_EATING: ("stress_level", "calories_eaten"),
    PatternType.METABOLIC_RATE: ("steps", "weight"),
}

PATTERN_DESCRIPTIONS: dict[PatternType, str] = {
    PatternType.SLEEP_NUTRITION: "Relationship between nightly sleep and daily calorie intake",
    PatternType.EXERCISE_NUTRITION: "Relationship between workout volume and daily calorie intake",
    PatternType.STRESS_EATING: "Relationship between stress level and daily calorie intake",
    PatternType.METABOLIC_RATE: "Relationship between daily steps and body weight",
}


@dataclass
class CorrelationResult:
    """Spearman correlation over day-aligned series."""

    coefficient: float | None = None
    p_value: float | None = None
    sample_count: int = 0
    significance: str = Significance.INSUFFICIENT.value
    strength: str = "insufficient"
    direction: str = "none"
    reason: str | None = None

    @property
    def score(self) -> float:
        """Absolute coefficient in [0, 1]; 0 when not computed."""
        if self.coefficient is None:
            return 0.0
        return round(min(1.0, abs(self.coefficient)), 4)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for storage and API responses."""
        return {
            "coefficient": self.coefficient,
            "p_value": self.p_value,
            "sample_count": self.sample_count,
            "significance": self.significance,
            "strength": self.strength,
            "direction": self.direction,
            "reason": self.reason,
        }


def correlate_daily(x_by_day: dict[date, float], y_by_day: dict[date, float]) -> CorrelationResult:
    """Spearman correlation over the days both series cover.

    Args:
        x_by_day: First series keyed by day
        y_by_day: Second series keyed by day

    Returns:
        CorrelationResult; insufficient when fewer than 7 shared days or NaN
    """
    common = sorted(set(x_by_day) & set(y_by_day))
    if len(common) < MIN_SAMPLES_CORRELATION:
        return CorrelationResult(
            sample_count=len(common),
            reason=f"Insufficient data: {len(common)} samples, need {MIN_SAMPLES_CORRELATION}",
        )

    xs = [x_by_day[d] for d in common]
    ys = [y_by_day[d] for d in common]

    result = stats.spearmanr(xs, ys)
    coefficient = float(result.statistic)
    p_value = float(result.pvalue)

    # Constant series give NaN
    if math.isnan(coefficient) or math.isnan(p_value):
        return CorrelationResult(
            sample_count=len(common),
            reason="Could not compute correlation - data may lack variance",
        )

    if p_value < 0.01:
        significance = Significance.HIGH.value
    elif p_value < 0.05:
        significance = Significance.MEDIUM.value
    else:
        significance = Significance.LOW.value

    abs_corr = abs(coefficient)
    if abs_corr >= 0.7:
        strength = "strong"
    elif abs_corr >= 0.4:
        strength = "moderate"
    elif abs_corr >= 0.2:
        strength = "weak"
    else:
        strength = "negligible"

    return CorrelationResult(
        coefficient=round(coefficient, 4),
        p_value=round(p_value, 6),
        sample_count=len(common),
        significance=significance,
        strength=strength,
        direction="positive" if coefficient > 0 else "negative" if coefficient < 0 else "none",
    )


def series_trend(values: Sequence[float]) -> str:
    """Label a series by its least-squares slope over the sample index.

    The fitted change across the whole series must exceed
    TREND_CHANGE_PERCENT of the series mean to count as a trend.

    Returns:
        increasing, decreasing, stable, or insufficient_data
    """
    if len(values) < MIN_SAMPLES_TREND:
        return "insufficient_data"

    slope = float(stats.linregress(list(range(len(values))), list(values)).slope)
    if not math.isfinite(slope) or slope == 0:
        return "stable"

    level = abs(mean(values))
    if level == 0:
        return "increasing" if slope > 0 else "decreasing"

    change = slope * (len(values) - 1) / level * 100
    if change > TREND_CHANGE_PERCENT:
        return "increasing"
    if change < -TREND_CHANGE_PERCENT:
        return "decreasing"
    return "stable"


def _recommendations(pattern_type: PatternType, corr: CorrelationResult) -> list[str]:
    if corr.coefficient is None:
        return ["Keep logging daily to unlock pattern insights"]

    if corr.strength in ("negligible", "weak"):
        return ["No strong relationship found; keep your current routine"]

    negative = corr.direction == "negative"
    if pattern_type == PatternType.SLEEP_NUTRITION:
        if negative:
            return [
                "Short sleep nights tend to bring higher calorie intake",
                "Aim for 7-9 hours of sleep to steady appetite",
            ]
        return ["Longer sleep goes with higher intake; check portion sizes on rested days"]
    if pattern_type == PatternType.EXERCISE_NUTRITION:
        if negative:
            return ["Refuel properly on training days"]
        return ["Intake tracks training volume well; keep matching fuel to activity"]
    if pattern_type == PatternType.STRESS_EATING:
        if negative:
            return ["Stress appears to suppress appetite; schedule regular meals"]
        return [
            "Higher stress days come with higher intake",
            "Plan stress management and healthy snacks ahead of busy days",
        ]
    if negative:
        return ["More steps go with lower weight; keep daily movement up"]
    return ["Weight rises with activity; review intake on active days"]


class PatternAnalyzer:
    """Detects relationships between daily metric series.

    Persisted analyses are immutable: the first run for a
    (user, pattern type, period, start, end) key is stored and returned on
    every later call with the same key.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize pattern analyzer.

        Args:
            session: Database session
        """
        self.session = session
        self.store = MetricStore(session)
        self.logger = logger.bind(service="pattern")

    async def analyze_patterns(
        self,
        user_id: str,
        pattern_type: str,
        analysis_period: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> PatternAnalysis:
        """Analyze a pattern and persist the result.

        Args:
            user_id: User identifier
            pattern_type: One of PatternType
            analysis_period: daily (7 days), weekly (30) or monthly (90)
            start_date: Window start; defaults from the period
            end_date: Window end; defaults to today

        Returns:
            The stored (or previously stored) PatternAnalysis

        Raises:
            InvalidInputError: If the type, period or window is invalid
        """
        kind = self._parse(PatternType, pattern_type, "pattern type")
        period = self._parse(AnalysisPeriod, analysis_period, "analysis period")

        end = end_date or datetime.now(UTC).date()
        start = start_date or end - timedelta(days=PERIOD_DAYS[period])
        if start > end:
            raise InvalidInputError(
                "start_date must not be after end_date",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )

        existing = await self._find(user_id, kind, period, start, end)
        if existing is not None:
            self.logger.debug("Returning stored analysis", user_id=user_id, pattern=kind.value)
            return existing

        self.logger.info(
            "Analyzing pattern",
            user_id=user_id,
            pattern=kind.value,
            period=period.value,
            start=start.isoformat(),
            end=end.isoformat(),
        )

        x_series, y_series = await self._pattern_series(user_id, kind, start, end)
        corr = correlate_daily(x_series, y_series)
        trend = series_trend(list(x_series.values()))
        x_name, y_name = PATTERN_METRICS[kind]

        key_findings: list[str] = []
        if corr.coefficient is not None:
            key_findings.append(
                f"{corr.strength.capitalize()} {corr.direction} correlation "
                f"(rho={corr.coefficient:.2f}, n={corr.sample_count})"
            )
        else:
            key_findings.append(corr.reason or "Not enough data")
        if trend not in ("insufficient_data", "stable"):
            key_findings.append(f"{x_name.replace('_', ' ')} is {trend} over the period")

        analysis = PatternAnalysis(
            user_id=user_id,
            pattern_type=kind.value,
            analysis_period=period.value,
            start_date=start,
            end_date=end,
            correlation_score=corr.score,
            significance=corr.significance,
            sample_count=corr.sample_count,
            metrics_involved=[x_name, y_name],
            insights={
                "description": PATTERN_DESCRIPTIONS[kind],
                "key_findings": key_findings,
                "trend": trend,
                **corr.to_dict(),
            },
            recommendations=_recommendations(kind, corr),
        )

        try:
            self.session.add(analysis)
            await self.session.commit()
        except IntegrityError:
            # Another request stored the same key first
            await self.session.rollback()
            stored = await self._find(user_id, kind, period, start, end)
            if stored is None:
                raise
            return stored
        except Exception as e:
            await self.session.rollback()
            self.logger.error("Pattern analysis failed", user_id=user_id, error=str(e))
            raise

        self.logger.info(
            "Pattern analysis complete",
            user_id=user_id,
            pattern=kind.value,
            score=analysis.correlation_score,
            significance=analysis.significance,
        )
        return analysis

    async def get_pattern_analysis(
        self,
        user_id: str,
        pattern_types: Sequence[str] | None = None,
        analysis_period: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[PatternAnalysis]:
        """Get stored analyses, newest window first."""
        stmt = select(PatternAnalysis).where(PatternAnalysis.user_id == user_id)
        if pattern_types:
            stmt = stmt.where(PatternAnalysis.pattern_type.in_(list(pattern_types)))
        if analysis_period:
            stmt = stmt.where(PatternAnalysis.analysis_period == analysis_period)
        if start_date is not None:
            stmt = stmt.where(PatternAnalysis.start_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(PatternAnalysis.end_date <= end_date)
        stmt = stmt.order_by(PatternAnalysis.end_date.desc(), PatternAnalysis.created_at.desc())

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_correlation_analysis(
        self,
        user_id: str,
        metric_pairs: Sequence[tuple[str, str]],
        days: int = 30,
    ) -> list[dict[str, Any]]:
        """Correlate arbitrary metric pairs over the last N days (not persisted).

        Raises:
            InvalidInputError: If a metric name is unknown
        """
        end = datetime.now(UTC).date()
        start = end - timedelta(days=days)

        results = []
        for first, second in metric_pairs:
            x = await self._metric_series(user_id, parse_metric_type(first), start, end)
            y = await self._metric_series(user_id, parse_metric_type(second), start, end)
            corr = correlate_daily(x, y)
            results.append(
                {
                    "metric_pair": [first, second],
                    "correlation_score": corr.score,
                    **corr.to_dict(),
                }
            )
        return results

    async def get_trend_analysis(
        self,
        user_id: str,
        metrics: Sequence[str],
        days: int = 30,
        aggregation: str = AnalysisPeriod.DAILY.value,
    ) -> dict[str, dict[str, Any]]:
        """Bucketed averages and a trend label per metric.

        Args:
            user_id: User identifier
            metrics: Metric type names
            days: Window length ending today
            aggregation: daily, weekly or monthly buckets

        Returns:
            Mapping of metric name to {trend, buckets}
        """
        bucket = self._parse(AnalysisPeriod, aggregation, "aggregation")
        end = datetime.now(UTC).date()
        start = end - timedelta(days=days)

        out: dict[str, dict[str, Any]] = {}
        for name in metrics:
            metric_type = parse_metric_type(name)
            daily = await self._metric_series(user_id, metric_type, start, end)

            grouped: dict[date, list[float]] = defaultdict(list)
            for day, value in daily.items():
                grouped[_bucket_start(day, bucket)].append(value)

            out[metric_type.value] = {
                "trend": series_trend(list(daily.values())),
                "buckets": [
                    {
                        "period_start": key.isoformat(),
                        "average": round(mean(values), 2),
                        "min": min(values),
                        "max": max(values),
                        "count": len(values),
                    }
                    for key, values in sorted(grouped.items())
                ],
            }
        return out

    async def _pattern_series(
        self, user_id: str, kind: PatternType, start: date, end: date
    ) -> tuple[dict[date, float], dict[date, float]]:
        calories = await self.store.daily_calories_eaten(user_id, start, end)
        if kind == PatternType.SLEEP_NUTRITION:
            return await self.store.daily_sleep_hours(user_id, start, end), calories
        if kind == PatternType.EXERCISE_NUTRITION:
            return await self.store.daily_workout_minutes(user_id, start, end), calories
        if kind == PatternType.STRESS_EATING:
            stress = await self._metric_series(user_id, MetricType.STRESS_LEVEL, start, end)
            return stress, calories
        steps = await self._metric_series(user_id, MetricType.STEPS, start, end)
        weight = await self._metric_series(user_id, MetricType.WEIGHT, start, end)
        return steps, weight

    async def _metric_series(
        self, user_id: str, metric_type: MetricType, start: date, end: date
    ) -> dict[date, float]:
        agg = "sum" if metric_type in SUMMED_METRICS else "mean"
        return await self.store.daily_values(user_id, metric_type.value, start, end, agg=agg)

    async def _find(
        self,
        user_id: str,
        kind: PatternType,
        period: AnalysisPeriod,
        start: date,
        end: date,
    ) -> PatternAnalysis | None:
        stmt = (
            select(PatternAnalysis)
            .where(PatternAnalysis.user_id == user_id)
            .where(PatternAnalysis.pattern_type == kind.value)
            .where(PatternAnalysis.analysis_period == period.value)
            .where(PatternAnalysis.start_date == start)
            .where(PatternAnalysis.end_date == end)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _parse(enum_cls: Any, value: str, label: str) -> Any:
        try:
            return enum_cls(value)
        except ValueError:
            raise InvalidInputError(
                f"Unknown {label} '{value}'",
                details={"valid": [e.value for e in enum_cls]},
            ) from None


def _bucket_start(day: date, bucket: AnalysisPeriod) -> date:
    if bucket == AnalysisPeriod.WEEKLY:
        return day - timedelta(days=day.weekday())
    if bucket == AnalysisPeriod.MONTHLY:
        return day.replace(day=1)
    return day
