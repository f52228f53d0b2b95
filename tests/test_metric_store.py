"""Tests for the metric store."""

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.models.base import as_utc
from health_analytics_server.services.metric_store import (
    MetricStore,
    NewMetric,
    day_bounds,
    validate_metric,
    window_start,
)
from health_analytics_server.services.thresholds import ThresholdService


class TestValidateMetric:
    """Tests for sample validation."""

    def test_valid_sample_returns_type(self) -> None:
        """Known type inside its bounds is accepted."""
        metric_type = validate_metric(NewMetric(metric_type="heart_rate", value=72))
        assert metric_type.value == "heart_rate"

    def test_unknown_type_rejected(self) -> None:
        """Unknown metric names list the valid types."""
        with pytest.raises(InvalidInputError) as exc_info:
            validate_metric(NewMetric(metric_type="mood", value=3))
        assert "heart_rate" in exc_info.value.details["valid_types"]

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), -1.0, 301.0])
    def test_out_of_range_or_non_finite_rejected(self, value: float) -> None:
        """Heart rate must be finite and within 0-300."""
        with pytest.raises(InvalidInputError):
            validate_metric(NewMetric(metric_type="heart_rate", value=value))

    def test_confidence_outside_unit_interval_rejected(self) -> None:
        """Confidence must be between 0 and 1."""
        with pytest.raises(InvalidInputError):
            validate_metric(NewMetric(metric_type="steps", value=100, confidence=1.5))

    @pytest.mark.parametrize("value", [True, False])
    def test_boolean_value_rejected(self, value: bool) -> None:
        """Booleans are not numeric samples even though bool subclasses int."""
        with pytest.raises(InvalidInputError):
            validate_metric(NewMetric(metric_type="steps", value=value))

    def test_unknown_source_rejected(self) -> None:
        """Only manual and automatic sources exist."""
        with pytest.raises(InvalidInputError):
            validate_metric(NewMetric(metric_type="steps", value=100, source="import"))


class TestDayBounds:
    """Tests for UTC day windows."""

    def test_day_bounds_cover_one_utc_day(self) -> None:
        """Start is midnight UTC, end is the next midnight."""
        start, end = day_bounds(date(2026, 3, 1))
        assert start == datetime(2026, 3, 1, tzinfo=UTC)
        assert end - start == timedelta(days=1)


class TestWindowStart:
    """Tests for statistics windows."""

    @pytest.mark.parametrize(
        ("time_range", "expected"),
        [
            ("hour", datetime(2026, 3, 31, 11, 0, tzinfo=UTC)),
            ("day", datetime(2026, 3, 31, tzinfo=UTC)),
            ("week", datetime(2026, 3, 24, 12, 0, tzinfo=UTC)),
            (None, datetime(2026, 3, 24, 12, 0, tzinfo=UTC)),
            ("month", datetime(2026, 2, 28, 12, 0, tzinfo=UTC)),
        ],
    )
    def test_window_start(self, time_range: str | None, expected: datetime) -> None:
        """Month steps back a calendar month, clamped to its last day."""
        end = datetime(2026, 3, 31, 12, 0, tzinfo=UTC)
        assert window_start(end, time_range) == expected

    def test_january_month_window_crosses_year(self) -> None:
        """A month back from January lands in December."""
        end = datetime(2026, 1, 15, tzinfo=UTC)
        assert window_start(end, "month") == datetime(2025, 12, 15, tzinfo=UTC)

    def test_unknown_range_rejected(self) -> None:
        """Only hour, day, week and month are accepted."""
        with pytest.raises(InvalidInputError):
            window_start(datetime(2026, 1, 15, tzinfo=UTC), "year")


class TestMetricStore:
    """Tests for MetricStore persistence."""

    async def test_append_fills_default_unit(self, async_session: AsyncSession) -> None:
        """Samples without a unit get the metric's default unit."""
        store = MetricStore(async_session)
        metric = await store.append("user_001", NewMetric(metric_type="weight", value=80.5))

        assert metric.id is not None
        assert metric.unit == "kg"
        assert metric.source == "manual"

    async def test_append_many_is_all_or_nothing(self, async_session: AsyncSession) -> None:
        """One invalid sample stores nothing."""
        store = MetricStore(async_session)
        with pytest.raises(InvalidInputError):
            await store.append_many(
                "user_001",
                [
                    NewMetric(metric_type="steps", value=1000),
                    NewMetric(metric_type="blood_oxygen", value=120),
                ],
            )
        assert await store.count("user_001") == 0

    async def test_query_orders_oldest_first(self, async_session: AsyncSession) -> None:
        """Query returns samples in timestamp order within the window."""
        store = MetricStore(async_session)
        now = datetime.now(UTC)
        await store.append_many(
            "user_001",
            [
                NewMetric(metric_type="steps", value=300, timestamp=now - timedelta(hours=1)),
                NewMetric(metric_type="steps", value=100, timestamp=now - timedelta(hours=3)),
                NewMetric(metric_type="steps", value=200, timestamp=now - timedelta(hours=2)),
                NewMetric(metric_type="heart_rate", value=70, timestamp=now),
            ],
        )

        steps = await store.query("user_001", "steps")
        assert [m.value for m in steps] == [100, 200, 300]

        windowed = await store.query(
            "user_001", "steps", start=now - timedelta(hours=2, minutes=30), limit=1
        )
        assert [m.value for m in windowed] == [200]

    async def test_query_is_user_scoped(self, async_session: AsyncSession) -> None:
        """Users never see each other's samples."""
        store = MetricStore(async_session)
        await store.append("user_001", NewMetric(metric_type="steps", value=100))
        await store.append("user_002", NewMetric(metric_type="steps", value=200))

        assert [m.value for m in await store.query("user_002")] == [200]

    async def test_naive_timestamps_treated_as_utc(self, async_session: AsyncSession) -> None:
        """A naive timestamp is stored as the same wall time in UTC."""
        store = MetricStore(async_session)
        naive = datetime(2026, 1, 15, 9, 30)
        await store.append("user_001", NewMetric(metric_type="steps", value=10, timestamp=naive))

        latest = await store.latest("user_001", "steps")
        assert latest is not None
        assert as_utc(latest.timestamp) == naive.replace(tzinfo=UTC)

    async def test_daily_values_sum_and_mean(self, async_session: AsyncSession) -> None:
        """Per-day aggregation by sum or mean."""
        store = MetricStore(async_session)
        day = date(2026, 2, 10)
        base = datetime.combine(day, datetime.min.time(), tzinfo=UTC)
        await store.append_many(
            "user_001",
            [
                NewMetric(metric_type="steps", value=4000, timestamp=base + timedelta(hours=9)),
                NewMetric(metric_type="steps", value=6000, timestamp=base + timedelta(hours=18)),
            ],
        )

        summed = await store.daily_values("user_001", "steps", day, day, agg="sum")
        averaged = await store.daily_values("user_001", "steps", day, day)
        assert summed == {day: 10000.0}
        assert averaged == {day: 5000.0}

    async def test_day_logs_validate_ranges(self, async_session: AsyncSession) -> None:
        """Negative macros, unknown intensity and long sleep are rejected."""
        store = MetricStore(async_session)
        now = datetime.now(UTC)

        with pytest.raises(InvalidInputError):
            await store.log_meal("user_001", now, calories=-5)
        with pytest.raises(InvalidInputError):
            await store.log_workout("user_001", now, duration_minutes=30, intensity="extreme")
        with pytest.raises(InvalidInputError):
            await store.log_sleep("user_001", now, duration_hours=25)

    async def test_daily_calories_eaten(self, async_session: AsyncSession) -> None:
        """Meals are totalled per UTC day."""
        store = MetricStore(async_session)
        day = date(2026, 2, 10)
        base = datetime.combine(day, datetime.min.time(), tzinfo=UTC)
        await store.log_meal("user_001", base + timedelta(hours=8), calories=500)
        await store.log_meal("user_001", base + timedelta(hours=19), calories=900)
        await store.log_meal("user_001", base + timedelta(days=1, hours=8), calories=400)

        totals = await store.daily_calories_eaten("user_001", day, day + timedelta(days=1))
        assert totals == {day: 1400.0, day + timedelta(days=1): 400.0}

    async def test_cleanup_retention(self, async_session: AsyncSession) -> None:
        """Only rows strictly older than the cutoff are deleted."""
        store = MetricStore(async_session)
        now = datetime.now(UTC)
        await store.append_many(
            "user_001",
            [
                NewMetric(metric_type="steps", value=1, timestamp=now - timedelta(days=400)),
                NewMetric(metric_type="steps", value=2, timestamp=now - timedelta(days=10)),
            ],
        )
        await store.log_meal("user_001", now - timedelta(days=400), calories=500)

        deleted = await store.cleanup_retention(now - timedelta(days=365))

        assert deleted["health_metrics"] == 1
        assert deleted["meal_logs"] == 1
        assert [m.value for m in await store.query("user_001")] == [2]

    async def test_erase_user_data(self, async_session: AsyncSession) -> None:
        """Erase removes one user's rows and leaves others alone."""
        store = MetricStore(async_session)
        now = datetime.now(UTC)
        await store.append("user_001", NewMetric(metric_type="steps", value=1))
        await store.log_sleep("user_001", now, duration_hours=7)
        await store.append("user_002", NewMetric(metric_type="steps", value=2))
        await ThresholdService(async_session).set_threshold("user_001", "heart_rate", max_value=120)

        deleted = await store.erase_user_data("user_001")

        assert deleted["health_metrics"] == 1
        assert deleted["sleep_logs"] == 1
        assert deleted["alert_threshold_configs"] == 1
        assert deleted["health_insights"] == 0
        assert await store.count("user_001") == 0
        assert await store.count("user_002") == 1

    async def test_count_is_per_user(self, async_session: AsyncSession) -> None:
        """Count is per user."""
        store = MetricStore(async_session)
        await store.append_many(
            "user_001",
            [NewMetric(metric_type="steps", value=v) for v in (1, 2, 3)],
        )
        await store.append("user_002", NewMetric(metric_type="steps", value=4))

        assert await store.count("user_001") == 3
        assert await store.count("user_003") == 0


class TestMetricStatistics:
    """Tests for windowed metric statistics."""

    async def test_statistics_over_window(self, async_session: AsyncSession) -> None:
        """Only samples of the metric inside the window are summarised."""
        store = MetricStore(async_session)
        now = datetime.now(UTC)
        await store.append_many(
            "user_001",
            [
                NewMetric(metric_type="heart_rate", value=60, timestamp=now - timedelta(hours=2)),
                NewMetric(metric_type="heart_rate", value=80, timestamp=now - timedelta(hours=1)),
                NewMetric(metric_type="heart_rate", value=100, timestamp=now - timedelta(days=9)),
                NewMetric(metric_type="steps", value=5000, timestamp=now - timedelta(hours=1)),
            ],
        )

        stats = await store.metric_statistics("user_001", "heart_rate", "week", now=now)

        assert stats["count"] == 2
        assert stats["avg"] == 70.0
        assert stats["min"] == 60.0
        assert stats["max"] == 80.0
        assert stats["time_range"] == "week"

    async def test_statistics_without_data_are_zero(self, async_session: AsyncSession) -> None:
        """An empty window reports zeros rather than nulls."""
        stats = await MetricStore(async_session).metric_statistics("user_001", "weight", "hour")

        assert (stats["count"], stats["avg"], stats["min"], stats["max"]) == (0, 0.0, 0.0, 0.0)

    async def test_statistics_reject_unknown_metric(self, async_session: AsyncSession) -> None:
        """Unknown metric names are invalid input."""
        with pytest.raises(InvalidInputError):
            await MetricStore(async_session).metric_statistics("user_001", "mood", "day")
