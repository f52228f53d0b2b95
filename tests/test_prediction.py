"""Tests for the prediction engine."""

import asyncio
from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from health_analytics_server.core.config import Settings
from health_analytics_server.core.exceptions import ConflictError, InvalidInputError
from health_analytics_server.core.locks import KeyedLockRegistry
from health_analytics_server.models.prediction import Prediction
from health_analytics_server.services.goals import GoalService
from health_analytics_server.services.metric_store import MetricStore, NewMetric
from health_analytics_server.services.prediction import (
    PredictionEngine,
    fit_weight_trend,
    slope_trend,
    supersession_key,
    weight_confidence,
)


class TestWeightHelpers:
    """Tests for the pure regression helpers."""

    def test_fit_recovers_linear_slope(self) -> None:
        """A perfect line gives its slope and intercept back."""
        origin = datetime(2026, 1, 1, tzinfo=UTC)
        samples = [(origin + timedelta(days=i), 70.0 - 0.5 * i) for i in range(8)]

        slope, intercept = fit_weight_trend(samples)

        assert slope == pytest.approx(-0.5)
        assert intercept == pytest.approx(70.0)

    def test_fit_with_shared_timestamp(self) -> None:
        """Identical timestamps give slope 0 and the mean."""
        ts = datetime(2026, 1, 1, tzinfo=UTC)
        slope, intercept = fit_weight_trend([(ts, 70.0), (ts, 72.0)])
        assert slope == 0.0
        assert intercept == 71.0

    def test_weight_confidence_clamped(self) -> None:
        """Confidence stays inside [0.3, 0.95]."""
        assert weight_confidence([80.0, 80.0, 80.0]) == 0.95
        assert weight_confidence([50.0, 90.0, 130.0]) == 0.3

    def test_slope_trend(self) -> None:
        """Sign of the slope picks the label."""
        assert slope_trend(0.1) == "increasing"
        assert slope_trend(-0.1) == "decreasing"
        assert slope_trend(0.0) == "stable"


class TestWeightProjection:
    """Tests for weight_projection predictions."""

    async def test_insufficient_history(self, async_session: AsyncSession) -> None:
        """Fewer than 7 samples: value 0, confidence 0.3, low quality."""
        now = datetime.now(UTC)
        await MetricStore(async_session).append_many(
            "user_001",
            [
                NewMetric(metric_type="weight", value=80, timestamp=now - timedelta(days=i))
                for i in range(3)
            ],
        )

        prediction = await PredictionEngine(async_session).generate_health_prediction(
            "user_001", "weight_projection", now.date() + timedelta(days=30)
        )

        assert prediction.predicted_value == 0.0
        assert prediction.confidence_score == 0.3
        assert prediction.low_quality is True
        assert prediction.input_summary["data_points"] == 3
        assert prediction.is_active is True

    async def test_rising_series(
        self, async_session: AsyncSession, health_user_rising_weight: str
    ) -> None:
        """Ten days rising 0.2 kg/day projects upward with positive slope."""
        target = datetime.now(UTC).date() + timedelta(days=30)

        prediction = await PredictionEngine(async_session).generate_health_prediction(
            health_user_rising_weight, "weight_projection", target
        )

        assert prediction.low_quality is False
        assert prediction.input_summary["trend"] == "increasing"
        assert prediction.input_summary["slope"] == pytest.approx(0.2, abs=1e-3)
        assert 87.5 < prediction.predicted_value < 88.0
        assert prediction.confidence_score == 0.95
        assert "Consider reducing calorie intake" in prediction.recommendations

    async def test_model_version_recorded(
        self, async_session: AsyncSession, health_user_rising_weight: str
    ) -> None:
        """Explicit model version wins over the configured default."""
        prediction = await PredictionEngine(async_session).generate_health_prediction(
            health_user_rising_weight,
            "weight_projection",
            date.today() + timedelta(days=7),
            model_version="2.1.0",
        )
        assert prediction.model_version == "2.1.0"


class TestSupersession:
    """Tests for one-active-prediction-per-type."""

    async def test_new_prediction_deactivates_previous(self, async_session: AsyncSession) -> None:
        """Generating again leaves exactly one active prediction of the type."""
        engine = PredictionEngine(async_session)
        target = datetime.now(UTC).date() + timedelta(days=14)

        first = await engine.generate_health_prediction(
            "user_001", "performance_optimization", target
        )
        second = await engine.generate_health_prediction(
            "user_001", "performance_optimization", target
        )
        risk = await engine.generate_health_prediction("user_001", "health_risk", target)

        active = await engine.get_predictions("user_001", is_active=True)
        inactive = await engine.get_predictions("user_001", is_active=False)

        assert {p.id for p in active} == {second.id, risk.id}
        assert [p.id for p in inactive] == [first.id]

        current = await engine.get_current_prediction("user_001", "performance_optimization")
        assert current is not None
        assert current.id == second.id

    async def test_unknown_type_rejected(self, async_session: AsyncSession) -> None:
        """Unknown prediction types raise InvalidInputError."""
        with pytest.raises(InvalidInputError):
            await PredictionEngine(async_session).generate_health_prediction(
                "user_001", "lottery_numbers", date.today()
            )

    async def test_activation_waits_for_the_type_lock(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A writer holding the (user, type) key blocks activation until it lets go."""
        locks = KeyedLockRegistry()
        target = datetime.now(UTC).date() + timedelta(days=14)

        async with session_factory() as session:
            engine = PredictionEngine(session, locks=locks)
            async with locks.hold(supersession_key("user_001", "health_risk")):
                task = asyncio.create_task(
                    engine.generate_health_prediction("user_001", "health_risk", target)
                )
                await asyncio.sleep(0.05)
                assert not task.done()

            prediction = await task

        assert prediction.is_active is True
        assert len(locks) == 0

    async def test_other_types_do_not_wait(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Holding one type's key leaves other types free."""
        locks = KeyedLockRegistry()
        target = datetime.now(UTC).date() + timedelta(days=14)

        async with session_factory() as session:
            engine = PredictionEngine(session, locks=locks)
            async with locks.hold(supersession_key("user_001", "health_risk")):
                prediction = await asyncio.wait_for(
                    engine.generate_health_prediction(
                        "user_001", "performance_optimization", target
                    ),
                    timeout=5,
                )

        assert prediction.is_active is True

    async def test_second_active_row_rejected_by_index(self, async_session: AsyncSession) -> None:
        """The database refuses two active rows for one (user, type)."""
        for _ in range(2):
            async_session.add(
                Prediction(
                    user_id="user_001",
                    prediction_type="health_risk",
                    target_date=date.today(),
                    predicted_value=10.0,
                    confidence_score=0.7,
                    is_active=True,
                )
            )
        with pytest.raises(IntegrityError):
            await async_session.commit()
        await async_session.rollback()

    async def test_persistent_conflict_raises_conflict_error(
        self,
        async_session: AsyncSession,
        test_settings: Settings,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Activation retries IntegrityError, then gives up with ConflictError."""
        settings = test_settings.model_copy(update={"score_conflict_retries": 2})
        engine = PredictionEngine(async_session, settings=settings)
        attempts = {"n": 0}

        async def conflicting_commit() -> None:
            attempts["n"] += 1
            raise IntegrityError("INSERT INTO predictions", {}, Exception("duplicate active"))

        monkeypatch.setattr(async_session, "commit", conflicting_commit)

        with pytest.raises(ConflictError):
            await engine.generate_health_prediction(
                "user_001", "performance_optimization", date.today()
            )
        assert attempts["n"] == 3

    async def test_current_prediction_is_none_without_active_rows(
        self, async_session: AsyncSession
    ) -> None:
        """No active row of the type means no current prediction."""
        engine = PredictionEngine(async_session)
        assert await engine.get_current_prediction("user_001", "health_risk") is None


class TestHealthRisk:
    """Tests for additive risk scoring."""

    async def test_risk_bands_add_up(self, async_session: AsyncSession) -> None:
        """High heart rate (25) plus low steps (20) scores 45."""
        now = datetime.now(UTC)
        await MetricStore(async_session).append_many(
            "user_001",
            [
                NewMetric(metric_type="heart_rate", value=110, timestamp=now - timedelta(days=1)),
                NewMetric(metric_type="heart_rate", value=106, timestamp=now - timedelta(days=2)),
                NewMetric(metric_type="steps", value=3000, timestamp=now - timedelta(days=1)),
            ],
        )

        prediction = await PredictionEngine(async_session).generate_health_prediction(
            "user_001", "health_risk", now.date()
        )

        assert prediction.predicted_value == 45.0
        assert prediction.confidence_score == 0.7
        assert prediction.input_summary["risk_factors"] == [
            "Elevated resting heart rate",
            "Low activity level",
        ]
        assert "Monitor heart rate regularly" in prediction.recommendations
        assert "Consult with a healthcare professional" not in prediction.recommendations

    async def test_no_metrics_is_low_quality(self, async_session: AsyncSession) -> None:
        """Without any metrics the assessment is flagged low quality."""
        prediction = await PredictionEngine(async_session).generate_health_prediction(
            "user_001", "health_risk", date.today()
        )
        assert prediction.predicted_value == 0.0
        assert prediction.low_quality is True


class TestGoalAchievement:
    """Tests for goal achievement predictions."""

    async def test_no_goals(self, async_session: AsyncSession) -> None:
        """No active goals gives value 0 and confidence 0."""
        prediction = await PredictionEngine(async_session).generate_health_prediction(
            "user_001", "goal_achievement", date.today() + timedelta(days=30)
        )
        assert prediction.predicted_value == 0.0
        assert prediction.confidence_score == 0.0
        assert prediction.input_summary["goals_analyzed"] == 0

    async def test_fresh_goal_blends_probability(self, async_session: AsyncSession) -> None:
        """A new goal (0% progress, 50% probability) predicts 50."""
        today = datetime.now(UTC).date()
        await GoalService(async_session).create_health_goal(
            "user_001", "fitness_improvement", 100, today + timedelta(days=10)
        )

        prediction = await PredictionEngine(async_session).generate_health_prediction(
            "user_001", "goal_achievement", today + timedelta(days=30)
        )

        assert prediction.predicted_value == 50.0
        assert prediction.input_summary["goals_analyzed"] == 1
        assert "Track progress regularly and adjust as needed" in prediction.recommendations
