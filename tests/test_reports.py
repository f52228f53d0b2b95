"""Tests for the report generator."""

from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError, NotFoundError
from health_analytics_server.services.goals import GoalService
from health_analytics_server.services.prediction import PredictionEngine
from health_analytics_server.services.reports import ReportGenerator, half_trend
from health_analytics_server.services.scoring import ScoreEngine


class TestHalfTrend:
    """Tests for first-half vs second-half trend labels."""

    def test_growth_is_improving_by_default(self) -> None:
        """Higher second half improves when higher is better."""
        assert half_trend([1.0, 1.0, 2.0, 2.0]) == "improving"

    def test_growth_is_declining_when_lower_is_better(self) -> None:
        """The same growth declines when lower is better."""
        assert half_trend([1.0, 1.0, 2.0, 2.0], higher_is_better=False) == "declining"

    def test_small_change_is_stable(self) -> None:
        """Changes within 5% are stable."""
        assert half_trend([100.0, 100.0, 104.0, 104.0]) == "stable"

    def test_short_and_zero_series(self) -> None:
        """One value is stable; growth from zero counts as improvement."""
        assert half_trend([5.0]) == "stable"
        assert half_trend([0.0, 0.0, 1.0, 1.0]) == "improving"


class TestReportGenerator:
    """Tests for ReportGenerator persistence and contents."""

    async def test_weekly_summary(
        self, async_session: AsyncSession, health_user_30d, today: date
    ) -> None:
        """A week of seeded data is summarised with achievements."""
        user_id, _ = health_user_30d
        start = today - timedelta(days=6)

        report = await ReportGenerator(async_session).generate_health_report(
            user_id, "weekly_summary", start, today
        )

        summary = report.data["summary"]
        assert summary["days_in_period"] == 7
        assert summary["total_meals"] == 21
        assert summary["total_workouts"] == 7
        assert 6000 <= summary["average_steps"] <= 12000
        assert summary["latest_overall_score"] is None
        assert "Completed 7 workouts" in report.data["achievements"]
        assert set(report.data["trends"]) == {"weight", "fitness", "nutrition", "recovery"}
        assert report.access_level == "private"

    async def test_same_period_returns_stored_report(
        self, async_session: AsyncSession, health_user_30d, today: date
    ) -> None:
        """Reports are immutable snapshots keyed by type and period."""
        user_id, _ = health_user_30d
        generator = ReportGenerator(async_session)
        start = today - timedelta(days=29)

        first = await generator.generate_health_report(user_id, "monthly_progress", start, today)
        second = await generator.generate_health_report(user_id, "monthly_progress", start, today)

        assert first.id == second.id
        assert len(await generator.get_health_reports(user_id)) == 1

    async def test_includes_scores_predictions_and_goals(
        self, async_session: AsyncSession, health_user_30d, today: date
    ) -> None:
        """Stored scores, active predictions and completed goals appear in the report."""
        user_id, _ = health_user_30d
        await ScoreEngine(async_session).calculate_health_scores(user_id, today)
        await PredictionEngine(async_session).generate_health_prediction(
            user_id, "weight_projection", today + timedelta(days=30)
        )
        goals = GoalService(async_session)
        goal = await goals.create_health_goal(
            user_id, "fitness_improvement", 100, today + timedelta(days=30)
        )
        await goals.update_health_goal(goal.id, user_id, {"progress_percentage": 100})

        report = await ReportGenerator(async_session).generate_health_report(
            user_id, "weekly_summary", today - timedelta(days=6), today
        )

        assert report.data["scores"]["overall"]["days_scored"] == 1
        assert report.data["summary"]["latest_overall_score"] is not None
        assert [p["prediction_type"] for p in report.data["predictions"]] == [
            "weight_projection"
        ]
        assert "Completed goal: fitness improvement" in report.data["achievements"]

    async def test_empty_period(self, async_session: AsyncSession, today: date) -> None:
        """No data still yields a report with logging recommendations."""
        report = await ReportGenerator(async_session).generate_health_report(
            "user_empty", "weekly_summary", today - timedelta(days=6), today
        )

        assert report.data["summary"]["total_meals"] == 0
        assert report.data["summary"]["average_sleep_hours"] is None
        assert "Log meals to get nutrition insights" in report.data["recommendations"]
        assert "Build toward 150 minutes of activity per week" in report.data["recommendations"]

    async def test_invalid_requests(self, async_session: AsyncSession, today: date) -> None:
        """Unknown type or inverted period raises InvalidInputError."""
        generator = ReportGenerator(async_session)
        with pytest.raises(InvalidInputError):
            await generator.generate_health_report("user_001", "daily_gossip", today, today)
        with pytest.raises(InvalidInputError):
            await generator.generate_health_report(
                "user_001", "weekly_summary", today, today - timedelta(days=1)
            )

    async def test_lookup_is_owner_scoped(self, async_session: AsyncSession, today: date) -> None:
        """Another user's report id is not found; deleted reports are gone."""
        generator = ReportGenerator(async_session)
        report = await generator.generate_health_report(
            "user_001", "weekly_summary", today - timedelta(days=6), today
        )

        with pytest.raises(NotFoundError):
            await generator.get_health_report_by_id(report.id, "user_002")

        await generator.delete_health_report(report.id, "user_001")
        with pytest.raises(NotFoundError):
            await generator.get_health_report_by_id(report.id, "user_001")
