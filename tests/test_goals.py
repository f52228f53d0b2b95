"""Tests for goal management."""

from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError, NotFoundError
from health_analytics_server.models.goal import HealthGoal
from health_analytics_server.services.goals import GoalService, stamp_milestones

TARGET = date(2026, 12, 31)


class TestStampMilestones:
    """Tests for milestone stamping."""

    def test_counting_up(self) -> None:
        """Milestones at or below the current value are achieved."""
        goal = HealthGoal(
            goal_type="fitness_improvement",
            current_value=50.0,
            milestones=[
                {"target": 25.0, "achieved": False, "achieved_at": None},
                {"target": 50.0, "achieved": False, "achieved_at": None},
                {"target": 75.0, "achieved": False, "achieved_at": None},
            ],
        )

        assert stamp_milestones(goal) == 2
        assert [m["achieved"] for m in goal.milestones] == [True, True, False]
        assert goal.milestones[0]["achieved_at"] is not None

    def test_weight_loss_counts_down(self) -> None:
        """Weight loss milestones are reached from above."""
        goal = HealthGoal(
            goal_type="weight_loss",
            current_value=84.0,
            milestones=[
                {"target": 85.0, "achieved": False, "achieved_at": None},
                {"target": 80.0, "achieved": False, "achieved_at": None},
            ],
        )

        assert stamp_milestones(goal) == 1
        assert [m["achieved"] for m in goal.milestones] == [True, False]

    def test_already_achieved_not_restamped(self) -> None:
        """An achieved milestone keeps its original timestamp."""
        goal = HealthGoal(
            goal_type="muscle_gain",
            current_value=10.0,
            milestones=[{"target": 5.0, "achieved": True, "achieved_at": "2026-01-01T00:00:00"}],
        )

        assert stamp_milestones(goal) == 0
        assert goal.milestones[0]["achieved_at"] == "2026-01-01T00:00:00"


class TestGoalService:
    """Tests for GoalService CRUD."""

    async def test_create_defaults(self, async_session: AsyncSession) -> None:
        """New goals start active with 0% progress and 50% probability."""
        goal = await GoalService(async_session).create_health_goal(
            "user_001",
            "weight_loss",
            75.0,
            TARGET,
            milestones=[{"target": 80}],
        )

        assert goal.status == "active"
        assert goal.priority == "medium"
        assert goal.progress_percentage == 0.0
        assert goal.achievement_probability == 50.0
        assert goal.milestones == [{"target": 80.0, "achieved": False, "achieved_at": None}]

    async def test_create_validates(self, async_session: AsyncSession) -> None:
        """Unknown type, priority or malformed milestones are rejected."""
        service = GoalService(async_session)
        with pytest.raises(InvalidInputError):
            await service.create_health_goal("user_001", "get_rich", 1.0, TARGET)
        with pytest.raises(InvalidInputError):
            await service.create_health_goal(
                "user_001", "weight_loss", 70.0, TARGET, priority="urgent"
            )
        with pytest.raises(InvalidInputError):
            await service.create_health_goal(
                "user_001", "weight_loss", 70.0, TARGET, milestones=[{"label": "half way"}]
            )

    async def test_progress_100_completes(self, async_session: AsyncSession) -> None:
        """Reaching 100% progress completes an active goal."""
        service = GoalService(async_session)
        goal = await service.create_health_goal("user_001", "fitness_improvement", 60.0, TARGET)

        updated = await service.update_health_goal(
            goal.id, "user_001", {"progress_percentage": 100}
        )

        assert updated.status == "completed"
        assert updated.progress_percentage == 100.0

    async def test_current_value_drives_progress(self, async_session: AsyncSession) -> None:
        """Counting-up goals derive progress from current_value and stamp milestones."""
        service = GoalService(async_session)
        goal = await service.create_health_goal(
            "user_001",
            "muscle_gain",
            10.0,
            TARGET,
            milestones=[{"target": 2.5}, {"target": 5.0}, {"target": 7.5}],
        )

        updated = await service.update_health_goal(goal.id, "user_001", {"current_value": 5.0})

        assert updated.progress_percentage == 50.0
        assert updated.status == "active"
        assert [m["achieved"] for m in updated.milestones] == [True, True, False]

    async def test_update_validates(self, async_session: AsyncSession) -> None:
        """Unknown fields and out-of-range percentages are rejected."""
        service = GoalService(async_session)
        goal = await service.create_health_goal("user_001", "weight_gain", 80.0, TARGET)

        with pytest.raises(InvalidInputError):
            await service.update_health_goal(goal.id, "user_001", {"user_id": "user_002"})
        with pytest.raises(InvalidInputError):
            await service.update_health_goal(goal.id, "user_001", {"progress_percentage": 120})
        with pytest.raises(InvalidInputError):
            await service.update_health_goal(goal.id, "user_001", {"status": "abandoned"})

    async def test_list_filters_and_order(self, async_session: AsyncSession) -> None:
        """Goals list soonest target first and filter by status."""
        service = GoalService(async_session)
        later = await service.create_health_goal("user_001", "weight_loss", 70.0, TARGET)
        sooner = await service.create_health_goal(
            "user_001", "fitness_improvement", 50.0, TARGET - timedelta(days=90)
        )
        await service.update_health_goal(later.id, "user_001", {"status": "paused"})

        all_goals = await service.get_health_goals("user_001")
        active = await service.get_health_goals("user_001", status="active")

        assert [g.id for g in all_goals] == [sooner.id, later.id]
        assert [g.id for g in active] == [sooner.id]

    async def test_owner_scoped_and_delete(self, async_session: AsyncSession) -> None:
        """Other users cannot see a goal; deleted goals are gone."""
        service = GoalService(async_session)
        goal = await service.create_health_goal("user_001", "health_improvement", 1.0, TARGET)

        with pytest.raises(NotFoundError):
            await service.get_health_goal(goal.id, "user_002")

        await service.delete_health_goal(goal.id, "user_001")
        with pytest.raises(NotFoundError):
            await service.get_health_goal(goal.id, "user_001")
