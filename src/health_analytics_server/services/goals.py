"""Health goal management."""

import math
from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.core.exceptions import InvalidInputError, NotFoundError
from health_analytics_server.models.goal import GoalPriority, GoalStatus, GoalType, HealthGoal

logger = structlog.get_logger()

# Fields a caller may change through update_health_goal
UPDATABLE_FIELDS = {
    "target_value",
    "current_value",
    "target_date",
    "deadline_date",
    "priority",
    "progress_percentage",
    "achievement_probability",
    "status",
    "milestones",
}


def _check_enum(enum_cls: Any, value: str, label: str) -> None:
    if value not in {e.value for e in enum_cls}:
        raise InvalidInputError(
            f"Unknown {label} '{value}'",
            details={"valid": [e.value for e in enum_cls]},
        )


def _check_percentage(name: str, value: float) -> None:
    if not math.isfinite(value) or not 0 <= value <= 100:
        raise InvalidInputError(f"{name} must be between 0 and 100", details={name: value})


def _normalise_milestones(milestones: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    normalised = []
    for m in milestones:
        if "target" not in m:
            raise InvalidInputError("Each milestone needs a target", details={"milestone": m})
        normalised.append(
            {
                "target": float(m["target"]),
                "achieved": bool(m.get("achieved", False)),
                "achieved_at": m.get("achieved_at"),
            }
        )
    return normalised


def stamp_milestones(goal: HealthGoal, now: datetime | None = None) -> int:
    """Mark milestones whose target the current value has reached.

    Direction follows the goal type: weight loss goals count down, every
    other goal counts up.

    Returns:
        Number of milestones newly achieved
    """
    now = now or datetime.now(UTC)
    counts_down = goal.goal_type == GoalType.WEIGHT_LOSS.value
    newly = 0
    updated = []
    for m in goal.milestones or []:
        m = dict(m)
        reached = (
            goal.current_value <= m["target"] if counts_down else goal.current_value >= m["target"]
        )
        if reached and not m.get("achieved"):
            m["achieved"] = True
            m["achieved_at"] = now.isoformat()
            newly += 1
        updated.append(m)
    # Reassign so SQLAlchemy sees the JSON change
    goal.milestones = updated
    return newly


class GoalService:
    """CRUD for health goals."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.logger = logger.bind(service="goals")

    async def create_health_goal(
        self,
        user_id: str,
        goal_type: str,
        target_value: float,
        target_date: date,
        deadline_date: date | None = None,
        priority: str = GoalPriority.MEDIUM.value,
        milestones: Sequence[dict[str, Any]] | None = None,
    ) -> HealthGoal:
        """Create an active goal with zero progress and 50% probability.

        Raises:
            InvalidInputError: If goal type, priority or milestones are invalid
        """
        _check_enum(GoalType, goal_type, "goal type")
        _check_enum(GoalPriority, priority, "priority")
        if not math.isfinite(target_value):
            raise InvalidInputError("target_value must be a finite number")

        goal = HealthGoal(
            user_id=user_id,
            goal_type=goal_type,
            target_value=target_value,
            current_value=0.0,
            target_date=target_date,
            deadline_date=deadline_date,
            priority=priority,
            progress_percentage=0.0,
            achievement_probability=50.0,
            status=GoalStatus.ACTIVE.value,
            milestones=_normalise_milestones(milestones or []),
        )
        self.session.add(goal)
        await self.session.commit()

        self.logger.info("Goal created", user_id=user_id, goal_id=goal.id, goal_type=goal_type)
        return goal

    async def get_health_goal(self, goal_id: str, user_id: str) -> HealthGoal:
        """Get one goal.

        Raises:
            NotFoundError: If the goal does not exist for this user
        """
        stmt = select(HealthGoal).where(HealthGoal.id == goal_id, HealthGoal.user_id == user_id)
        result = await self.session.execute(stmt)
        goal = result.scalar_one_or_none()
        if goal is None:
            raise NotFoundError(f"Goal '{goal_id}' not found", details={"goal_id": goal_id})
        return goal

    async def get_health_goals(
        self,
        user_id: str,
        status: str | None = None,
        goal_type: str | None = None,
        priority: str | None = None,
    ) -> list[HealthGoal]:
        """List goals, soonest target date first."""
        stmt = select(HealthGoal).where(HealthGoal.user_id == user_id)
        if status:
            stmt = stmt.where(HealthGoal.status == status)
        if goal_type:
            stmt = stmt.where(HealthGoal.goal_type == goal_type)
        if priority:
            stmt = stmt.where(HealthGoal.priority == priority)
        stmt = stmt.order_by(HealthGoal.target_date.asc())

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_health_goal(
        self, goal_id: str, user_id: str, updates: dict[str, Any]
    ) -> HealthGoal:
        """Apply a partial update.

        Progress reaching 100 completes the goal. Milestones whose target the
        current value has reached are stamped achieved.

        Raises:
            NotFoundError: If the goal does not exist
            InvalidInputError: If a field is unknown or out of range
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInputError(
                "Unknown goal fields", details={"fields": sorted(unknown)}
            )
        if "status" in updates:
            _check_enum(GoalStatus, updates["status"], "status")
        if "priority" in updates:
            _check_enum(GoalPriority, updates["priority"], "priority")
        for name in ("progress_percentage", "achievement_probability"):
            if name in updates:
                _check_percentage(name, updates[name])

        goal = await self.get_health_goal(goal_id, user_id)

        for name, value in updates.items():
            if name == "milestones":
                value = _normalise_milestones(value)
            setattr(goal, name, value)

        if "current_value" in updates and "progress_percentage" not in updates:
            goal.progress_percentage = self._progress_from_value(goal)

        stamp_milestones(goal)
        if goal.progress_percentage >= 100 and goal.status == GoalStatus.ACTIVE.value:
            goal.progress_percentage = 100.0
            goal.status = GoalStatus.COMPLETED.value

        await self.session.commit()
        self.logger.info(
            "Goal updated",
            user_id=user_id,
            goal_id=goal_id,
            fields=sorted(updates),
            status=goal.status,
        )
        return goal

    async def delete_health_goal(self, goal_id: str, user_id: str) -> None:
        """Delete a goal.

        Raises:
            NotFoundError: If the goal does not exist
        """
        goal = await self.get_health_goal(goal_id, user_id)
        await self.session.delete(goal)
        await self.session.commit()
        self.logger.info("Goal deleted", user_id=user_id, goal_id=goal_id)

    @staticmethod
    def _progress_from_value(goal: HealthGoal) -> float:
        """Progress for goals that count up from zero toward target_value."""
        if goal.goal_type == GoalType.WEIGHT_LOSS.value or goal.target_value <= 0:
            return goal.progress_percentage
        return max(0.0, min(100.0, goal.current_value / goal.target_value * 100))
