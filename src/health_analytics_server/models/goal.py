"""Health goal model."""

from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Date, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class GoalType(str, Enum):
    """Supported goal types."""

    WEIGHT_LOSS = "weight_loss"
    WEIGHT_GAIN = "weight_gain"
    MUSCLE_GAIN = "muscle_gain"
    FITNESS_IMPROVEMENT = "fitness_improvement"
    HEALTH_IMPROVEMENT = "health_improvement"


class GoalPriority(str, Enum):
    """Goal priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GoalStatus(str, Enum):
    """Goal lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"  # Set automatically when progress reaches 100
    PAUSED = "paused"
    CANCELLED = "cancelled"


class HealthGoal(Base, UserScopedMixin, TimestampMixin):
    """A user health goal with progress tracking."""

    __tablename__ = "health_goals"
    __table_args__ = {"comment": "User health goals and progress"}

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    goal_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_value: Mapped[float] = mapped_column(Float, nullable=False)
    current_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    target_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Date the goal should be reached by",
    )
    deadline_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
        comment="Hard deadline, if different from target_date",
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=GoalPriority.MEDIUM.value,
    )
    progress_percentage: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Progress toward target (0-100)",
    )
    achievement_probability: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=50.0,
        comment="Estimated probability of reaching the goal (0-100)",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=GoalStatus.ACTIVE.value,
        index=True,
    )
    milestones: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
        comment="[{target, achieved, achieved_at}]",
    )

    @property
    def is_active(self) -> bool:
        """Check if goal is still being pursued."""
        return self.status == GoalStatus.ACTIVE.value

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<HealthGoal(user_id={self.user_id}, type={self.goal_type}, "
            f"progress={self.progress_percentage}, status={self.status})>"
        )
