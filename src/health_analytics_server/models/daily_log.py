"""Meal, workout and sleep log models.

These are the day-level records the score engine and report generator
aggregate. Like health metrics they are append-only.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class WorkoutIntensity(str, Enum):
    """Workout intensity levels."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class MealLog(Base, UserScopedMixin, TimestampMixin):
    """A logged meal with its macronutrient totals."""

    __tablename__ = "meal_logs"
    __table_args__ = (
        Index("ix_meal_logs_user_logged_at", "user_id", "logged_at"),
        {"comment": "Logged meals with macronutrient totals"},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    logged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the meal was eaten",
    )
    calories: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    protein_g: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    carbs_g: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fat_g: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    food_category: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Food category used for diversity scoring",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<MealLog(user_id={self.user_id}, logged_at={self.logged_at}, kcal={self.calories})>"
        )


class WorkoutLog(Base, UserScopedMixin, TimestampMixin):
    """A completed workout."""

    __tablename__ = "workout_logs"
    __table_args__ = (
        Index("ix_workout_logs_user_logged_at", "user_id", "logged_at"),
        {"comment": "Completed workouts"},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    logged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the workout started",
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calories_burned: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    intensity: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=WorkoutIntensity.MODERATE.value,
        comment="low, moderate or high",
    )
    consistency_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="How closely the workout followed the plan (0-100)",
    )

    @property
    def is_high_intensity(self) -> bool:
        """Check if this workout counts toward the high intensity ratio."""
        return self.intensity == WorkoutIntensity.HIGH.value

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<WorkoutLog(user_id={self.user_id}, logged_at={self.logged_at}, "
            f"minutes={self.duration_minutes})>"
        )


class SleepLog(Base, UserScopedMixin, TimestampMixin):
    """A night (or nap) of sleep."""

    __tablename__ = "sleep_logs"
    __table_args__ = (
        Index("ix_sleep_logs_user_logged_at", "user_id", "logged_at"),
        {"comment": "Sleep sessions with quality breakdown"},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    logged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Wake time; the sleep counts toward this day",
    )
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    quality_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Sleep quality (0-100)",
    )
    deep_sleep_ratio: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Fraction of sleep spent in deep sleep (0-1)",
    )
    consistency: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Bedtime regularity (0-100)",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<SleepLog(user_id={self.user_id}, logged_at={self.logged_at}, "
            f"hours={self.duration_hours})>"
        )
