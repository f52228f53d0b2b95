"""Pattern analysis model for metric-pair correlations."""

from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Date, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class PatternType(str, Enum):
    """Behavioural patterns the analyzer can relate."""

    SLEEP_NUTRITION = "sleep_nutrition"  # Sleep hours vs calories eaten
    EXERCISE_NUTRITION = "exercise_nutrition"  # Workout minutes vs calories eaten
    STRESS_EATING = "stress_eating"  # Stress level vs calories eaten
    METABOLIC_RATE = "metabolic_rate"  # Daily steps vs body weight


class AnalysisPeriod(str, Enum):
    """Analysis window presets."""

    DAILY = "daily"  # Last 7 days
    WEEKLY = "weekly"  # Last 30 days
    MONTHLY = "monthly"  # Last 90 days


class Significance(str, Enum):
    """Statistical significance levels."""

    HIGH = "high"  # p < 0.01
    MEDIUM = "medium"  # p < 0.05
    LOW = "low"  # p >= 0.05
    INSUFFICIENT = "insufficient"  # Not enough data


class PatternAnalysis(Base, UserScopedMixin, TimestampMixin):
    """Immutable correlation summary for one metric pair over one window.

    Keyed by (user, pattern type, period, start, end). Re-running an
    analysis for an existing key returns the stored row.
    """

    __tablename__ = "pattern_analyses"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "pattern_type",
            "analysis_period",
            "start_date",
            "end_date",
            name="uq_user_pattern_window",
        ),
        {"comment": "Metric-pair correlation analyses"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    pattern_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="sleep_nutrition, exercise_nutrition, stress_eating, metabolic_rate",
    )
    analysis_period: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="daily, weekly or monthly",
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    correlation_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Absolute Spearman coefficient (0-1); sign lives in insights",
    )
    significance: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Significance.INSUFFICIENT.value,
    )
    sample_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Days where both series had data",
    )
    metrics_involved: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )
    insights: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="description, key_findings, trend, coefficient, strength, direction",
    )
    recommendations: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<PatternAnalysis(user_id={self.user_id}, pattern={self.pattern_type}, "
            f"period={self.analysis_period}, score={self.correlation_score:.2f})>"
        )

    @property
    def is_significant(self) -> bool:
        """Check if pattern has high or medium significance."""
        return self.significance in (Significance.HIGH.value, Significance.MEDIUM.value)
