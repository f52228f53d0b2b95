"""Daily composite health score model."""

from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Date, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class ScoreType(str, Enum):
    """Composite score dimensions."""

    NUTRITION = "nutrition"
    FITNESS = "fitness"
    RECOVERY = "recovery"
    CONSISTENCY = "consistency"
    OVERALL = "overall"


class ScoreTrend(str, Enum):
    """Day-over-day direction of a score."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class HealthScore(Base, UserScopedMixin, TimestampMixin):
    """One composite score per (user, score type, day).

    Recomputing the same day overwrites the row rather than adding history.
    """

    __tablename__ = "health_scores"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "score_type", "calculation_date", name="uq_user_score_type_date"
        ),
        {"comment": "Daily composite health scores (one row per user/type/day)"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    score_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="nutrition, fitness, recovery, consistency or overall",
    )
    value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Score value, always within 0-100",
    )
    calculation_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Day the score describes",
    )
    trend: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ScoreTrend.STABLE.value,
        comment="Direction compared with the previous day",
    )
    confidence: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Share of source data present for the day (0-1)",
    )
    details: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Component breakdown behind the score",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<HealthScore(user_id={self.user_id}, type={self.score_type}, "
            f"date={self.calculation_date}, value={self.value})>"
        )
