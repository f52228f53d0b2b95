"""Health insight model."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class InsightType(str, Enum):
    """What an insight was derived from."""

    SCORE = "score"
    PREDICTION = "prediction"
    PATTERN = "pattern"
    GOAL = "goal"


class InsightCategory(str, Enum):
    """Whether the insight is good news, bad news or neither."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class InsightPriority(str, Enum):
    """How prominently to show an insight."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HealthInsight(Base, UserScopedMixin, TimestampMixin):
    """A short, user-facing finding drawn from stored analytics.

    source_key names the row the insight was derived from, so generating
    insights again never duplicates one. Only is_read and is_bookmarked
    change after creation.
    """

    __tablename__ = "health_insights"
    __table_args__ = (
        UniqueConstraint("user_id", "source_key", name="uq_health_insight_source"),
        Index("ix_health_insights_user_read", "user_id", "is_read"),
        {"comment": "Derived insights with read and bookmark flags"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    insight_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="score, prediction, pattern, goal",
    )
    category: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InsightCategory.NEUTRAL.value,
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=InsightPriority.MEDIUM.value,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Values the insight was built from",
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    action_items: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )
    related_metrics: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )
    source_key: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
        comment="<insight_type>:<source row id>",
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_bookmarked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Hidden from listings after this instant",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<HealthInsight(user_id={self.user_id}, type={self.insight_type}, "
            f"title={self.title!r}, read={self.is_read})>"
        )
