"""Prediction model."""

from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, Date, Float, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class PredictionType(str, Enum):
    """Kinds of prediction the engine can produce."""

    WEIGHT_PROJECTION = "weight_projection"
    GOAL_ACHIEVEMENT = "goal_achievement"
    HEALTH_RISK = "health_risk"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"


class Prediction(Base, UserScopedMixin, TimestampMixin):
    """A stored prediction.

    Predictions of one type accumulate as history. Generating a new one
    marks every earlier row of the same (user, type) inactive, so at most
    one row per type is current.
    """

    __tablename__ = "predictions"
    __table_args__ = (
        Index("ix_predictions_user_type_active", "user_id", "prediction_type", "is_active"),
        Index(
            "uq_predictions_one_active",
            "user_id",
            "prediction_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        {"comment": "Prediction history; one active row per user and type"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    prediction_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="weight_projection, goal_achievement, health_risk, performance_optimization",
    )
    target_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Date the prediction projects to",
    )
    predicted_value: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Projected value (weight, probability, risk score, ...)",
    )
    confidence_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Confidence (0-1); low when history is short",
    )
    model_version: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="1.0.0",
    )
    low_quality: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="True when built from less history than the minimum",
    )
    input_summary: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Inputs and intermediate values (slope, factors, ...)",
    )
    recommendations: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="False once superseded by a newer prediction of the same type",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Prediction(user_id={self.user_id}, type={self.prediction_type}, "
            f"value={self.predicted_value}, active={self.is_active})>"
        )
