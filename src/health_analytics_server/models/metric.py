"""Health metric time-series model."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from health_analytics_server.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class MetricType(str, Enum):
    """Types of health metrics the store accepts."""

    HEART_RATE = "heart_rate"
    RESTING_HEART_RATE = "resting_heart_rate"
    HEART_RATE_VARIABILITY = "heart_rate_variability"
    STEPS = "steps"
    DISTANCE = "distance"
    CALORIES_BURNED = "calories_burned"
    ACTIVITY_MINUTES = "activity_minutes"
    ACTIVITY_LEVEL = "activity_level"
    SLEEP_DURATION = "sleep_duration"
    SLEEP_QUALITY = "sleep_quality"
    WEIGHT = "weight"
    BODY_FAT = "body_fat"
    BLOOD_PRESSURE = "blood_pressure"  # Systolic; diastolic goes in metadata
    BLOOD_OXYGEN = "blood_oxygen"
    BLOOD_GLUCOSE = "blood_glucose"
    RESPIRATORY_RATE = "respiratory_rate"
    SKIN_TEMPERATURE = "skin_temperature"
    STRESS_LEVEL = "stress_level"
    WATER_INTAKE = "water_intake"


class MetricSource(str, Enum):
    """Where a metric sample came from."""

    MANUAL = "manual"  # Entered by the user
    AUTOMATIC = "automatic"  # Wearable or monitoring session


# Unit recorded when a sample arrives without one
DEFAULT_UNITS: dict[MetricType, str] = {
    MetricType.HEART_RATE: "bpm",
    MetricType.RESTING_HEART_RATE: "bpm",
    MetricType.HEART_RATE_VARIABILITY: "ms",
    MetricType.STEPS: "steps",
    MetricType.DISTANCE: "km",
    MetricType.CALORIES_BURNED: "cal",
    MetricType.ACTIVITY_MINUTES: "minutes",
    MetricType.ACTIVITY_LEVEL: "steps",
    MetricType.SLEEP_DURATION: "hours",
    MetricType.SLEEP_QUALITY: "score",
    MetricType.WEIGHT: "kg",
    MetricType.BODY_FAT: "%",
    MetricType.BLOOD_PRESSURE: "mmHg",
    MetricType.BLOOD_OXYGEN: "%",
    MetricType.BLOOD_GLUCOSE: "mg/dL",
    MetricType.RESPIRATORY_RATE: "breaths/min",
    MetricType.SKIN_TEMPERATURE: "°C",
    MetricType.STRESS_LEVEL: "score",
    MetricType.WATER_INTAKE: "ml",
}


class HealthMetric(Base, UserScopedMixin, TimestampMixin):
    """One timestamped health measurement.

    Append-only: rows are never updated, only removed by retention
    cleanup or an explicit user data erase.
    """

    __tablename__ = "health_metrics"
    __table_args__ = (
        Index("ix_health_metrics_user_type_ts", "user_id", "metric_type", "timestamp"),
        {"comment": "Append-only per-user health metric time series"},
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    metric_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Metric type (heart_rate, steps, weight, ...)",
    )
    value: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Measured value in the recorded unit",
    )
    unit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Unit of measurement",
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the measurement was taken",
    )
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MetricSource.MANUAL.value,
        comment="manual or automatic",
    )
    confidence: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=1.0,
        comment="Confidence in the measurement (0-1)",
    )
    device_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Device that produced the sample, if any",
    )
    extra: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        comment="Additional sample context (e.g., diastolic pressure)",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<HealthMetric(user_id={self.user_id}, type={self.metric_type}, "
            f"value={self.value}, timestamp={self.timestamp})>"
        )
