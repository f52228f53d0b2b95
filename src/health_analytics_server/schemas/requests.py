"""Pydantic request bodies for the analytics API."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field


class ScoreCalculationRequest(BaseModel):
    """Body for POST /users/{user_id}/scores/calculate."""

    day: date | None = Field(default=None, description="Day to score (default: today, UTC)")
    include_nutrition: bool = Field(default=True)
    include_fitness: bool = Field(default=True)
    include_recovery: bool = Field(default=True)
    include_consistency: bool = Field(default=True)


class PredictionRequest(BaseModel):
    """Body for POST /users/{user_id}/predictions."""

    prediction_type: str = Field(
        description="weight_projection, goal_achievement, health_risk or performance_optimization"
    )
    target_date: date = Field(description="Date the prediction is for")
    model_version: str | None = Field(default=None, description="Override model version tag")


class PatternAnalysisRequest(BaseModel):
    """Body for POST /users/{user_id}/patterns/analyze."""

    pattern_type: str = Field(
        description="sleep_nutrition, exercise_nutrition, stress_eating or metabolic_rate"
    )
    analysis_period: str = Field(default="weekly", description="daily, weekly or monthly")
    start_date: date | None = Field(default=None)
    end_date: date | None = Field(default=None)


class ReportRequest(BaseModel):
    """Body for POST /users/{user_id}/reports."""

    report_type: str = Field(
        description="weekly_summary, monthly_progress, quarterly_review or annual_journey"
    )
    period_start: date
    period_end: date


class ThresholdBounds(BaseModel):
    """Inclusive alert bounds; either side may be omitted."""

    min: float | None = None
    max: float | None = None


class AlertThresholdRequest(ThresholdBounds):
    """Body for PUT /users/{user_id}/monitoring/thresholds/{metric_type}."""

    enabled: bool = Field(default=True, description="False switches the metric's alerts off")


class MonitoringSessionRequest(BaseModel):
    """Body for POST /users/{user_id}/monitoring/sessions."""

    device_id: str = Field(min_length=1, max_length=255)
    sampling_rate_ms: int | None = Field(default=None, ge=100)
    alert_thresholds: dict[str, ThresholdBounds] | None = Field(
        default=None, description="Per-metric overrides merged over the defaults"
    )
    enabled_metrics: list[str] | None = Field(default=None)
    data_retention_hours: int | None = Field(default=None, ge=1)


class MonitoringSample(BaseModel):
    """One device reading."""

    metric_type: str
    value: float
    unit: str | None = None
    timestamp: datetime | None = None
    quality: str = "good"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class MonitoringDataRequest(BaseModel):
    """Body for POST /monitoring/sessions/{session_id}/samples."""

    samples: list[MonitoringSample] = Field(min_length=1)


class GoalCreateRequest(BaseModel):
    """Body for POST /users/{user_id}/goals."""

    goal_type: str
    target_value: float
    target_date: date
    deadline_date: date | None = None
    priority: str = "medium"
    milestones: list[dict[str, Any]] | None = None


class GoalUpdateRequest(BaseModel):
    """Body for PATCH /users/{user_id}/goals/{goal_id}. Only set fields are applied."""

    current_value: float | None = None
    target_value: float | None = None
    target_date: date | None = None
    deadline_date: date | None = None
    priority: str | None = None
    progress_percentage: float | None = None
    achievement_probability: float | None = None
    status: str | None = None
    milestones: list[dict[str, Any]] | None = None


class MetricRequest(BaseModel):
    """One metric sample for POST /users/{user_id}/metrics."""

    metric_type: str
    value: float
    unit: str | None = None
    timestamp: datetime | None = None
    source: str = "manual"
    confidence: float = 1.0
    device_id: str | None = None
    metadata: dict[str, Any] | None = None


class MetricBatchRequest(BaseModel):
    """Body for POST /users/{user_id}/metrics."""

    metrics: list[MetricRequest] = Field(min_length=1)


class MealRequest(BaseModel):
    """Body for POST /users/{user_id}/meals."""

    logged_at: datetime
    calories: float
    protein_g: float = 0.0
    carbs_g: float = 0.0
    fat_g: float = 0.0
    food_category: str | None = None


class WorkoutRequest(BaseModel):
    """Body for POST /users/{user_id}/workouts."""

    logged_at: datetime
    duration_minutes: int
    calories_burned: float = 0.0
    intensity: str = "moderate"
    consistency_score: float = 0.0


class SleepRequest(BaseModel):
    """Body for POST /users/{user_id}/sleep."""

    logged_at: datetime
    duration_hours: float
    quality_score: float = 0.0
    deep_sleep_ratio: float = 0.0
    consistency: float = 0.0
