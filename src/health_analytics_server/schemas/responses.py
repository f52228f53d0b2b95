"""Pydantic response models built from ORM rows."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ORMModel(BaseModel):
    """Base for models validated from SQLAlchemy instances."""

    model_config = ConfigDict(from_attributes=True)


class HealthScoreOut(ORMModel):
    """One stored score."""

    id: str
    user_id: str
    score_type: str
    value: int = Field(description="Score 0-100")
    calculation_date: date
    trend: str = Field(description="improving, stable or declining vs the previous day")
    confidence: float
    details: dict[str, Any] | None = None


class PredictionOut(ORMModel):
    """One stored prediction."""

    id: str
    user_id: str
    prediction_type: str
    target_date: date
    predicted_value: float
    confidence_score: float
    model_version: str
    low_quality: bool
    input_summary: dict[str, Any] | None = None
    recommendations: list[str] = Field(default_factory=list)
    is_active: bool
    created_at: datetime


class PatternAnalysisOut(ORMModel):
    """One stored pattern analysis."""

    id: str
    user_id: str
    pattern_type: str
    analysis_period: str
    start_date: date
    end_date: date
    correlation_score: float = Field(description="Absolute Spearman coefficient (0-1)")
    significance: str
    sample_count: int
    metrics_involved: list[str] = Field(default_factory=list)
    insights: dict[str, Any] | None = None
    recommendations: list[str] = Field(default_factory=list)


class HealthReportOut(ORMModel):
    """One stored report snapshot."""

    id: str
    user_id: str
    report_type: str
    period_start: date
    period_end: date
    data: dict[str, Any]
    access_level: str
    created_at: datetime


class HealthGoalOut(ORMModel):
    """One goal with progress."""

    id: str
    user_id: str
    goal_type: str
    target_value: float
    current_value: float
    target_date: date
    deadline_date: date | None = None
    priority: str
    progress_percentage: float
    achievement_probability: float
    status: str
    milestones: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class HealthMetricOut(ORMModel):
    """One stored metric sample."""

    id: str
    metric_type: str
    value: float
    unit: str
    timestamp: datetime
    source: str
    confidence: float
    device_id: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="extra")


class MealOut(ORMModel):
    """One logged meal."""

    id: str
    logged_at: datetime
    calories: float
    protein_g: float
    carbs_g: float
    fat_g: float
    food_category: str | None = None


class WorkoutOut(ORMModel):
    """One logged workout."""

    id: str
    logged_at: datetime
    duration_minutes: int
    calories_burned: float
    intensity: str
    consistency_score: float


class SleepOut(ORMModel):
    """One logged sleep session."""

    id: str
    logged_at: datetime
    duration_hours: float
    quality_score: float
    deep_sleep_ratio: float
    consistency: float


class HealthInsightOut(ORMModel):
    """One stored insight."""

    id: str
    user_id: str
    insight_type: str
    category: str
    priority: str
    title: str
    description: str
    data: dict[str, Any] | None = None
    confidence_score: float
    action_items: list[str] = Field(default_factory=list)
    related_metrics: list[str] = Field(default_factory=list)
    is_read: bool
    is_bookmarked: bool
    expires_at: datetime | None = None
    created_at: datetime


class AlertThresholdConfigOut(ORMModel):
    """One stored alert threshold."""

    metric_type: str
    min: float | None = Field(default=None, validation_alias="min_value")
    max: float | None = Field(default=None, validation_alias="max_value")
    enabled: bool
    updated_at: datetime
