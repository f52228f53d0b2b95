"""Pydantic schemas for API requests and responses."""

from health_analytics_server.schemas.requests import (
    AlertThresholdRequest,
    GoalCreateRequest,
    GoalUpdateRequest,
    MealRequest,
    MetricBatchRequest,
    MetricRequest,
    MonitoringDataRequest,
    MonitoringSample,
    MonitoringSessionRequest,
    PatternAnalysisRequest,
    PredictionRequest,
    ReportRequest,
    ScoreCalculationRequest,
    SleepRequest,
    ThresholdBounds,
    WorkoutRequest,
)
from health_analytics_server.schemas.responses import (
    AlertThresholdConfigOut,
    HealthGoalOut,
    HealthInsightOut,
    HealthMetricOut,
    HealthReportOut,
    HealthScoreOut,
    MealOut,
    PatternAnalysisOut,
    PredictionOut,
    SleepOut,
    WorkoutOut,
)

__all__ = [
    "AlertThresholdConfigOut",
    "AlertThresholdRequest",
    "GoalCreateRequest",
    "GoalUpdateRequest",
    "HealthGoalOut",
    "HealthInsightOut",
    "HealthMetricOut",
    "HealthReportOut",
    "HealthScoreOut",
    "MealOut",
    "MealRequest",
    "MetricBatchRequest",
    "MetricRequest",
    "MonitoringDataRequest",
    "MonitoringSample",
    "MonitoringSessionRequest",
    "PatternAnalysisOut",
    "PredictionOut",
    "PredictionRequest",
    "ReportRequest",
    "ScoreCalculationRequest",
    "SleepOut",
    "SleepRequest",
    "ThresholdBounds",
    "WorkoutOut",
    "WorkoutRequest",
]
