"""Database models."""

from health_analytics_server.models.base import Base
from health_analytics_server.models.daily_log import MealLog, SleepLog, WorkoutLog
from health_analytics_server.models.goal import HealthGoal
from health_analytics_server.models.insight import HealthInsight
from health_analytics_server.models.metric import HealthMetric
from health_analytics_server.models.pattern import PatternAnalysis
from health_analytics_server.models.prediction import Prediction
from health_analytics_server.models.report import HealthReport
from health_analytics_server.models.score import HealthScore
from health_analytics_server.models.threshold import AlertThresholdConfig

__all__ = [
    "AlertThresholdConfig",
    "Base",
    "HealthGoal",
    "HealthInsight",
    "HealthMetric",
    "HealthReport",
    "HealthScore",
    "MealLog",
    "PatternAnalysis",
    "Prediction",
    "SleepLog",
    "WorkoutLog",
]
