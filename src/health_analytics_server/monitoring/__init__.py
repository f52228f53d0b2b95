"""Real-time monitoring: sessions, ring buffers, thresholds and alerts."""

from health_analytics_server.monitoring.alerts import Alert, AlertDispatcher
from health_analytics_server.monitoring.registry import SessionRegistry
from health_analytics_server.monitoring.service import MonitoringService, TickResult
from health_analytics_server.monitoring.session import (
    AlertSeverity,
    AlertThreshold,
    MonitoringSession,
    PendingSample,
    RealTimeMetric,
    SessionStatus,
)

__all__ = [
    "Alert",
    "AlertDispatcher",
    "AlertSeverity",
    "AlertThreshold",
    "MonitoringService",
    "MonitoringSession",
    "PendingSample",
    "RealTimeMetric",
    "SessionRegistry",
    "SessionStatus",
    "TickResult",
]
