"""Live monitoring session state and threshold evaluation."""

import asyncio
import math
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.models.base import generate_uuid
from health_analytics_server.models.metric import DEFAULT_UNITS, MetricType


class SessionStatus(str, Enum):
    """Monitoring session lifecycle states."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"  # Terminal, via stop
    FAILED = "failed"  # Terminal, via repeated tick errors or explicit fail


class SampleQuality(str, Enum):
    """Device-reported sample quality."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ALLOWED_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.ACTIVE: {SessionStatus.PAUSED, SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.PAUSED: {SessionStatus.ACTIVE, SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
}

DEFAULT_ENABLED_METRICS: list[str] = [
    MetricType.HEART_RATE.value,
    MetricType.STEPS.value,
    MetricType.CALORIES_BURNED.value,
    MetricType.SLEEP_DURATION.value,
    MetricType.BLOOD_PRESSURE.value,
    MetricType.WEIGHT.value,
    MetricType.BLOOD_OXYGEN.value,
    MetricType.ACTIVITY_MINUTES.value,
]


@dataclass(frozen=True)
class AlertThreshold:
    """Inclusive bounds for one metric; either side may be open."""

    min: float | None = None
    max: float | None = None

    def __post_init__(self) -> None:
        for bound in (self.min, self.max):
            if bound is not None and not math.isfinite(bound):
                raise InvalidInputError("Threshold bounds must be finite numbers")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise InvalidInputError(
                "Threshold min must not exceed max", details={"min": self.min, "max": self.max}
            )

    def describe(self) -> str:
        """Render as 'min-max' with open sides shown as blanks."""
        low = "" if self.min is None else f"{self.min:g}"
        high = "" if self.max is None else f"{self.max:g}"
        return f"{low}-{high}"


DEFAULT_THRESHOLDS: dict[str, AlertThreshold] = {
    MetricType.HEART_RATE.value: AlertThreshold(min=40, max=100),
    MetricType.BLOOD_PRESSURE.value: AlertThreshold(max=140),
    MetricType.BLOOD_OXYGEN.value: AlertThreshold(min=95),
    MetricType.SLEEP_QUALITY.value: AlertThreshold(min=70),
    MetricType.STRESS_LEVEL.value: AlertThreshold(max=7),
    MetricType.ACTIVITY_LEVEL.value: AlertThreshold(min=5000),
}


def evaluate_threshold(value: float, threshold: AlertThreshold | None) -> AlertSeverity | None:
    """Classify a sample against its threshold.

    Above max: critical beyond 1.5x max, else high.
    Below min: critical under 0.5x min, else high.

    Returns:
        Severity, or None when the value is within bounds
    """
    if threshold is None:
        return None
    if threshold.max is not None and value > threshold.max:
        return AlertSeverity.CRITICAL if value > threshold.max * 1.5 else AlertSeverity.HIGH
    if threshold.min is not None and value < threshold.min:
        return AlertSeverity.CRITICAL if value < threshold.min * 0.5 else AlertSeverity.HIGH
    return None


@dataclass
class RealTimeMetric:
    """One sample ingested by a session tick."""

    session_id: str
    device_id: str
    metric_type: str
    value: float
    unit: str
    timestamp: datetime
    quality: str = SampleQuality.GOOD.value
    confidence: float = 1.0
    id: str = field(default_factory=generate_uuid)

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response dict."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class PendingSample:
    """A device reading waiting for the next tick."""

    metric_type: str
    value: float
    unit: str | None = None
    timestamp: datetime | None = None
    quality: str = SampleQuality.GOOD.value
    confidence: float = 1.0


class MonitoringSession:
    """Bounded live ingestion context for one user and device.

    The metrics ring never holds more than capacity samples; older samples
    are dropped first. Only the tick loop mutates the ring and alert list,
    and it does so under the session lock after checking is_active.
    Readers get copies through snapshot().
    """

    def __init__(
        self,
        user_id: str,
        device_id: str,
        sampling_rate_ms: int,
        alert_thresholds: dict[str, AlertThreshold],
        enabled_metrics: list[str],
        capacity: int = 1000,
        data_retention_hours: int = 24,
    ) -> None:
        if capacity < 1:
            raise InvalidInputError("Ring capacity must be at least 1")
        if sampling_rate_ms < 100:
            raise InvalidInputError(
                "Sampling rate must be at least 100 ms",
                details={"sampling_rate_ms": sampling_rate_ms},
            )

        self.id = generate_uuid()
        self.user_id = user_id
        self.device_id = device_id
        self.start_time = datetime.now(UTC)
        self.end_time: datetime | None = None
        self.status = SessionStatus.ACTIVE
        self.failure_reason: str | None = None
        self.sampling_rate_ms = sampling_rate_ms
        self.alert_thresholds = dict(alert_thresholds)
        self.enabled_metrics = list(enabled_metrics)
        self.capacity = capacity
        self.data_retention_hours = data_retention_hours

        self.metrics: deque[RealTimeMetric] = deque(maxlen=capacity)
        self.alert_ids: deque[str] = deque(maxlen=capacity)
        self.pending: dict[str, PendingSample] = {}
        self.unpersisted: deque[RealTimeMetric] = deque(maxlen=capacity)
        self.last_sample_at: datetime | None = None
        self.tick_count = 0
        self.lock = asyncio.Lock()

    @property
    def is_active(self) -> bool:
        """Whether ticks may ingest samples."""
        return self.status == SessionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        """Whether the session has finished for good."""
        return self.status in (SessionStatus.COMPLETED, SessionStatus.FAILED)

    def transition(self, target: SessionStatus) -> None:
        """Move to target status.

        Raises:
            InvalidInputError: If the transition is not allowed
        """
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidInputError(
                f"Cannot move session from {self.status.value} to {target.value}",
                details={"session_id": self.id, "status": self.status.value},
            )
        self.status = target
        if self.is_terminal:
            self.end_time = datetime.now(UTC)
            self.pending.clear()

    def ingest(self, sample: PendingSample, now: datetime) -> RealTimeMetric:
        """Append one sample to the ring. Caller holds the lock."""
        metric = RealTimeMetric(
            session_id=self.id,
            device_id=self.device_id,
            metric_type=sample.metric_type,
            value=sample.value,
            unit=sample.unit or DEFAULT_UNITS[MetricType(sample.metric_type)],
            timestamp=sample.timestamp or now,
            quality=sample.quality,
            confidence=sample.confidence,
        )
        self.metrics.append(metric)
        self.unpersisted.append(metric)
        self.last_sample_at = metric.timestamp
        return metric

    def prune(self, cutoff: datetime) -> int:
        """Drop ring samples older than cutoff. Caller holds the lock."""
        before = len(self.metrics)
        kept = [m for m in self.metrics if m.timestamp >= cutoff]
        self.metrics = deque(kept, maxlen=self.capacity)
        return before - len(self.metrics)

    def retention_cutoff(self, now: datetime | None = None) -> datetime:
        """Oldest sample time this session keeps."""
        return (now or datetime.now(UTC)) - timedelta(hours=self.data_retention_hours)

    def recent_metrics(self, limit: int | None = None) -> list[RealTimeMetric]:
        """Copy of the ring, newest first."""
        items = list(reversed(self.metrics))
        return items[:limit] if limit is not None else items

    def snapshot(self) -> dict[str, Any]:
        """Point-in-time copy for API responses."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "device_id": self.device_id,
            "status": self.status.value,
            "is_active": self.is_active,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "sampling_rate_ms": self.sampling_rate_ms,
            "enabled_metrics": list(self.enabled_metrics),
            "alert_thresholds": {
                metric: {"min": t.min, "max": t.max} for metric, t in self.alert_thresholds.items()
            },
            "capacity": self.capacity,
            "metrics_count": len(self.metrics),
            "alerts_count": len(self.alert_ids),
            "pending_samples": len(self.pending),
            "last_sample_at": self.last_sample_at.isoformat() if self.last_sample_at else None,
            "failure_reason": self.failure_reason,
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<MonitoringSession(id={self.id}, user_id={self.user_id}, "
            f"device_id={self.device_id}, status={self.status.value})>"
        )
