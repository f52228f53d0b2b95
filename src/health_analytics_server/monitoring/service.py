"""Monitoring service: session lifecycle, sample intake, ticks and dashboards.

Data Flow:

    device --record_data()--> session.pending (latest sample per metric)
                                   |
                    tick() every sampling_rate_ms (APScheduler job)
                                   |
              ring buffer <--------+--------> threshold evaluation
                 |                                   |
       drain_ingested() -> MetricStore        AlertDispatcher.dispatch()
"""

from collections import deque
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from health_analytics_server.core.config import Settings, settings as default_settings
from health_analytics_server.core.exceptions import InvalidInputError
from health_analytics_server.models.base import as_utc
from health_analytics_server.models.metric import MetricType
from health_analytics_server.monitoring.alerts import (
    Alert,
    AlertCategory,
    AlertDispatcher,
    AlertType,
)
from health_analytics_server.monitoring.registry import SessionRegistry
from health_analytics_server.monitoring.session import (
    DEFAULT_ENABLED_METRICS,
    DEFAULT_THRESHOLDS,
    AlertSeverity,
    AlertThreshold,
    MonitoringSession,
    PendingSample,
    RealTimeMetric,
    SampleQuality,
    SessionStatus,
    evaluate_threshold,
)
from health_analytics_server.services.metric_store import NewMetric, validate_metric

logger = structlog.get_logger()

DASHBOARD_METRIC_LIMIT = 50

SessionHook = Callable[[MonitoringSession], Awaitable[None]]


@dataclass
class TickResult:
    """What one tick did."""

    session_id: str
    skipped: bool = False
    ingested: list[RealTimeMetric] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)


def build_alert(
    session: MonitoringSession,
    metric: RealTimeMetric,
    severity: AlertSeverity,
    threshold: AlertThreshold,
) -> Alert:
    """Build the alert for a threshold breach."""
    label = metric.metric_type.replace("_", " ").title()
    return Alert(
        user_id=session.user_id,
        session_id=session.id,
        device_id=session.device_id,
        type=AlertType.CRITICAL.value
        if severity == AlertSeverity.CRITICAL
        else AlertType.WARNING.value,
        category=AlertCategory.HEALTH.value,
        severity=severity.value,
        title=f"{label} Alert",
        message=(
            f"{label} is {metric.value:g} {metric.unit} (threshold: {threshold.describe()})"
        ),
        metric_type=metric.metric_type,
        value=metric.value,
        threshold={"min": threshold.min, "max": threshold.max},
        timestamp=metric.timestamp,
        last_seen=metric.timestamp,
    )


def parse_thresholds(raw: dict[str, dict[str, float | None]]) -> dict[str, AlertThreshold]:
    """Build thresholds from {metric: {min, max}}.

    Raises:
        InvalidInputError: If a metric name or bound is invalid
    """
    thresholds = {}
    for metric, bounds in raw.items():
        _check_metric_name(metric)
        thresholds[metric] = AlertThreshold(min=bounds.get("min"), max=bounds.get("max"))
    return thresholds


def _check_metric_name(metric: str) -> None:
    if metric not in {t.value for t in MetricType}:
        raise InvalidInputError(
            f"Unknown metric type '{metric}'",
            details={"valid_types": [t.value for t in MetricType]},
        )


class MonitoringService:
    """Owns the session registry and alert dispatcher for the process.

    Constructed once at the composition root and injected into handlers
    and the scheduler.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        dispatcher: AlertDispatcher,
        settings: Settings | None = None,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.settings = settings or default_settings
        self._on_started: list[SessionHook] = []
        self._on_ended: list[SessionHook] = []
        self.logger = logger.bind(service="monitoring")

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitoringService":
        """Build a service with registry and dispatcher sized from settings."""
        return cls(
            registry=SessionRegistry(max_sessions=settings.monitoring_max_sessions),
            dispatcher=AlertDispatcher(
                dedup_window=timedelta(seconds=settings.alert_dedup_seconds),
                retention=timedelta(hours=settings.alert_retention_hours),
            ),
            settings=settings,
        )

    def subscribe(
        self, on_started: SessionHook | None = None, on_ended: SessionHook | None = None
    ) -> None:
        """Register lifecycle hooks (used by the scheduler to add/remove tick jobs)."""
        if on_started is not None:
            self._on_started.append(on_started)
        if on_ended is not None:
            self._on_ended.append(on_ended)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        user_id: str,
        device_id: str,
        sampling_rate_ms: int | None = None,
        alert_thresholds: dict[str, dict[str, float | None]] | None = None,
        enabled_metrics: Sequence[str] | None = None,
        data_retention_hours: int | None = None,
        user_thresholds: Mapping[str, AlertThreshold | None] | None = None,
    ) -> MonitoringSession:
        """Create and register an active session.

        Thresholds are layered: built-in defaults, then the user's stored
        thresholds (None switches a metric's alerts off), then the
        alert_thresholds sent with the request.

        Raises:
            InvalidInputError: If a metric name, threshold or rate is invalid
            UnavailableError: If the registry is full of live sessions
        """
        metrics = list(enabled_metrics) if enabled_metrics else list(DEFAULT_ENABLED_METRICS)
        if not metrics:
            raise InvalidInputError("At least one metric must be enabled")
        for metric in metrics:
            _check_metric_name(metric)

        thresholds = dict(DEFAULT_THRESHOLDS)
        for metric, stored in (user_thresholds or {}).items():
            if stored is None:
                thresholds.pop(metric, None)
            else:
                thresholds[metric] = stored
        thresholds.update(parse_thresholds(alert_thresholds or {}))

        session = MonitoringSession(
            user_id=user_id,
            device_id=device_id,
            sampling_rate_ms=sampling_rate_ms or self.settings.default_sampling_rate_ms,
            alert_thresholds=thresholds,
            enabled_metrics=metrics,
            capacity=self.settings.monitoring_ring_capacity,
            data_retention_hours=data_retention_hours or self.settings.alert_retention_hours,
        )
        await self.registry.add(session)

        self.logger.info(
            "Monitoring session started",
            session_id=session.id,
            user_id=user_id,
            device_id=device_id,
            sampling_rate_ms=session.sampling_rate_ms,
        )
        for hook in self._on_started:
            await hook(session)
        return session

    async def stop_session(self, session_id: str, user_id: str | None = None) -> MonitoringSession:
        """Complete a session and stamp its end time.

        Safe to call while a tick is in flight: the tick re-checks the
        status under the session lock before touching the ring.

        Raises:
            NotFoundError: If the session does not exist
            InvalidInputError: If the session already finished
        """
        return await self._transition(session_id, SessionStatus.COMPLETED, user_id)

    async def pause_session(self, session_id: str, user_id: str | None = None) -> MonitoringSession:
        """Pause ticking; pending samples are kept."""
        return await self._transition(session_id, SessionStatus.PAUSED, user_id)

    async def resume_session(
        self, session_id: str, user_id: str | None = None
    ) -> MonitoringSession:
        """Resume a paused session."""
        return await self._transition(session_id, SessionStatus.ACTIVE, user_id)

    async def fail_session(self, session_id: str, reason: str) -> MonitoringSession:
        """Mark a session failed."""
        session = await self._transition(session_id, SessionStatus.FAILED)
        session.failure_reason = reason
        return session

    async def _transition(
        self, session_id: str, target: SessionStatus, user_id: str | None = None
    ) -> MonitoringSession:
        session = self.registry.get(session_id, user_id)
        async with session.lock:
            session.transition(target)

        self.logger.info(
            "Monitoring session status changed",
            session_id=session_id,
            status=target.value,
        )
        if session.is_terminal:
            for hook in self._on_ended:
                await hook(session)
        return session

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def record_data(
        self,
        session_id: str,
        samples: Sequence[PendingSample],
        user_id: str | None = None,
    ) -> int:
        """Queue device samples for the next tick.

        Only the newest sample per metric is kept between ticks.

        Returns:
            Number of samples accepted

        Raises:
            NotFoundError: If the session does not exist
            InvalidInputError: If the session has finished or a sample is invalid
        """
        session = self.registry.get(session_id, user_id)
        if session.is_terminal:
            raise InvalidInputError(
                f"Session is {session.status.value}",
                details={"session_id": session_id},
            )

        for sample in samples:
            if sample.metric_type not in session.enabled_metrics:
                raise InvalidInputError(
                    f"Metric '{sample.metric_type}' is not enabled for this session",
                    details={"enabled_metrics": session.enabled_metrics},
                )
            if sample.quality not in {q.value for q in SampleQuality}:
                raise InvalidInputError(f"Unknown sample quality '{sample.quality}'")
            validate_metric(
                NewMetric(
                    metric_type=sample.metric_type,
                    value=sample.value,
                    confidence=sample.confidence,
                )
            )

        async with session.lock:
            for sample in samples:
                if sample.timestamp is not None:
                    sample.timestamp = as_utc(sample.timestamp)
                current = session.pending.get(sample.metric_type)
                if (
                    current is None
                    or current.timestamp is None
                    or sample.timestamp is None
                    or sample.timestamp >= current.timestamp
                ):
                    session.pending[sample.metric_type] = sample
        return len(samples)

    async def tick(self, session_id: str) -> TickResult:
        """Ingest one pending sample per enabled metric and evaluate thresholds.

        Does nothing for a session that is not active.
        """
        session = self.registry.get(session_id)
        result = TickResult(session_id=session_id)
        now = datetime.now(UTC)

        async with session.lock:
            if not session.is_active:
                result.skipped = True
                return result

            session.tick_count += 1
            for metric_type in session.enabled_metrics:
                sample = session.pending.pop(metric_type, None)
                if sample is None:
                    continue
                metric = session.ingest(sample, now)
                result.ingested.append(metric)

                threshold = session.alert_thresholds.get(metric_type)
                severity = evaluate_threshold(metric.value, threshold)
                if severity is None or threshold is None:
                    continue

                alert, created = await self.dispatcher.dispatch(
                    build_alert(session, metric, severity, threshold)
                )
                if created:
                    session.alert_ids.append(alert.id)
                result.alerts.append(alert)

        if result.ingested:
            self.logger.debug(
                "Tick processed",
                session_id=session_id,
                ingested=len(result.ingested),
                alerts=len(result.alerts),
            )
        return result

    async def drain_ingested(self, session_id: str) -> list[RealTimeMetric]:
        """Take the samples ingested since the last drain (for persistence)."""
        session = self.registry.get(session_id)
        async with session.lock:
            drained = list(session.unpersisted)
            session.unpersisted.clear()
        return drained

    async def requeue_ingested(self, session_id: str, metrics: Sequence[RealTimeMetric]) -> None:
        """Put drained samples back ahead of anything ingested since.

        Used when persisting a drained batch fails; the ring capacity still
        bounds the queue, so the oldest samples go first under pressure.
        """
        if not metrics:
            return
        session = self.registry.get(session_id)
        async with session.lock:
            session.unpersisted = deque(
                [*metrics, *session.unpersisted], maxlen=session.capacity
            )
        self.logger.warning(
            "Requeued unpersisted samples",
            session_id=session_id,
            samples=len(metrics),
        )

    def sessions_with_unpersisted(self) -> list[MonitoringSession]:
        """Sessions still holding samples that were never stored."""
        return [s for s in self.registry.all() if s.unpersisted]

    async def cleanup(self, now: datetime | None = None) -> dict[str, int]:
        """Apply retention to alerts, ring samples and finished sessions."""
        now = now or datetime.now(UTC)
        pruned = 0
        for session in self.registry.all():
            async with session.lock:
                pruned += session.prune(session.retention_cutoff(now))

        removed_sessions = await self.registry.remove_finished_before(
            now - timedelta(hours=self.settings.alert_retention_hours)
        )
        return {
            "alerts": await self.dispatcher.cleanup(now),
            "samples": pruned,
            "sessions": removed_sessions,
        }

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_session(self, session_id: str, user_id: str | None = None) -> MonitoringSession:
        """Look up a session (raises NotFoundError)."""
        return self.registry.get(session_id, user_id)

    def get_sessions(self, user_id: str, active_only: bool = False) -> list[dict[str, Any]]:
        """Snapshots of a user's sessions, newest first."""
        sessions = reversed(self.registry.for_user(user_id))
        return [s.snapshot() for s in sessions if not active_only or s.is_active]

    def get_recent_metrics(
        self,
        user_id: str,
        session_id: str | None = None,
        metric_type: str | None = None,
        limit: int = DASHBOARD_METRIC_LIMIT,
    ) -> list[RealTimeMetric]:
        """Newest samples across a user's sessions."""
        sessions = (
            [self.registry.get(session_id, user_id)]
            if session_id
            else self.registry.for_user(user_id)
        )
        metrics = [
            m
            for s in sessions
            for m in s.recent_metrics()
            if metric_type is None or m.metric_type == metric_type
        ]
        metrics.sort(key=lambda m: m.timestamp, reverse=True)
        return metrics[:limit]

    def get_dashboard(self, user_id: str) -> dict[str, Any]:
        """Compose the monitoring dashboard. Pure read."""
        sessions = self.registry.for_user(user_id)
        active = [s for s in sessions if s.is_active]
        active_alerts = self.dispatcher.get_active_alerts(user_id)

        last_sync_values = [s.last_sample_at for s in sessions if s.last_sample_at]
        last_sync = max(last_sync_values) if last_sync_values else None

        device_status: dict[str, dict[str, Any]] = {}
        for s in sessions:
            entry = device_status.get(s.device_id)
            if entry is None or s.start_time.isoformat() >= entry["started_at"]:
                device_status[s.device_id] = {
                    "device_id": s.device_id,
                    "session_id": s.id,
                    "status": s.status.value,
                    "started_at": s.start_time.isoformat(),
                    "last_sync": s.last_sample_at.isoformat() if s.last_sample_at else None,
                    "metrics_count": len(s.metrics),
                }

        return {
            "user_id": user_id,
            "active_sessions": [s.snapshot() for s in reversed(active)],
            "recent_metrics": [m.to_dict() for m in self.get_recent_metrics(user_id)],
            "active_alerts": [a.to_dict() for a in active_alerts],
            "device_status": list(device_status.values()),
            "summary": {
                "total_devices": len({s.device_id for s in sessions}),
                "active_devices": len({s.device_id for s in active}),
                "total_metrics": sum(len(s.metrics) for s in sessions),
                "critical_alerts": sum(
                    1 for a in active_alerts if a.severity == AlertSeverity.CRITICAL.value
                ),
                "last_sync": last_sync.isoformat() if last_sync else None,
            },
        }
