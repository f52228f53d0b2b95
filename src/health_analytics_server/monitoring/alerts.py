"""Alert records and the per-user alert dispatcher."""

import asyncio
from collections import OrderedDict
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from health_analytics_server.core.exceptions import NotFoundError
from health_analytics_server.models.base import generate_uuid
from health_analytics_server.monitoring.session import AlertSeverity

logger = structlog.get_logger()


class AlertType(str, Enum):
    """Presentation class of an alert."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"
    SUCCESS = "success"


class AlertCategory(str, Enum):
    """What raised the alert."""

    HEALTH = "health"
    DEVICE = "device"
    SYNC = "sync"
    SYSTEM = "system"


@dataclass
class Alert:
    """A threshold breach raised by a monitoring session."""

    user_id: str
    session_id: str
    device_id: str | None
    type: str
    category: str
    severity: str
    title: str
    message: str
    metric_type: str | None = None
    value: float | None = None
    threshold: dict[str, float | None] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    acknowledged: bool = False
    read: bool = False
    acknowledged_at: datetime | None = None
    occurrences: int = 1
    last_seen: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: str = field(default_factory=generate_uuid)

    @property
    def fingerprint(self) -> tuple[str, str, str | None, str]:
        """Identity used for de-duplication."""
        return (self.user_id, self.session_id, self.metric_type, self.severity)

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response dict."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["last_seen"] = self.last_seen.isoformat()
        data["acknowledged_at"] = (
            self.acknowledged_at.isoformat() if self.acknowledged_at else None
        )
        return data


class AlertDispatcher:
    """Single source of truth for alerts across all monitoring sessions.

    A new alert whose fingerprint matches an unacknowledged alert seen within
    the de-duplication window is folded into it (occurrence count, latest
    value) rather than stored twice. Reads return copies.

    Attributes:
        dedup_window: How long an open alert absorbs repeats
        retention: Alerts older than this are removed by cleanup()
    """

    def __init__(self, dedup_window: timedelta, retention: timedelta) -> None:
        self.dedup_window = dedup_window
        self.retention = retention
        self._alerts: OrderedDict[str, Alert] = OrderedDict()
        self._open: dict[tuple[str, str, str | None, str], str] = {}
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="alert_dispatcher")

    async def dispatch(self, alert: Alert) -> tuple[Alert, bool]:
        """Record an alert, folding it into an open duplicate if one exists.

        Args:
            alert: Newly raised alert

        Returns:
            (stored alert copy, True if a new alert was created)
        """
        async with self._lock:
            open_id = self._open.get(alert.fingerprint)
            existing = self._alerts.get(open_id) if open_id else None

            if (
                existing is not None
                and not existing.acknowledged
                and alert.timestamp - existing.last_seen <= self.dedup_window
            ):
                existing.occurrences += 1
                existing.value = alert.value
                existing.message = alert.message
                existing.last_seen = alert.timestamp
                return replace(existing), False

            self._alerts[alert.id] = alert
            self._open[alert.fingerprint] = alert.id

        self.logger.info(
            "Alert raised",
            alert_id=alert.id,
            user_id=alert.user_id,
            session_id=alert.session_id,
            metric_type=alert.metric_type,
            severity=alert.severity,
            value=alert.value,
        )
        return replace(alert), True

    def get(self, alert_id: str, user_id: str | None = None) -> Alert:
        """Copy of one alert.

        Raises:
            NotFoundError: If the alert does not exist (or belongs to another user)
        """
        return replace(self._lookup(alert_id, user_id))

    def get_active_alerts(self, user_id: str) -> list[Alert]:
        """Unacknowledged alerts for a user across all sessions, newest first."""
        return self.get_alerts(user_id, include_acknowledged=False)

    def get_alerts(
        self,
        user_id: str,
        include_acknowledged: bool = True,
        unread_only: bool = False,
        session_id: str | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """Alerts for a user, newest first."""
        alerts = [
            replace(a)
            for a in reversed(self._alerts.values())
            if a.user_id == user_id
            and (include_acknowledged or not a.acknowledged)
            and (not unread_only or not a.read)
            and (session_id is None or a.session_id == session_id)
        ]
        return alerts[:limit] if limit is not None else alerts

    async def acknowledge_alert(self, alert_id: str, user_id: str | None = None) -> Alert:
        """Mark an alert acknowledged and read. Repeat calls are no-ops.

        Raises:
            NotFoundError: If the alert does not exist
        """
        async with self._lock:
            alert = self._lookup(alert_id, user_id)
            if not alert.acknowledged:
                alert.acknowledged = True
                alert.acknowledged_at = datetime.now(UTC)
                if self._open.get(alert.fingerprint) == alert.id:
                    del self._open[alert.fingerprint]
                self.logger.info("Alert acknowledged", alert_id=alert_id, user_id=alert.user_id)
            alert.read = True
            return replace(alert)

    async def mark_read(self, alert_id: str, user_id: str | None = None) -> Alert:
        """Mark an alert read without acknowledging it.

        Raises:
            NotFoundError: If the alert does not exist
        """
        async with self._lock:
            alert = self._lookup(alert_id, user_id)
            alert.read = True
            return replace(alert)

    async def cleanup(self, now: datetime | None = None) -> int:
        """Remove alerts older than the retention window.

        Returns:
            Number of alerts removed
        """
        cutoff = (now or datetime.now(UTC)) - self.retention
        async with self._lock:
            expired = [a for a in self._alerts.values() if a.last_seen < cutoff]
            for alert in expired:
                del self._alerts[alert.id]
                if self._open.get(alert.fingerprint) == alert.id:
                    del self._open[alert.fingerprint]

        if expired:
            self.logger.info("Expired alerts removed", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._alerts)

    def _lookup(self, alert_id: str, user_id: str | None) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None or (user_id is not None and alert.user_id != user_id):
            raise NotFoundError(f"Alert '{alert_id}' not found", details={"alert_id": alert_id})
        return alert
