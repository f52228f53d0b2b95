"""Real-time monitoring API endpoints.

Sessions live in process memory. Samples posted to a session are buffered
and ingested by the session's tick job at its sampling rate.
"""

from typing import Annotated, Any

from litestar import Router, delete, get, post, put
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED, HTTP_204_NO_CONTENT
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.monitoring.service import MonitoringService
from health_analytics_server.monitoring.session import PendingSample
from health_analytics_server.schemas import (
    AlertThresholdConfigOut,
    AlertThresholdRequest,
    MonitoringDataRequest,
    MonitoringSessionRequest,
)
from health_analytics_server.services.thresholds import ThresholdService


@post("/users/{user_id:str}/monitoring/sessions", status_code=HTTP_201_CREATED)
async def create_monitoring_session(
    user_id: str,
    data: MonitoringSessionRequest,
    monitoring: MonitoringService,
    session: AsyncSession,
) -> dict[str, Any]:
    """Start a monitoring session for a device.

    Defaults: 10 s sampling, heart rate 40-100, blood pressure max 140,
    blood oxygen min 95 and eight enabled metrics. The user's stored
    thresholds apply over the defaults, and thresholds passed in apply
    over both.
    """
    validate_user_id(user_id)
    stored = await ThresholdService(session).session_thresholds(user_id)
    thresholds = (
        {metric: bounds.model_dump() for metric, bounds in data.alert_thresholds.items()}
        if data.alert_thresholds
        else None
    )
    live = await monitoring.create_session(
        user_id,
        data.device_id,
        sampling_rate_ms=data.sampling_rate_ms,
        alert_thresholds=thresholds,
        enabled_metrics=data.enabled_metrics,
        data_retention_hours=data.data_retention_hours,
        user_thresholds=stored,
    )
    return live.snapshot()


@get("/users/{user_id:str}/monitoring/sessions", status_code=HTTP_200_OK)
async def get_monitoring_sessions(
    user_id: str,
    monitoring: MonitoringService,
    active_only: Annotated[bool, Parameter(query="active_only", default=False)] = False,
) -> dict[str, Any]:
    """List a user's monitoring sessions, newest first."""
    validate_user_id(user_id)
    sessions = monitoring.get_sessions(user_id, active_only=active_only)
    return {"user_id": user_id, "count": len(sessions), "sessions": sessions}


@get("/monitoring/sessions/{session_id:str}", status_code=HTTP_200_OK, sync_to_thread=False)
def get_monitoring_session(session_id: str, monitoring: MonitoringService) -> dict[str, Any]:
    """Get one session snapshot."""
    return monitoring.get_session(session_id).snapshot()


@post("/monitoring/sessions/{session_id:str}/stop", status_code=HTTP_200_OK)
async def stop_monitoring_session(
    session_id: str, monitoring: MonitoringService
) -> dict[str, Any]:
    """Complete a session. Its tick job is removed and end_time stamped."""
    session = await monitoring.stop_session(session_id)
    return session.snapshot()


@post("/monitoring/sessions/{session_id:str}/pause", status_code=HTTP_200_OK)
async def pause_monitoring_session(
    session_id: str, monitoring: MonitoringService
) -> dict[str, Any]:
    """Pause a session; buffered samples wait until it resumes."""
    session = await monitoring.pause_session(session_id)
    return session.snapshot()


@post("/monitoring/sessions/{session_id:str}/resume", status_code=HTTP_200_OK)
async def resume_monitoring_session(
    session_id: str, monitoring: MonitoringService
) -> dict[str, Any]:
    """Resume a paused session."""
    session = await monitoring.resume_session(session_id)
    return session.snapshot()


@post("/monitoring/sessions/{session_id:str}/samples", status_code=HTTP_200_OK)
async def record_monitoring_data(
    session_id: str,
    data: MonitoringDataRequest,
    monitoring: MonitoringService,
) -> dict[str, Any]:
    """Buffer device samples for the session's next tick.

    Only the newest sample per metric is kept between ticks. Samples for
    metrics the session does not have enabled are rejected.
    """
    samples = [
        PendingSample(
            metric_type=s.metric_type,
            value=s.value,
            unit=s.unit,
            timestamp=s.timestamp,
            quality=s.quality,
            confidence=s.confidence,
        )
        for s in data.samples
    ]
    accepted = await monitoring.record_data(session_id, samples)
    return {"session_id": session_id, "accepted": accepted}


@get("/users/{user_id:str}/monitoring/alerts", status_code=HTTP_200_OK, sync_to_thread=False)
def get_monitoring_alerts(
    user_id: str,
    monitoring: MonitoringService,
    include_acknowledged: Annotated[
        bool, Parameter(query="include_acknowledged", default=False)
    ] = False,
    unread_only: Annotated[bool, Parameter(query="unread_only", default=False)] = False,
    session_id: Annotated[str | None, Parameter(query="session_id")] = None,
    limit: Annotated[int, Parameter(query="limit", default=50, ge=1, le=500)] = 50,
) -> dict[str, Any]:
    """Get a user's alerts across all sessions, newest first.

    By default only unacknowledged alerts are returned.
    """
    validate_user_id(user_id)
    alerts = monitoring.dispatcher.get_alerts(
        user_id,
        include_acknowledged=include_acknowledged,
        unread_only=unread_only,
        session_id=session_id,
        limit=limit,
    )
    return {"user_id": user_id, "count": len(alerts), "alerts": [a.to_dict() for a in alerts]}


@post("/monitoring/alerts/{alert_id:str}/acknowledge", status_code=HTTP_200_OK)
async def acknowledge_alert(alert_id: str, monitoring: MonitoringService) -> dict[str, Any]:
    """Acknowledge an alert. Acknowledging twice is a no-op."""
    alert = await monitoring.dispatcher.acknowledge_alert(alert_id)
    return alert.to_dict()


@post("/monitoring/alerts/{alert_id:str}/read", status_code=HTTP_200_OK)
async def mark_alert_read(alert_id: str, monitoring: MonitoringService) -> dict[str, Any]:
    """Mark an alert read without acknowledging it."""
    alert = await monitoring.dispatcher.mark_read(alert_id)
    return alert.to_dict()


@get("/users/{user_id:str}/monitoring/dashboard", status_code=HTTP_200_OK, sync_to_thread=False)
def get_monitoring_dashboard(user_id: str, monitoring: MonitoringService) -> dict[str, Any]:
    """Live dashboard: active sessions, newest 50 samples, open alerts, devices.

    Example response structure:
    ```json
    {
      "user_id": "12345",
      "active_sessions": [...],
      "recent_metrics": [...],
      "active_alerts": [...],
      "device_status": [...],
      "summary": {
        "total_devices": 1,
        "active_devices": 1,
        "total_metrics": 42,
        "critical_alerts": 0,
        "last_sync": "2026-01-15T08:30:00+00:00"
      }
    }
    ```
    """
    validate_user_id(user_id)
    return monitoring.get_dashboard(user_id)


@get("/users/{user_id:str}/monitoring/thresholds", status_code=HTTP_200_OK)
async def get_alert_thresholds(user_id: str, session: AsyncSession) -> dict[str, Any]:
    """List the user's stored alert thresholds."""
    validate_user_id(user_id)
    configs = await ThresholdService(session).list_thresholds(user_id)
    return {
        "user_id": user_id,
        "count": len(configs),
        "thresholds": [
            AlertThresholdConfigOut.model_validate(c).model_dump(mode="json") for c in configs
        ],
    }


@put("/users/{user_id:str}/monitoring/thresholds/{metric_type:str}", status_code=HTTP_200_OK)
async def set_alert_threshold(
    user_id: str,
    metric_type: str,
    data: AlertThresholdRequest,
    session: AsyncSession,
) -> dict[str, Any]:
    """Create or replace the stored threshold for one metric.

    Applies to sessions started afterwards. enabled=false switches the
    metric's alerts off, including the built-in default.

    Example:
        PUT /api/v1/users/12345/monitoring/thresholds/heart_rate
        {"min": 45, "max": 120}
    """
    validate_user_id(user_id)
    config = await ThresholdService(session).set_threshold(
        user_id, metric_type, min_value=data.min, max_value=data.max, enabled=data.enabled
    )
    return AlertThresholdConfigOut.model_validate(config).model_dump(mode="json")


@delete(
    "/users/{user_id:str}/monitoring/thresholds/{metric_type:str}",
    status_code=HTTP_204_NO_CONTENT,
)
async def delete_alert_threshold(user_id: str, metric_type: str, session: AsyncSession) -> None:
    """Remove a stored threshold; new sessions use the default again."""
    validate_user_id(user_id)
    await ThresholdService(session).delete_threshold(user_id, metric_type)


monitoring_router = Router(
    path="/",
    route_handlers=[
        create_monitoring_session,
        get_monitoring_sessions,
        get_monitoring_session,
        stop_monitoring_session,
        pause_monitoring_session,
        resume_monitoring_session,
        record_monitoring_data,
        get_monitoring_alerts,
        acknowledge_alert,
        mark_alert_read,
        get_monitoring_dashboard,
        get_alert_thresholds,
        set_alert_threshold,
        delete_alert_threshold,
    ],
    guards=[api_key_guard],
    tags=["Monitoring"],
)
