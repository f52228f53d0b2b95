"""Raw data endpoints: metric samples and day logs.

These feed every analytics component. Writes are validated in full; a
rejected batch stores nothing.
"""

from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

from litestar import Router, delete, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.schemas import (
    HealthMetricOut,
    MealOut,
    MealRequest,
    MetricBatchRequest,
    SleepOut,
    SleepRequest,
    WorkoutOut,
    WorkoutRequest,
)
from health_analytics_server.services.metric_store import MetricStore, NewMetric


def _window(days: int) -> tuple[datetime, datetime]:
    end = datetime.now(UTC) + timedelta(seconds=1)
    return end - timedelta(days=days), end


@post("/users/{user_id:str}/metrics", status_code=HTTP_201_CREATED)
async def append_metrics(
    user_id: str,
    data: MetricBatchRequest,
    session: AsyncSession,
) -> dict[str, Any]:
    """Append a batch of metric samples.

    Example:
        POST /api/v1/users/12345/metrics
        {"metrics": [{"metric_type": "weight", "value": 82.4}]}
    """
    validate_user_id(user_id)
    store = MetricStore(session)
    stored = await store.append_many(
        user_id,
        [
            NewMetric(
                metric_type=m.metric_type,
                value=m.value,
                unit=m.unit,
                timestamp=m.timestamp,
                source=m.source,
                confidence=m.confidence,
                device_id=m.device_id,
                metadata=m.metadata,
            )
            for m in data.metrics
        ],
    )
    return {
        "user_id": user_id,
        "stored": len(stored),
        "metrics": [HealthMetricOut.model_validate(m).model_dump(mode="json") for m in stored],
    }


@get("/users/{user_id:str}/metrics", status_code=HTTP_200_OK)
async def get_metrics(
    user_id: str,
    session: AsyncSession,
    metric_type: Annotated[str | None, Parameter(query="metric_type")] = None,
    days: Annotated[int, Parameter(query="days", default=30, ge=1, le=3650)] = 30,
    limit: Annotated[int, Parameter(query="limit", default=1000, ge=1, le=10000)] = 1000,
) -> dict[str, Any]:
    """Get metric samples from the last N days, oldest first."""
    validate_user_id(user_id)
    start, end = _window(days)
    metrics = await MetricStore(session).query(user_id, metric_type, start, end, limit=limit)
    return {
        "user_id": user_id,
        "count": len(metrics),
        "metrics": [HealthMetricOut.model_validate(m).model_dump(mode="json") for m in metrics],
    }


@get("/users/{user_id:str}/metrics/statistics", status_code=HTTP_200_OK)
async def get_metric_statistics(
    user_id: str,
    session: AsyncSession,
    metric_type: Annotated[str, Parameter(query="metric_type")],
    time_range: Annotated[str | None, Parameter(query="time_range")] = None,
) -> dict[str, Any]:
    """Count, average, min and max of one metric over a window ending now.

    time_range is hour, day (since UTC midnight), week (default) or month.

    Example:
        GET /api/v1/users/12345/metrics/statistics?metric_type=heart_rate&time_range=day
    """
    validate_user_id(user_id)
    stats = await MetricStore(session).metric_statistics(user_id, metric_type, time_range)
    return {"user_id": user_id, **stats}


@post("/users/{user_id:str}/meals", status_code=HTTP_201_CREATED)
async def log_meal(user_id: str, data: MealRequest, session: AsyncSession) -> dict[str, Any]:
    """Log a meal."""
    validate_user_id(user_id)
    meal = await MetricStore(session).log_meal(user_id, **data.model_dump())
    return MealOut.model_validate(meal).model_dump(mode="json")


@get("/users/{user_id:str}/meals", status_code=HTTP_200_OK)
async def get_meals(
    user_id: str,
    session: AsyncSession,
    days: Annotated[int, Parameter(query="days", default=7, ge=1, le=365)] = 7,
) -> dict[str, Any]:
    """Get meals from the last N days."""
    validate_user_id(user_id)
    meals = await MetricStore(session).meals_between(user_id, *_window(days))
    return {
        "user_id": user_id,
        "count": len(meals),
        "meals": [MealOut.model_validate(m).model_dump(mode="json") for m in meals],
    }


@post("/users/{user_id:str}/workouts", status_code=HTTP_201_CREATED)
async def log_workout(
    user_id: str, data: WorkoutRequest, session: AsyncSession
) -> dict[str, Any]:
    """Log a workout."""
    validate_user_id(user_id)
    workout = await MetricStore(session).log_workout(user_id, **data.model_dump())
    return WorkoutOut.model_validate(workout).model_dump(mode="json")


@get("/users/{user_id:str}/workouts", status_code=HTTP_200_OK)
async def get_workouts(
    user_id: str,
    session: AsyncSession,
    days: Annotated[int, Parameter(query="days", default=7, ge=1, le=365)] = 7,
) -> dict[str, Any]:
    """Get workouts from the last N days."""
    validate_user_id(user_id)
    workouts = await MetricStore(session).workouts_between(user_id, *_window(days))
    return {
        "user_id": user_id,
        "count": len(workouts),
        "workouts": [WorkoutOut.model_validate(w).model_dump(mode="json") for w in workouts],
    }


@post("/users/{user_id:str}/sleep", status_code=HTTP_201_CREATED)
async def log_sleep(user_id: str, data: SleepRequest, session: AsyncSession) -> dict[str, Any]:
    """Log a sleep session."""
    validate_user_id(user_id)
    sleep = await MetricStore(session).log_sleep(user_id, **data.model_dump())
    return SleepOut.model_validate(sleep).model_dump(mode="json")


@get("/users/{user_id:str}/sleep", status_code=HTTP_200_OK)
async def get_sleep(
    user_id: str,
    session: AsyncSession,
    days: Annotated[int, Parameter(query="days", default=7, ge=1, le=365)] = 7,
) -> dict[str, Any]:
    """Get sleep sessions from the last N days."""
    validate_user_id(user_id)
    sleeps = await MetricStore(session).sleep_between(user_id, *_window(days))
    return {
        "user_id": user_id,
        "count": len(sleeps),
        "sleep": [SleepOut.model_validate(s).model_dump(mode="json") for s in sleeps],
    }


@delete("/users/{user_id:str}/data", status_code=HTTP_200_OK)
async def erase_user_data(user_id: str, session: AsyncSession) -> dict[str, Any]:
    """Erase every stored row for a user."""
    validate_user_id(user_id)
    deleted = await MetricStore(session).erase_user_data(user_id)
    return {"user_id": user_id, "deleted": deleted}


data_router = Router(
    path="/",
    route_handlers=[
        append_metrics,
        get_metrics,
        get_metric_statistics,
        log_meal,
        get_meals,
        log_workout,
        get_workouts,
        log_sleep,
        get_sleep,
        erase_user_data,
    ],
    guards=[api_key_guard],
    tags=["Data"],
)
