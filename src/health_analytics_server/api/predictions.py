"""Prediction API endpoints."""

from typing import Annotated, Any

from litestar import Router, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.core.config import Settings
from health_analytics_server.core.locks import KeyedLockRegistry
from health_analytics_server.schemas import PredictionOut, PredictionRequest
from health_analytics_server.services.prediction import PredictionEngine


@post("/users/{user_id:str}/predictions", status_code=HTTP_201_CREATED)
async def generate_health_prediction(
    user_id: str,
    data: PredictionRequest,
    session: AsyncSession,
    settings: Settings,
    locks: KeyedLockRegistry,
) -> dict[str, Any]:
    """Generate a prediction and make it the active one of its type.

    Prediction types:
    - weight_projection: linear trend over the last 90 days of weight
    - goal_achievement: probability of reaching active goals
    - health_risk: 0-100 risk score from vital sign bands
    - performance_optimization: training recommendations

    With too little history the prediction is still stored, flagged
    low_quality with a 0.3 confidence.
    """
    validate_user_id(user_id)
    engine = PredictionEngine(session, locks=locks, settings=settings)
    prediction = await engine.generate_health_prediction(
        user_id,
        data.prediction_type,
        data.target_date,
        model_version=data.model_version,
    )
    return PredictionOut.model_validate(prediction).model_dump(mode="json")


@get("/users/{user_id:str}/predictions", status_code=HTTP_200_OK)
async def get_predictions(
    user_id: str,
    session: AsyncSession,
    prediction_types: Annotated[list[str] | None, Parameter(query="prediction_type")] = None,
    is_active: Annotated[bool | None, Parameter(query="is_active")] = None,
    limit: Annotated[int, Parameter(query="limit", default=20, ge=1, le=200)] = 20,
) -> dict[str, Any]:
    """Get stored predictions, newest first.

    Args:
        user_id: User identifier
        session: Database session (injected)
        prediction_types: Repeatable type filter
        is_active: Only active (true) or superseded (false) predictions
        limit: Maximum rows (default: 20, max: 200)
    """
    validate_user_id(user_id)
    engine = PredictionEngine(session)
    predictions = await engine.get_predictions(
        user_id, prediction_types=prediction_types, is_active=is_active, limit=limit
    )
    return {
        "user_id": user_id,
        "count": len(predictions),
        "predictions": [
            PredictionOut.model_validate(p).model_dump(mode="json") for p in predictions
        ],
    }


predictions_router = Router(
    path="/",
    route_handlers=[generate_health_prediction, get_predictions],
    guards=[api_key_guard],
    tags=["Predictions"],
)
