"""Health goal API endpoints."""

from typing import Annotated, Any

from litestar import Router, delete, get, patch, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED, HTTP_204_NO_CONTENT
from sqlalchemy.ext.asyncio import AsyncSession

from health_analytics_server.api.dependencies import validate_user_id
from health_analytics_server.core.auth import api_key_guard
from health_analytics_server.schemas import GoalCreateRequest, GoalUpdateRequest, HealthGoalOut
from health_analytics_server.services.goals import GoalService


@post("/users/{user_id:str}/goals", status_code=HTTP_201_CREATED)
async def create_health_goal(
    user_id: str,
    data: GoalCreateRequest,
    session: AsyncSession,
) -> dict[str, Any]:
    """Create an active goal with zero progress.

    Example:
        POST /api/v1/users/12345/goals
        {"goal_type": "weight_loss", "target_value": 75, "target_date": "2026-06-01"}
    """
    validate_user_id(user_id)
    service = GoalService(session)
    goal = await service.create_health_goal(
        user_id,
        goal_type=data.goal_type,
        target_value=data.target_value,
        target_date=data.target_date,
        deadline_date=data.deadline_date,
        priority=data.priority,
        milestones=data.milestones,
    )
    return HealthGoalOut.model_validate(goal).model_dump(mode="json")


@get("/users/{user_id:str}/goals", status_code=HTTP_200_OK)
async def get_health_goals(
    user_id: str,
    session: AsyncSession,
    status: Annotated[str | None, Parameter(query="status")] = None,
    goal_type: Annotated[str | None, Parameter(query="goal_type")] = None,
    priority: Annotated[str | None, Parameter(query="priority")] = None,
) -> dict[str, Any]:
    """List goals, soonest target date first."""
    validate_user_id(user_id)
    service = GoalService(session)
    goals = await service.get_health_goals(
        user_id, status=status, goal_type=goal_type, priority=priority
    )
    return {
        "user_id": user_id,
        "count": len(goals),
        "goals": [HealthGoalOut.model_validate(g).model_dump(mode="json") for g in goals],
    }


@get("/users/{user_id:str}/goals/{goal_id:str}", status_code=HTTP_200_OK)
async def get_health_goal(
    user_id: str,
    goal_id: str,
    session: AsyncSession,
) -> dict[str, Any]:
    """Get one goal."""
    validate_user_id(user_id)
    goal = await GoalService(session).get_health_goal(goal_id, user_id)
    return HealthGoalOut.model_validate(goal).model_dump(mode="json")


@patch("/users/{user_id:str}/goals/{goal_id:str}", status_code=HTTP_200_OK)
async def update_health_goal(
    user_id: str,
    goal_id: str,
    data: GoalUpdateRequest,
    session: AsyncSession,
) -> dict[str, Any]:
    """Partially update a goal.

    Only fields present in the body are applied. Progress reaching 100
    completes the goal; milestones reached by current_value are stamped.
    """
    validate_user_id(user_id)
    service = GoalService(session)
    goal = await service.update_health_goal(
        goal_id, user_id, data.model_dump(exclude_unset=True)
    )
    return HealthGoalOut.model_validate(goal).model_dump(mode="json")


@delete("/users/{user_id:str}/goals/{goal_id:str}", status_code=HTTP_204_NO_CONTENT)
async def delete_health_goal(
    user_id: str,
    goal_id: str,
    session: AsyncSession,
) -> None:
    """Delete a goal."""
    validate_user_id(user_id)
    await GoalService(session).delete_health_goal(goal_id, user_id)


goals_router = Router(
    path="/",
    route_handlers=[
        create_health_goal,
        get_health_goals,
        get_health_goal,
        update_health_goal,
        delete_health_goal,
    ],
    guards=[api_key_guard],
    tags=["Goals"],
)
