"""Shared request validation and app-state dependency providers."""

import re

from litestar.datastructures import State
from litestar.exceptions import ValidationException

from health_analytics_server.core.config import Settings
from health_analytics_server.core.locks import KeyedLockRegistry
from health_analytics_server.monitoring.service import MonitoringService

# Regex for valid user_id format (alphanumeric, underscores, hyphens)
USER_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_user_id(user_id: str) -> str:
    """Validate user_id format to prevent injection attacks.

    Args:
        user_id: The user identifier to validate

    Returns:
        The validated user_id

    Raises:
        ValidationException: If user_id format is invalid
    """
    if not user_id or len(user_id) > 100:
        raise ValidationException("Invalid user_id: must be 1-100 characters")
    if not USER_ID_PATTERN.match(user_id):
        raise ValidationException("Invalid user_id: must be alphanumeric with _ or - only")
    return user_id


def provide_settings(state: State) -> Settings:
    """Settings the app was built with."""
    return state.settings


def provide_locks(state: State) -> KeyedLockRegistry:
    """Process-wide keyed locks for score upserts and prediction activation."""
    return state.locks


def provide_monitoring(state: State) -> MonitoringService:
    """The single monitoring service for this process."""
    return state.monitoring
