"""API key authentication for service-to-service requests.

A single API key is read from config (API_KEY env var). When it is unset the
API runs in open mode, which is how local development and tests use it.
"""

import logging
import secrets
from typing import Any

from litestar.connection import ASGIConnection
from litestar.exceptions import NotAuthorizedException
from litestar.handlers import BaseRouteHandler

from health_analytics_server.core.config import Settings, settings

logger = logging.getLogger(__name__)


def _extract_api_key(connection: ASGIConnection[Any, Any, Any, Any]) -> str | None:
    """Extract API key from request headers.

    Args:
        connection: The ASGI connection

    Returns:
        The API key string or None if not found
    """
    # Try X-API-Key header first
    api_key = connection.headers.get("X-API-Key")

    if not api_key:
        # Try Authorization: Bearer header
        auth_header = connection.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            api_key = auth_header[7:]

    return api_key


def _settings_for(connection: ASGIConnection[Any, Any, Any, Any]) -> Settings:
    """Settings attached to the running app, falling back to the global instance."""
    return getattr(connection.app.state, "settings", None) or settings


async def api_key_guard(
    connection: ASGIConnection[Any, Any, Any, Any], _: BaseRouteHandler
) -> None:
    """Litestar guard that validates the API key from request headers.

    Uses constant-time comparison to prevent timing attacks.

    Args:
        connection: The ASGI connection
        _: The route handler (unused)

    Raises:
        NotAuthorizedException: If API key is required but missing/invalid
    """
    configured_key = _settings_for(connection).api_key
    if not configured_key:
        logger.debug("No API_KEY configured - authentication disabled")
        return

    raw_key = _extract_api_key(connection)
    if not raw_key:
        logger.warning("API request without authentication")
        raise NotAuthorizedException("Missing API key. Use X-API-Key header.")

    if not secrets.compare_digest(raw_key, configured_key):
        logger.warning("Invalid API key attempted")
        raise NotAuthorizedException("Invalid API key")

    logger.debug("API key validated successfully")
