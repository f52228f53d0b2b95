"""Analytics error taxonomy and HTTP mapping.

Error Classification:

    InsufficientDataError: too little history. Computation paths degrade to a
        low-confidence result instead of raising; this type exists for callers
        that explicitly demand a minimum sample count.
    NotFoundError: goal, report, session or alert lookup miss (404).
    InvalidInputError: malformed metric type, out-of-range value, illegal
        session transition. Raised before anything is persisted (400).
    ConflictError: concurrent writer won a keyed upsert. Retried internally
        by the score engine and only surfaces once retries are exhausted (409).
    UnavailableError: backing store unreachable or capacity exhausted (503).
"""

from typing import Any

import structlog
from litestar import Request, Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_503_SERVICE_UNAVAILABLE,
)
from sqlalchemy.exc import InterfaceError, OperationalError

logger = structlog.get_logger()


class AnalyticsError(Exception):
    """Base class for all analytics errors.

    Attributes:
        message: Human-readable error message
        details: Extra context returned to the caller and logged
        status_code: HTTP status used when the error reaches the API layer
    """

    status_code: int = HTTP_400_BAD_REQUEST
    error_type: str = "analytics_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a response body."""
        return {
            "error": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class InsufficientDataError(AnalyticsError):
    """Too few history points for the requested computation."""

    status_code = HTTP_422_UNPROCESSABLE_ENTITY
    error_type = "insufficient_data"


class NotFoundError(AnalyticsError):
    """Lookup miss for a goal, report, session or alert."""

    status_code = HTTP_404_NOT_FOUND
    error_type = "not_found"


class InvalidInputError(AnalyticsError):
    """Malformed or out-of-range input, rejected before persistence."""

    status_code = HTTP_400_BAD_REQUEST
    error_type = "invalid_input"


class ConflictError(AnalyticsError):
    """A concurrent writer won a keyed upsert."""

    status_code = HTTP_409_CONFLICT
    error_type = "conflict"


class UnavailableError(AnalyticsError):
    """Backing store unreachable or a bounded resource is exhausted."""

    status_code = HTTP_503_SERVICE_UNAVAILABLE
    error_type = "unavailable"


def analytics_exception_handler(
    request: Request[Any, Any, Any], exc: AnalyticsError
) -> Response[Any]:
    """Render an AnalyticsError as a JSON response."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        error_type=exc.error_type,
        error=exc.message,
    )
    return Response(content=exc.to_dict(), status_code=exc.status_code)


def database_unavailable_handler(
    request: Request[Any, Any, Any], exc: OperationalError | InterfaceError
) -> Response[Any]:
    """Render driver-level connectivity failures as UnavailableError."""
    error = UnavailableError("Database unavailable", details={"reason": type(exc).__name__})
    return analytics_exception_handler(request, error)


exception_handlers = {
    AnalyticsError: analytics_exception_handler,
    OperationalError: database_unavailable_handler,
    InterfaceError: database_unavailable_handler,
}
