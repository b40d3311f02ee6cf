"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → HTTP status via ``_STATUS_BY_ERROR`` (400-500)
- RateLimitedAppError → 429 plus Retry-After/X-RateLimit-* headers
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    AuthorizationAppError,
    ConflictAppError,
    NotFoundAppError,
    RateLimitedAppError,
    UpstreamAppError,
    ValidationAppError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Checked in order; first matching class wins
_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (ValidationAppError, 400),
    (AuthorizationAppError, 403),
    (NotFoundAppError, 404),
    (ConflictAppError, 409),
    (RateLimitedAppError, 429),
    (UpstreamAppError, 500),
)


def status_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _rate_limit_headers(request: Request, exc: RateLimitedAppError) -> dict[str, str]:
    details = exc.details or {}
    headers = {"Retry-After": str(details.get("retry_after", 1))}

    settings = getattr(request.app.state, "settings", None)
    if settings is None or settings.rate_limit.include_headers:
        if "limit" in details:
            headers["X-RateLimit-Limit"] = str(details["limit"])
        headers["X-RateLimit-Remaining"] = "0"
        if "reset_at" in details:
            headers["X-RateLimit-Reset"] = str(details["reset_at"])
    return headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context
    """
    status_code = status_for(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    headers = None
    if isinstance(exc, RateLimitedAppError):
        headers = _rate_limit_headers(request, exc)

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the failure for debugging while returning a generic message, so no
    stack traces or internals reach the client.
    """
    logger.error(
        "unhandled_exception",
        exc_info=exc,
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Specific handlers are registered before the general fallback.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
