"""Exception handlers that turn errors into the proxy's JSON error envelope.

Every error response has the shape::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details"?: ...}}

Status mapping:
- ValidationAppError (and plain AppError) → 400
- UpstreamAppError → 500 (Motion unreachable, timed out, or not configured)
- StorageAppError → 503 (rate limiter cannot read its window, request refused)
- anything else → 500 with a generic message
"""

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from motion_proxy.core.errors import AppError, StorageAppError, UpstreamAppError
from motion_proxy.core.logging import get_request_id

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (StorageAppError, 503),
    (UpstreamAppError, 500),
)

_GENERIC_MESSAGE = "An unexpected error occurred. Please try again later."


def status_code_for(exc: AppError) -> int:
    """HTTP status for a domain error; unlisted subclasses are client faults."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError.

    Also called directly by the rate-limit middleware, which runs outside
    FastAPI's exception middleware and cannot rely on handler dispatch.
    """
    status_code = status_code_for(exc)
    level = logging.ERROR if status_code >= 500 else logging.WARNING

    logger.log(
        level,
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "request_path": request.url.path,
            "request_method": request.method,
            "has_details": bool(exc.details),
        },
    )

    return error_response(status_code, exc.code, exc.message, exc.details or None)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler. The client never sees the exception text."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
        exc_info=exc,
    )

    return error_response(500, "internal_server_error", _GENERIC_MESSAGE)


def setup_exception_handlers(app) -> None:
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
