"""Global exception handlers for consistent error responses.

Design:
- AppError subclasses -> HTTP status by type (404, 400, 403, 500)
- Unexpected Exception -> generic 500 (safety net)
- All responses include request_id for tracing
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    NoteNotFoundError,
    ValidationAppError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)


def status_code_for(exc: AppError) -> int:
    """Map a domain error to an HTTP status code.

    - NoteNotFoundError -> 404
    - ValidationAppError -> 400
    - AuthenticationAppError -> 403
    - anything else (cache, repository) -> 500
    """

    if isinstance(exc, NoteNotFoundError):
        return 404
    if isinstance(exc, ValidationAppError):
        return 400
    if isinstance(exc, AuthenticationAppError):
        return 403
    return 500


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with a consistent JSON body.

    Body shape: ``{"error": {code, message, request_id, details?}}``.
    """

    status_code = status_code_for(exc)
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

    return JSONResponse(status_code=status_code, content={"error": error_content})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors; never leaks internals to the client."""

    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
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
    """Register all exception handlers with the FastAPI app."""

    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
