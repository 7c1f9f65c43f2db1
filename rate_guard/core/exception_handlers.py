"""Map rate-guard domain errors to HTTP responses.

Status mapping:
- InvalidKeyError (and any other ValidationAppError) -> 400. The request has
  no usable client address, so it cannot be counted against any quota.
- StoreUnavailableError -> 503. Only reaches this handler under the
  ``closed`` failure policy; under ``open`` the dependency admits instead.
- Anything else -> 500 with a generic message.

A throttled request is not an error here: the dependency raises FastAPI's own
HTTPException(429), which FastAPI renders with its Retry-After header.

Body shape: ``{"error": {"code", "message", "request_id", "details"?}}``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rate_guard.core.errors import AppError, StoreUnavailableError
from rate_guard.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, StoreUnavailableError):
        return 503
    return 400


def _error_body(code: str, message: str, details=None) -> dict:
    body = {"code": code, "message": message, "request_id": get_request_id()}
    if details:
        body["details"] = details
    return {"error": body}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError as 400 (bad client key) or 503 (store down)."""
    status_code = _status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "path": request.url.path,
            "request_id": get_request_id(),
        },
    )
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected failure; the client only sees a generic 500."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "path": request.url.path,
            "method": request.method,
            "request_id": get_request_id(),
        },
    )
    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
