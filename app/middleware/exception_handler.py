"""Error responses for the task API.

Every error leaves as ``{"error", "detail", "request_id"}`` JSON:

- 400: bad task input (missing repository URL, unusable issue key).
- 409: the task was cancelled between attempts.
- 422: the request body failed validation; ``detail`` lists the fields.
- 502: a task step failed; ``detail["step"]`` names it (prepare, branch,
  generate, verify, commit, push).
- 504: ``TASK_TIMEOUT_SECONDS`` elapsed.
- 500: anything else.  The stack is logged, never returned.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import AppError, format_error_response

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    """Return the ID set by :class:`RequestIDMiddleware`, or a new UUID-4."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


# ------------------------------------------------------------------
# Individual exception handlers
# ------------------------------------------------------------------

async def global_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Anything that escaped the task service: 500 without internals."""
    request_id = _get_request_id(request)
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method,
        request.url.path,
        request_id,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(
            error="Internal Server Error",
            detail="Internal server error",
            request_id=request_id,
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Unknown routes and framework errors keep their status code."""
    request_id = _get_request_id(request)
    logger.warning(
        "HTTP %s on %s %s [request_id=%s]: %s",
        exc.status_code,
        request.method,
        request.url.path,
        request_id,
        exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error=str(exc.detail) if exc.detail else "Error",
            detail=str(exc.detail) if exc.detail else None,
            request_id=request_id,
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """A task body that does not parse: 422 with the field errors."""
    request_id = _get_request_id(request)
    errors = exc.errors()
    logger.warning(
        "Validation error on %s %s [request_id=%s]: %s",
        request.method,
        request.url.path,
        request_id,
        errors,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=format_error_response(
            error="Validation failed",
            detail=errors,
            request_id=request_id,
        ),
    )


async def app_error_handler(
    request: Request, exc: AppError
) -> JSONResponse:
    """Send a task failure back with its own status and structured detail.

    ``TaskError`` detail carries the failing step plus whatever the library
    error attached (remote branches, attempts so far).  Plain ``AppError``s
    have no detail, so the message is repeated there.
    """
    request_id = _get_request_id(request)
    step = exc.detail.get("step") if isinstance(exc.detail, dict) else None
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "%s (step=%s) on %s %s [request_id=%s]: %s",
        type(exc).__name__,
        step or "-",
        request.method,
        request.url.path,
        request_id,
        exc,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error=str(exc),
            detail=exc.detail or str(exc),
            request_id=request_id,
        ),
    )


# ------------------------------------------------------------------
# Registration helper
# ------------------------------------------------------------------

def setup_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on *app*.

    Call this **after** the app is created but **before** routers are
    included so that every route is covered.
    """
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]
