"""
Exception handlers for the application.
"""
import sqlite3
import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tinytask.exceptions.errors import (
    TinyTaskError,
    ValidationError,
    NotFoundError,
    SessionNotFoundError,
)
from tinytask.monitoring import get_request_id

logger = logging.getLogger(__name__)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    request_id = get_request_id() or '-'
    logger.error(
        f"Unhandled exception in {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "exception_type": type(exc).__name__,
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred.",
            "path": request.url.path,
            "method": request.method,
            "request_id": request_id
        }
    )


async def tinytask_exception_handler(request: Request, exc: TinyTaskError) -> JSONResponse:
    """
    Handler for service errors that escaped the protocol boundary.
    """
    request_id = get_request_id() or '-'
    if isinstance(exc, (NotFoundError, SessionNotFoundError)):
        status_code = 404
    elif isinstance(exc, ValidationError):
        status_code = 400
    else:
        status_code = 500

    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"{type(exc).__name__} in {request.method} {request.url.path}: {exc.message}",
        extra={"request_id": request_id, "error_type": type(exc).__name__}
    )

    content = exc.to_dict()
    content.update({
        "path": request.url.path,
        "method": request.method,
        "request_id": request_id,
    })
    return JSONResponse(status_code=status_code, content=content)


async def sqlite_exception_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    """
    Handler for SQLite database errors.
    """
    request_id = get_request_id() or '-'
    logger.error(
        f"Database error in {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "error_type": type(exc).__name__,
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Database error",
            "detail": "A database operation failed.",
            "path": request.url.path,
            "method": request.method,
            "request_id": request_id
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors with clear messages.
    """
    request_id = get_request_id() or '-'
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append(f"{field}: {error['msg']}")

    logger.warning(
        f"Validation error in {request.method} {request.url.path}: {', '.join(errors)}",
        extra={"request_id": request_id, "errors": errors}
    )
    response = JSONResponse(
        status_code=422,
        content={
            "error": "Validation error",
            "detail": "One or more fields failed validation",
            "errors": errors,
            "path": request.url.path,
            "method": request.method,
            "request_id": request_id
        }
    )
    if request_id != '-':
        response.headers["X-Request-ID"] = request_id
    return response


def setup_exception_handlers(app):
    """
    Register exception handlers with the FastAPI app.
    """
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(TinyTaskError, tinytask_exception_handler)
    app.add_exception_handler(sqlite3.Error, sqlite_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
