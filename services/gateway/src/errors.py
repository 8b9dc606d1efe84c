"""Error handling and exception handlers for the Review Automations Gateway.

Provides consistent error response formatting and logging across all endpoints.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from packages.core.src.config import Environment, get_config
from packages.core.src.errors import (
    AutomationError,
    EngineNotRunningError,
    InvalidAutomationError,
    InvalidEventError,
    RepositoryError,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _is_production() -> bool:
    """Check if running in production environment (cached)."""
    return get_config().environment == Environment.PRODUCTION


class ResourceNotFoundError(AutomationError):
    """Resource not found, or owned by another tenant."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found",
            code="RESOURCE_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


# Domain errors -> HTTP status; anything else is a 500
ERROR_STATUS: dict[type[AutomationError], int] = {
    ResourceNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidAutomationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidEventError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EngineNotRunningError: status.HTTP_503_SERVICE_UNAVAILABLE,
    RepositoryError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: AutomationError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _format_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
    path: str | None = None,
) -> dict[str, Any]:
    """Format a consistent error response."""
    response = {
        "error": error_code,
        "message": message,
        "status_code": status_code,
    }

    if details and not _is_production():
        # Only include details in non-production for security
        response["details"] = details

    if path:
        response["path"] = path

    return response


async def automation_error_handler(request: Request, exc: AutomationError) -> JSONResponse:
    """Handle review automation errors."""
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "automation_error: code=%s path=%s message=%s",
        exc.code,
        request.url.path,
        exc.message,
    )

    return JSONResponse(
        status_code=status_code,
        content=_format_error_response(
            error_code=exc.code,
            message=exc.message,
            status_code=status_code,
            details=exc.details,
            path=request.url.path,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPExceptions with consistent formatting."""
    logger.warning(
        "http_exception: status=%d path=%s detail=%s",
        exc.status_code,
        request.url.path,
        exc.detail,
    )

    # Map status codes to error codes
    error_code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "UNPROCESSABLE_ENTITY",
        500: "INTERNAL_SERVER_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }

    error_code = error_code_map.get(exc.status_code, "HTTP_ERROR")

    return JSONResponse(
        status_code=exc.status_code,
        content=_format_error_response(
            error_code=error_code,
            message=str(exc.detail) if exc.detail else "An error occurred",
            status_code=exc.status_code,
            path=request.url.path,
        ),
        headers=getattr(exc, "headers", None),
    )


def _field_errors(errors: list[dict[str, Any]], skip_body: bool) -> list[dict[str, Any]]:
    return [
        {
            "field": " -> ".join(
                str(part) for part in error["loc"] if not (skip_body and part == "body")
            ),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in errors
    ]


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors with user-friendly messages."""
    field_errors = _field_errors(exc.errors(), skip_body=True)
    logger.warning("validation_error: path=%s errors=%s", request.url.path, field_errors)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_format_error_response(
            error_code="VALIDATION_ERROR",
            message="Request validation failed",
            status_code=422,
            details={"errors": field_errors},
            path=request.url.path,
        ),
    )


async def pydantic_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic ValidationError (from model construction)."""
    field_errors = _field_errors(exc.errors(), skip_body=False)
    logger.warning("pydantic_validation_error: path=%s errors=%s", request.url.path, field_errors)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_format_error_response(
            error_code="VALIDATION_ERROR",
            message="Data validation failed",
            status_code=422,
            details={"errors": field_errors},
            path=request.url.path,
        ),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Handle database integrity errors (e.g., unique constraint violations)."""
    error_str = str(exc.orig) if exc.orig else str(exc)
    logger.warning("integrity_error: path=%s error=%s", request.url.path, error_str)

    if "unique" in error_str.lower() or "duplicate" in error_str.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_ENTRY"
    elif "foreign" in error_str.lower():
        message = "Referenced record does not exist"
        error_code = "INVALID_REFERENCE"
    else:
        message = "Data constraint violation"
        error_code = "INTEGRITY_ERROR"

    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=_format_error_response(
            error_code=error_code,
            message=message,
            status_code=409,
            path=request.url.path,
        ),
    )


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle general SQLAlchemy errors."""
    logger.error("database_error: path=%s error=%s", request.url.path, str(exc), exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_format_error_response(
            error_code="DATABASE_ERROR",
            message="A database error occurred" if _is_production() else str(exc),
            status_code=500,
            path=request.url.path,
        ),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all unhandled exceptions."""
    logger.error(
        "unhandled_exception: path=%s method=%s error_type=%s error=%s",
        request.url.path,
        request.method,
        type(exc).__name__,
        str(exc),
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_format_error_response(
            error_code="INTERNAL_SERVER_ERROR",
            message="An unexpected error occurred" if _is_production() else str(exc),
            status_code=500,
            path=request.url.path,
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance
    """
    # Domain errors
    app.add_exception_handler(AutomationError, automation_error_handler)

    # HTTP exceptions
    app.add_exception_handler(HTTPException, http_exception_handler)

    # Validation errors
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, pydantic_validation_handler)

    # Database errors
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)

    # Catch-all for unhandled exceptions
    app.add_exception_handler(Exception, global_exception_handler)

    logger.info("Error handlers registered")
