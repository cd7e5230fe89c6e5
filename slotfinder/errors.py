"""Standardized error handling for the API.

This module provides:
1. Custom exception classes for HTTP-level errors
2. Mapping from storage adaptor errors to HTTP responses
3. Exception handlers for FastAPI and the standard error response model

Usage:
    from slotfinder.errors import UnauthorizedError

    # In controllers:
    if key != expected:
        raise UnauthorizedError(detail="Missing or incorrect X-Cron-Key header")

    # Register handlers when building the app:
    from slotfinder.errors import register_exception_handlers
    register_exception_handlers(app)
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from slotfinder.adaptors.errors import AdaptorError, Backend, Conflict, NotFound, Unauthorized

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    detail: str | None = None
    error_code: str | None = None
    context: dict[str, Any] | None = None


class APIError(Exception):
    """Base class for API errors."""

    status_code: int = 500
    error: str = "internal_error"
    detail: str = "An unexpected error occurred"

    def __init__(
        self,
        detail: str | None = None,
        error_code: str | None = None,
        **context: Any,
    ) -> None:
        self.detail = detail or self.__class__.detail
        self.error_code = error_code
        self.context = context if context else None
        super().__init__(self.detail)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.error,
            detail=self.detail,
            error_code=self.error_code,
            context=self.context,
        )


class NotFoundError(APIError):
    """Resource not found error (404)."""

    status_code = 404
    error = "not_found"
    detail = "Resource not found"


class BadRequestError(APIError):
    """Bad request error (400)."""

    status_code = 400
    error = "bad_request"
    detail = "Invalid request"


class UnauthorizedError(APIError):
    """Unauthorized error (401)."""

    status_code = 401
    error = "unauthorized"
    detail = "Authentication required"


class ConflictError(APIError):
    """Conflict error (409)."""

    status_code = 409
    error = "conflict"
    detail = "Resource already exists"


class TooManyRequestsError(APIError):
    """Rate limit exceeded (429)."""

    status_code = 429
    error = "rate_limited"
    detail = "Too many requests"


class ServiceUnavailableError(APIError):
    """Service unavailable error (503)."""

    status_code = 503
    error = "service_unavailable"
    detail = "Service temporarily unavailable"


_ADAPTOR_ERROR_MAP: dict[type[AdaptorError], type[APIError]] = {
    NotFound: NotFoundError,
    Conflict: ConflictError,
    Unauthorized: UnauthorizedError,
    Backend: ServiceUnavailableError,
}


def from_adaptor_error(exc: AdaptorError) -> APIError:
    """Translate a storage error into the matching API error."""
    for adaptor_cls, api_cls in _ADAPTOR_ERROR_MAP.items():
        if isinstance(exc, adaptor_cls):
            return api_cls(detail=exc.detail)
    return APIError(detail=exc.detail)


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors."""
    logger.warning(
        "API error: %s (status=%d, path=%s)",
        exc.detail,
        exc.status_code,
        request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


async def adaptor_error_handler(request: Request, exc: AdaptorError) -> JSONResponse:
    """Handle storage errors that escaped a controller."""
    if isinstance(exc, Backend):
        logger.error("Storage backend error: %s (path=%s)", exc.detail, request.url.path)
    return await api_error_handler(request, from_adaptor_error(exc))


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(AdaptorError, adaptor_error_handler)
