"""Error taxonomy of the route tracker and its HTTP mapping."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.common.logging import get_logger

logger = get_logger(__name__)


class RouteTrackingError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(RouteTrackingError):
    """Missing or malformed input, including non-permutation reorders."""

    kind = "validation_error"
    status_code = 422


class NotFound(RouteTrackingError):
    """Entity absent, soft-deleted or owned by someone else."""

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(RouteTrackingError):
    """Mutation not allowed in the route's current state."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidOperation(RouteTrackingError):
    """Operation invoked on the wrong route variant."""

    kind = "invalid_operation"
    status_code = status.HTTP_400_BAD_REQUEST


class InternalError(RouteTrackingError):
    kind = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_response(
    status_code: int, kind: str, message: str, **extra: Any
) -> JSONResponse:
    content: dict[str, Any] = {"error": kind, "detail": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    error_id = str(uuid.uuid4())
    logger.error(
        "request.failed",
        error_id=error_id,
        method=request.method,
        path=request.url.path,
        exc_info=exc,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.kind,
        "Internal server error",
        error_id=error_id,
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register handlers rendering ``{"error": kind, "detail": message}``."""

    @app.exception_handler(RouteTrackingError)
    async def route_tracking_error_handler(
        request: Request, exc: RouteTrackingError
    ) -> JSONResponse:
        if isinstance(exc, InternalError):
            return _internal_error(request, exc)
        logger.info(
            "request.rejected",
            kind=exc.kind,
            path=request.url.path,
            detail=exc.message,
        )
        extra = {"details": exc.details} if exc.details else {}
        return _error_response(exc.status_code, exc.kind, exc.message, **extra)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        field_errors = jsonable_encoder(exc.errors())
        logger.info(
            "request.rejected",
            kind=ValidationError.kind,
            path=request.url.path,
            detail=field_errors,
        )
        return _error_response(
            ValidationError.status_code,
            ValidationError.kind,
            "Request validation failed",
            details={"errors": field_errors},
        )

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(
        request: Request, exc: SQLAlchemyError
    ) -> JSONResponse:
        return _internal_error(request, exc)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        return _internal_error(request, exc)
