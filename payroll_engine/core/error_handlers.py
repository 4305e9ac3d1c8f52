"""
Exception handlers for the payroll engine API.

Every failure leaves the service in the same envelope::

    {"error": true, "status_code": 409, "error_code": "STALE_REVISION",
     "detail": "...", "error_data": {...}, "request_id": "...", "timestamp": "..."}

Domain errors (``BaseAPIException``) carry their own code and payload;
database errors are classified from the driver exception so PostgreSQL and
SQLite deployments report the same codes.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    DataError,
    OperationalError,
)
from psycopg2.errors import (
    UniqueViolation,
    ForeignKeyViolation,
    CheckViolation,
    InvalidTextRepresentation,
    ConnectionException,
)

from payroll_engine.core.exceptions import BaseAPIException
from payroll_engine.core.config import settings

logger = logging.getLogger(__name__)

# (driver exception, sqlite message fragment) -> (status, error code, detail)
_INTEGRITY_RULES = (
    (UniqueViolation, "UNIQUE constraint failed",
     (status.HTTP_409_CONFLICT, "DUPLICATE_RESOURCE", "Resource already exists with the provided data")),
    (ForeignKeyViolation, "FOREIGN KEY constraint failed",
     (status.HTTP_400_BAD_REQUEST, "INVALID_REFERENCE", "Referenced resource does not exist")),
    (CheckViolation, "CHECK constraint failed",
     (status.HTTP_400_BAD_REQUEST, "CONSTRAINT_VIOLATION", "Value violates a database constraint")),
)


def create_error_response(
    status_code: int,
    detail: Any,
    error_code: Optional[str] = None,
    error_data: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    content = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if error_code:
        content["error_code"] = error_code
    if error_data:
        content["error_data"] = error_data
    if request_id:
        content["request_id"] = request_id

    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def _request_extra(request: Request) -> Dict[str, Any]:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "tenant_id": request.headers.get("X-Tenant-ID"),
        "path": request.url.path,
        "method": request.method,
    }


def classify_database_error(exc: SQLAlchemyError) -> Tuple[int, str, str]:
    """Map a SQLAlchemy error to (status code, error code, detail)."""
    if isinstance(exc, IntegrityError):
        message = str(exc.orig)
        for driver_error, sqlite_fragment, outcome in _INTEGRITY_RULES:
            if isinstance(exc.orig, driver_error) or sqlite_fragment in message:
                return outcome
        return status.HTTP_400_BAD_REQUEST, "INTEGRITY_ERROR", "Data integrity constraint violated"

    if isinstance(exc, DataError):
        if isinstance(exc.orig, InvalidTextRepresentation):
            return status.HTTP_400_BAD_REQUEST, "INVALID_DATA_FORMAT", "Invalid data format provided"
        return status.HTTP_400_BAD_REQUEST, "DATA_ERROR", "Invalid data provided"

    if isinstance(exc, OperationalError):
        if isinstance(exc.orig, ConnectionException):
            return status.HTTP_503_SERVICE_UNAVAILABLE, "DATABASE_CONNECTION_ERROR", "Database connection failed"
        return status.HTTP_500_INTERNAL_SERVER_ERROR, "DATABASE_OPERATION_ERROR", "Database operation failed"

    return status.HTTP_500_INTERNAL_SERVER_ERROR, "DATABASE_ERROR", "Database error occurred"


async def api_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Domain errors and plain HTTP errors (404 routes, 405 methods)."""
    error_code = getattr(exc, "error_code", None) or "HTTP_EXCEPTION"
    extra = _request_extra(request)

    logger.warning(
        f"{error_code}: {exc.detail}",
        extra={**extra, "status_code": exc.status_code, "error_code": error_code}
    )

    return create_error_response(
        status_code=exc.status_code,
        detail=exc.detail,
        error_code=error_code,
        error_data=getattr(exc, "error_data", None),
        request_id=extra["request_id"]
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request bodies, paths and queries that fail schema validation."""
    extra = _request_extra(request)
    validation_errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    logger.warning(f"Request validation failed with {len(validation_errors)} error(s)", extra=extra)

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail="Request validation failed",
        error_code="VALIDATION_ERROR",
        error_data={"validation_errors": validation_errors},
        request_id=extra["request_id"]
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    extra = _request_extra(request)
    status_code, error_code, detail = classify_database_error(exc)

    logger.error(
        f"Database error {error_code}: {exc}",
        extra={**extra, "exception_type": type(exc).__name__}
    )

    error_data = None
    if settings.debug:
        error_data = {"exception_type": type(exc).__name__, "original_error": str(exc)}

    return create_error_response(
        status_code=status_code,
        detail=detail,
        error_code=error_code,
        error_data=error_data,
        request_id=extra["request_id"]
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    extra = _request_extra(request)
    logger.error(
        f"Unhandled {type(exc).__name__}: {exc}",
        extra={**extra, "traceback": traceback.format_exc()}
    )

    detail = "An unexpected error occurred. Please try again later."
    error_data = None
    if settings.debug:
        detail = f"Internal server error: {exc}"
        error_data = {"exception_type": type(exc).__name__}

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
        error_code="INTERNAL_SERVER_ERROR",
        error_data=error_data,
        request_id=extra["request_id"]
    )


ERROR_HANDLERS = {
    BaseAPIException: api_exception_handler,
    StarletteHTTPException: api_exception_handler,
    RequestValidationError: validation_exception_handler,
    SQLAlchemyError: database_exception_handler,
    Exception: unhandled_exception_handler,
}


def register_error_handlers(app):
    for exception_class, handler in ERROR_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)

    logger.info("Error handlers registered")
