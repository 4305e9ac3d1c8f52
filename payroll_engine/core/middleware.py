"""
HTTP middleware for the payroll engine.
"""

import time
import uuid
import logging
from typing import Callable
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from fastapi import status
from fastapi.responses import JSONResponse

from payroll_engine.core.config import settings

logger = logging.getLogger(__name__)


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id and log it with tenant, actor and timing."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        context = {
            "request_id": request_id,
            "tenant_id": request.headers.get("X-Tenant-ID"),
            "user_id": request.headers.get("X-User-ID"),
            "method": request.method,
            "path": request.url.path,
        }

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"{request.method} {request.url.path} raised {type(exc).__name__}",
                extra={**context, "process_time": time.perf_counter() - started}
            )
            raise

        elapsed = time.perf_counter() - started
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"

        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={**context, "status_code": response.status_code, "process_time": elapsed}
        )
        return response


class RequestSizeMiddleware(BaseHTTPMiddleware):
    """Reject request bodies above ``max_request_size`` before they are parsed."""

    def __init__(self, app, max_request_size: int):
        super().__init__(app)
        self.max_request_size = max_request_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_request_size:
            logger.warning(
                f"Rejected {content_length} byte body on {request.url.path}",
                extra={"max_size": self.max_request_size, "path": request.url.path}
            )
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={
                    "error": True,
                    "status_code": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    "detail": f"Request body too large. Maximum size: {self.max_request_size} bytes",
                    "error_code": "REQUEST_TOO_LARGE",
                    "error_data": {"max_size": self.max_request_size, "actual_size": int(content_length)},
                }
            )

        return await call_next(request)


def add_middleware(app):
    # Last added runs first
    app.add_middleware(RequestSizeMiddleware, max_request_size=settings.max_request_size)
    app.add_middleware(RequestTrackingMiddleware)
