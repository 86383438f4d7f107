"""
Shared API Middleware
======================

Common middleware and exception handlers for all FastAPI applications.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Type

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core import (
    ApplicationException,
    ConfigurationException,
    DomainException,
    EscalationBusyException,
    ResourceNotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Most specific class wins; see _status_for
EXCEPTION_STATUS_CODES: Dict[Type[ApplicationException], int] = {
    ResourceNotFoundException: status.HTTP_404_NOT_FOUND,
    DomainException: status.HTTP_409_CONFLICT,
    ValidationException: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EscalationBusyException: status.HTTP_503_SERVICE_UNAVAILABLE,
    StoreUnavailableException: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConfigurationException: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

RETRY_AFTER_SECONDS = "1"


def _status_for(exc: ApplicationException) -> int:
    for klass in type(exc).__mro__:
        if klass in EXCEPTION_STATUS_CODES:
            return EXCEPTION_STATUS_CODES[klass]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    Correlation IDs are essential for tracing requests through
    distributed systems and linking logs.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses with their latency.

    Provides audit trail and debugging information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int(response_time * 1000)
            }
        )
        return response


async def application_exception_handler(
    request: Request,
    exc: ApplicationException
) -> JSONResponse:
    """
    Map application exceptions to HTTP responses.

    The exception's details (e.g. the timer's current status) are merged
    into the body so clients can reconcile without another read.
    """
    correlation_id = getattr(request.state, "correlation_id", None)
    status_code = _status_for(exc)

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Application exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error_message": exc.message,
            "status_code": status_code
        }
    )

    headers = {}
    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        headers["Retry-After"] = RETRY_AFTER_SECONDS

    return JSONResponse(
        status_code=status_code,
        content={
            **exc.details,
            "detail": exc.message,
            "error": type(exc).__name__,
            "correlation_id": correlation_id,
        },
        headers=headers
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    # Don't expose internal details outside development
    settings = getattr(request.app.state, "settings", None)
    is_dev = getattr(settings, "environment", None) == "development"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
