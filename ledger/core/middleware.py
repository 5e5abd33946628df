"""
FastAPI Middleware

Provides request/response middleware for:
- Correlation ID injection
- Request logging
- Global error handling
"""
import time
from typing import Callable
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ledger.core.logging import (
    get_logger,
    set_correlation_id,
    get_correlation_id
)
from ledger.core.exceptions import AppException, ErrorCode

logger = get_logger(__name__)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        # Get correlation ID from header or generate new one
        correlation_id = request.headers.get("X-Correlation-ID")
        correlation_id = set_correlation_id(correlation_id)

        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and responses"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        start_time = time.time()
        path = request.url.path

        logger.info(
            f"Request started: {request.method} {path}",
            extra_data={
                "method": request.method,
                "path": path,
                "query_params": dict(request.query_params),
                "client_host": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            log_level = "info" if response.status_code < 400 else "warning"
            getattr(logger, log_level)(
                f"Request completed: {request.method} {path}",
                extra_data={
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_seconds": round(duration, 4),
                }
            )

            return response
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {path}",
                extra_data={
                    "method": request.method,
                    "path": path,
                    "duration_seconds": round(duration, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise


async def app_exception_handler(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Handle application exceptions"""
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path,
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": request.url.path,
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {}
            }
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


def setup_middleware(app: FastAPI) -> None:
    """Setup all middleware for the application"""
    # Last added is outermost: CorrelationId -> RequestLogging -> app
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
