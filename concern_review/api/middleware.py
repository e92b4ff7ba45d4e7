"""Middleware for the concern review API"""

import asyncio
import logging
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from concern_review.api.models import ErrorResponse
from concern_review.config import settings
from concern_review.logging_config import bind_request_context, clear_request_context
from concern_review.metrics import ERROR_COUNT, REQUEST_COUNT, REQUEST_DURATION

logger = logging.getLogger(__name__)


def _endpoint_label(request: Request) -> str:
    # Route template keeps the label set bounded (no concern references)
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request and records request metrics.

    Adds X-Request-ID and X-Response-Time headers to responses.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        bind_request_context(request_id, method=request.method, path=request.url.path)

        start_time = time.time()

        logger.info(
            "Request started",
            extra={
                "client_ip": request.client.host if request.client else "unknown",
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_time = time.time() - start_time
            logger.error(
                "Request failed",
                extra={
                    "error": str(e),
                    "response_time_ms": round(elapsed_time * 1000, 2)
                },
                exc_info=True
            )
            clear_request_context()
            raise

        elapsed_time = time.time() - start_time
        endpoint = _endpoint_label(request)
        REQUEST_COUNT.labels(
            method=request.method, endpoint=endpoint, status=response.status_code
        ).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(elapsed_time)

        logger.info(
            "Request completed",
            extra={
                "status_code": response.status_code,
                "response_time_ms": round(elapsed_time * 1000, 2)
            }
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_time:.3f}s"
        clear_request_context()
        return response


class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Bounds request processing time.

    A request exceeding the limit is answered with 504 and the same error
    body as a store timeout.
    """

    def __init__(
        self,
        app: ASGIApp,
        timeout_seconds: float = 10.0
    ):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        start_time = time.time()

        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            elapsed_time = time.time() - start_time
            logger.error(
                f"Request timeout after {elapsed_time:.3f}s "
                f"(limit: {self.timeout_seconds}s)"
            )
            ERROR_COUNT.labels(error_type="StoreTimeout").inc()
            request_id = getattr(request.state, "request_id", "unknown")
            error_response = ErrorResponse(
                error="StoreTimeout",
                message=f"Request exceeded timeout of {self.timeout_seconds}s",
                details={"timeout_seconds": self.timeout_seconds}
            )
            return JSONResponse(
                status_code=504,
                content=error_response.model_dump(mode="json"),
                headers={"X-Request-ID": request_id}
            )


def cors_config() -> dict:
    """
    CORS settings for FastAPI's CORSMiddleware.

    Returns:
        Keyword arguments for CORSMiddleware
    """
    origins = [o.strip() for o in settings.api.cors_origins.split(",") if o.strip()]
    return {
        "allow_origins": origins or ["*"],
        "allow_credentials": "*" not in origins,
        "allow_methods": ["GET", "POST"],
        "allow_headers": ["*"],
    }
