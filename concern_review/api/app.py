"""Main FastAPI application with middleware and error handlers"""

import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from concern_review import __version__
from concern_review.api.endpoints import get_services, router
from concern_review.api.middleware import RequestLoggingMiddleware, TimeoutMiddleware, cors_config
from concern_review.api.models import ErrorResponse
from concern_review.config import settings
from concern_review.exceptions import (
    AccessDenied,
    ConcernReviewError,
    InvalidTransition,
    MissingFacultyAssignment,
    NotFound,
    ReferenceCollision,
    RoleNotFound,
    StoreTimeout,
    Unauthenticated,
    ValidationError,
)
from concern_review.logging_config import setup_logging
from concern_review.metrics import ERROR_COUNT

setup_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    RoleNotFound: status.HTTP_403_FORBIDDEN,
    AccessDenied: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
    MissingFacultyAssignment: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReferenceCollision: status.HTTP_503_SERVICE_UNAVAILABLE,
    StoreTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
}

app = FastAPI(
    title="Student Concern Review API",
    description="Submission, tracking and tiered review of student concerns",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(CORSMiddleware, **cors_config())

# Last added is outermost
app.add_middleware(TimeoutMiddleware, timeout_seconds=float(settings.api.timeout))
app.add_middleware(RequestLoggingMiddleware)


def _error_response(request: Request, status_code: int, error_response: ErrorResponse) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    headers = {"X-Request-ID": request_id}
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json"),
        headers=headers
    )


def status_for(exc: ConcernReviewError) -> int:
    """HTTP status for a domain error (most specific class wins)."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(ConcernReviewError)
async def concern_review_exception_handler(
    request: Request,
    exc: ConcernReviewError
) -> JSONResponse:
    """
    Translate domain errors into error responses.

    Args:
        request: Request that caused the error
        exc: Domain error

    Returns:
        JSON response carrying the error type, message and details
    """
    error_type = type(exc).__name__
    status_code = status_for(exc)
    ERROR_COUNT.labels(error_type=error_type).inc()

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request rejected",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "error": error_type,
            "status_code": status_code,
            "message": exc.message
        }
    )

    return _error_response(
        request,
        status_code,
        ErrorResponse(error=error_type, message=exc.message, details=exc.details)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle request body and query validation errors."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    ERROR_COUNT.labels(error_type="ValidationError").inc()
    logger.warning(
        "Validation error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "errors": errors
        }
    )

    missing = [e["field"].split(".")[-1] for e in errors if e["type"] == "missing"]
    details = {"validation_errors": errors}
    if missing:
        details["missing_fields"] = missing

    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        ErrorResponse(error="ValidationError", message="Request validation failed", details=details)
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle all unhandled exceptions."""
    ERROR_COUNT.labels(error_type="InternalServerError").inc()
    logger.error(
        "Unhandled exception",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "error": str(exc)
        },
        exc_info=True
    )

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorResponse(error="InternalServerError", message="An unexpected error occurred", details={})
    )


app.include_router(router)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Reports the storage backend and, for PostgreSQL, whether it answers.
    """
    backend = settings.database.backend
    database_ok = True
    if backend == "postgres":
        from concern_review.database import get_db_connection
        try:
            database_ok = get_db_connection().health_check()
        except ConcernReviewError as e:
            logger.warning(f"Health check could not reach the database: {e.message}")
            database_ok = False
        except Exception as e:
            logger.warning(f"Health check could not reach the database: {e}")
            database_ok = False

    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "concern-review",
        "version": __version__,
        "backend": backend,
        "database": database_ok
    }


@app.get("/metrics", tags=["Monitoring"])
def metrics():
    """Prometheus metrics in text format."""
    return PlainTextResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/", tags=["Root"])
def root():
    return {
        "service": "Student Concern Review API",
        "version": __version__,
        "status": "operational",
        "documentation": "/docs"
    }


@app.on_event("startup")
def startup_event():
    """Wire the workflow components before serving requests."""
    logger.info(f"Starting concern review API ({settings.environment}, {settings.database.backend} backend)")
    get_services()
