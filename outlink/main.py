"""
Outlink Identity API.

FastAPI application for Outlink profiles: username identity, reconciliation
of duplicate profile documents, and friend/block relationships.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from outlink.config import settings, validate_security_settings
from outlink.dependencies import get_store
from outlink.exceptions import OutlinkError
from outlink.logging_config import configure_logging
from outlink.middleware.rate_limit import limiter
from outlink.routers.profiles import router as profiles_router
from outlink.routers.relationships import router as relationships_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    """Application lifespan handler for startup/shutdown."""
    configure_logging()
    validate_security_settings()
    if settings.store_backend == "postgres":
        from outlink.database import init_db

        await init_db()
    logger.info("app.started", store_backend=settings.store_backend)
    yield
    await get_store().close()
    logger.info("app.stopped")


app = FastAPI(
    title="Outlink Identity API",
    description="Usernames, profiles and relationships for Outlink",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)

app.include_router(profiles_router)
app.include_router(relationships_router)


# --- Middleware ---


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add a unique request ID to each request and bind it to the log context."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# --- Exception Handlers ---


def _error_response(
    request: Request, status_code: int, code: str, message: str, **extra: Any
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": getattr(request.state, "request_id", None),
                **extra,
            }
        },
    )


@app.exception_handler(OutlinkError)
async def outlink_exception_handler(request: Request, exc: OutlinkError) -> JSONResponse:
    """Map identity-layer errors to their HTTP status and error code."""
    if exc.status_code >= 500:
        logger.warning("request.store_error", code=exc.code, message=exc.message)
    return _error_response(request, exc.status_code, exc.code, exc.message)


def _sanitize_error_detail(error: dict[str, Any]) -> dict[str, Any]:
    """Make a Pydantic error entry JSON-serializable."""
    sanitized = {}
    for key, value in error.items():
        if key == "ctx":
            sanitized[key] = {k: str(v) for k, v in value.items()} if isinstance(value, dict) else str(value)
        elif key == "loc":
            sanitized[key] = [str(loc) for loc in value]
        else:
            sanitized[key] = value
    return sanitized


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors with the standard error envelope."""
    errors = [_sanitize_error_detail(e) for e in exc.errors()]
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{field}: {msg}" if field else msg
    else:
        message = "Validation error"

    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        message,
        details=errors,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with the standard error envelope."""
    logger.exception("request.unhandled_error", path=request.url.path)
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
    )


# --- Health Check ---


@app.get("/api/v1/health", tags=["System"])
async def health_check() -> dict[str, str]:
    """
    Health check endpoint.

    Returns 200 OK if the API is running.
    """
    return {"status": "healthy"}
