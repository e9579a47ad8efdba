"""
FastAPI server for the CTG Trading Platform
Serves the REST API for the web frontend
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException

from config.config import (
    validate_config,
    ADDITIONAL_FRONTEND_URLS,
    API_HOST,
    API_PORT,
    API_RATE_LIMIT,
    ENVIRONMENT,
    FRONTEND_URL,
    SCHEDULER_ENABLED,
)
from config.logging import setup_logging
from config.sentry import init_sentry
from src.api.router import router as api_router
from src.core.exceptions import PlatformError, ValidationFailed
from src.database.engine import dispose_engine, init_db
from src.tasks.scheduler import get_scheduler

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("Starting CTG Trading Platform API...")
    validate_config()
    init_sentry()

    if ENVIRONMENT != "production":
        await init_db()
        logger.info("Database tables ensured (non-production)")

    scheduler = get_scheduler()
    if SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    # Shutdown
    logger.info("Shutting down CTG Trading Platform API...")

    if scheduler.running:
        scheduler.stop()

    await dispose_engine()
    logger.info("Database connections closed")


# Global per-IP limit; behind a proxy every client may share one IP
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_RATE_LIMIT],
    storage_uri="memory://",
)

app = FastAPI(
    title="CTG Trading Platform API",
    description="Trading challenges, signal plans, mentorship and payments",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# CORS: exact origins only
allowed_origins = [FRONTEND_URL, *ADDITIONAL_FRONTEND_URLS]

if ENVIRONMENT == "development":
    for origin in ("http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:5173"):
        if origin not in allowed_origins:
            allowed_origins.append(origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in allowed_origins if origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Adds security headers to every response

    Headers:
    - X-Content-Type-Options: no MIME sniffing
    - X-Frame-Options: no framing from other origins
    - Referrer-Policy: origin only for cross-origin requests
    - Permissions-Policy: browser features the API never needs
    - Strict-Transport-Security: production over HTTPS only
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

    if ENVIRONMENT == "production" and request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


# All API endpoints live under /api
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "CTG Trading Platform API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


def _error_body(message: str, error=None, **extra) -> dict:
    body = {"success": False, "message": message, "error": error if error is not None else message}
    body.update(extra)
    return body


@app.exception_handler(PlatformError)
async def platform_error_handler(request: Request, exc: PlatformError):
    """
    Domain errors carry their own status code
    """
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")

    extra = {"fields": exc.fields} if isinstance(exc, ValidationFailed) and exc.fields else {}
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, **extra))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """
    Malformed request bodies are 400s in this API, not FastAPI's default 422
    """
    fields = [".".join(str(part) for part in error["loc"] if part != "body") for error in exc.errors()]
    logger.warning(f"Invalid request on {request.method} {request.url.path}: {fields}")
    return JSONResponse(
        status_code=400,
        content=_error_body(
            "Validation failed",
            error="; ".join(f"{field}: {error['msg']}" for field, error in zip(fields, exc.errors())),
            fields=fields,
        ),
    )


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTPException properly - return correct status code in the envelope
    """
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

    return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)))


# Error handler for unexpected exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=_error_body("Server Error", error="An unexpected error occurred"),
    )


if __name__ == "__main__":
    import uvicorn

    # Validate configuration
    try:
        validate_config()
    except ValueError as e:
        logger.error(str(e))
        raise SystemExit(1)

    logger.info("Configuration validated successfully")

    uvicorn.run(
        "api_server:app",
        host=API_HOST,
        port=API_PORT,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
        log_level="info",
    )
