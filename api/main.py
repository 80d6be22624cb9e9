"""
api/main.py -- FastAPI application entry point for proID.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the user store, the vault store and the upload directory on
startup and disposes the database engines on shutdown.

Every error leaves the API as the same envelope:
    {"message": ..., "code": ..., "error"?: ..., "details"?: ...}
error and details are only filled in when DEBUG=true.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse, validation_details
from api.routes.admin import router as admin_router
from api.routes.attributes import router as attributes_router
from api.routes.auth import router as auth_router
from api.routes.data_consumers import router as data_consumers_router
from api.routes.users import router as users_router
from auth.store import UserStore
from core.config import get_settings
from core.errors import AppError
from vault.files import UploadStorage
from vault.store import VaultStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("proid.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Route handlers reach these objects only through the Depends()
    providers in api/dependencies.py and auth/dependencies.py.
    """
    logger.info("proID API starting up")
    app.state.user_store = UserStore()
    app.state.vault = VaultStore()
    app.state.uploads = UploadStorage(settings.upload_dir, settings.max_upload_bytes)
    logger.info(
        "Stores initialized (has_users=%s, upload_dir=%s)",
        app.state.user_store.has_users(),
        settings.upload_dir,
    )

    yield

    app.state.vault.close()
    app.state.user_store.close()
    logger.info("proID API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="proID API",
    description="Personal identity attributes and the parties they are shared with.",
    version="1.0.0",
    lifespan=lifespan,
    # Interactive docs are a development aid only.
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(attributes_router, prefix="/api", tags=["Attributes"])
app.include_router(data_consumers_router, prefix="/api", tags=["Data Consumers"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])
# /uploads static files are mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    message: str,
    code: str,
    error: str | None = None,
    details: Any = None,
) -> JSONResponse:
    """Build the error envelope. error/details are dropped outside debug mode."""
    body = ErrorResponse(
        message=message,
        code=code,
        error=error if settings.debug else None,
        details=details if settings.debug else None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render domain errors raised by stores, dependencies and handlers."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error_response(
        exc.status_code,
        exc.message,
        exc.code,
        error=type(exc).__name__,
        details=exc.details,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "Too many requests.", "rate_limited", error=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when a request body, path or query parameter fails validation."""
    return _error_response(
        400,
        "Request validation failed.",
        "validation_error",
        details=validation_details(exc.errors()),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and any HTTPException raised by a dependency."""
    response = _error_response(exc.status_code, str(exc.detail), f"http_{exc.status_code}")
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only; the client sees a generic message
    (plus the exception text in debug mode).
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "An unexpected error occurred.", "internal_error", error=str(exc))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router state.
# Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(timestamp=datetime.now(timezone.utc).isoformat())
