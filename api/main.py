"""
api/main.py -- FastAPI application entry point for FitClub.

Serves the membership backend: staff PIN sign-in, member check-ins,
renewals, accounts and admin analytics. Business rules that live in the
database's stored procedures are called, never re-implemented.

Install deps:  pip install -e .
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the single-page client's origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (platform gateway, PIN attempt store) and shutdown
(close both) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.analytics import router as analytics_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.branches import router as branches_router
from api.routes.v1.checkins import router as checkins_router
from api.routes.v1.members import router as members_router
from api.routes.v1.packages import router as packages_router
from api.routes.v1.renewals import router as renewals_router
from api.routes.v1.staff import router as staff_router
from auth.store import PinAttemptStore
from clubdb import ClubDatabase, ClubDatabaseError, ClubDatabaseUnavailable
from core.config import get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("fitclub.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order:
      1. Platform gateway -- every route reads app.state.club_db.
      2. PIN attempt store -- only the PIN routes use it, but it must exist
         before the first verify-pin request.
    """
    # Startup
    logger.info("FitClub API starting up")
    if not _settings.supabase_url or not _settings.supabase_service_role_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set.")
    app.state.club_db = ClubDatabase(
        _settings.supabase_url,
        _settings.supabase_service_role_key,
        anon_key=_settings.supabase_anon_key,
    )
    logger.info("Platform gateway initialized")
    if _settings.security_db_url:
        app.state.pin_attempts = PinAttemptStore(
            _settings.security_db_url,
            max_attempts=_settings.pin_max_attempts,
            window_seconds=_settings.pin_lockout_window_seconds,
        )
    else:
        app.state.pin_attempts = PinAttemptStore(
            max_attempts=_settings.pin_max_attempts,
            window_seconds=_settings.pin_lockout_window_seconds,
        )
    logger.info(
        "PIN attempt store initialized (lockout after %d failures in %ds)",
        _settings.pin_max_attempts,
        _settings.pin_lockout_window_seconds,
    )

    yield

    # Shutdown
    app.state.club_db.close()
    app.state.pin_attempts.close()
    logger.info("FitClub API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="FitClub API",
    description="Membership, check-in, renewal and staff PIN backend for fitness clubs.",
    version=API_VERSION,
    lifespan=lifespan,
    # Interactive docs only in debug; the schema lists every admin route.
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Session-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time around call_next gives the latency on every
# response. Bodies are never logged: they carry PINs and passwords.
# ---------------------------------------------------------------------------


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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(staff_router, prefix="/api/v1", tags=["Staff"])
app.include_router(renewals_router, prefix="/api/v1", tags=["Renewals"])
app.include_router(checkins_router, prefix="/api/v1", tags=["Check-ins"])
app.include_router(analytics_router, prefix="/api/v1", tags=["Analytics"])
app.include_router(branches_router, prefix="/api/v1", tags=["Branches"])
app.include_router(packages_router, prefix="/api/v1", tags=["Packages"])
app.include_router(members_router, prefix="/api/v1", tags=["Members"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail ({"code", "message",
    optional "detail"}). When detail is already a structured dict, use it
    directly as the error field rather than stringifying it.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(ClubDatabaseUnavailable)
async def platform_unavailable_handler(request: Request, exc: ClubDatabaseUnavailable) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(
                code="upstream_unavailable",
                message="The membership database is unavailable. Try again shortly.",
            )
        ).model_dump(),
    )


@app.exception_handler(ClubDatabaseError)
async def platform_error_handler(request: Request, exc: ClubDatabaseError) -> JSONResponse:
    """Return 400 with the platform's own message.

    Stored procedures raise with messages written for the end user ("Member
    not found", "Invalid PIN"), so they are passed through unchanged.
    """
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="database_error",
                message=exc.message,
                detail=exc.code,
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
