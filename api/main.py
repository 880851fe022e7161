"""
api/main.py -- FastAPI application entry point for Gatehouse.

Exposes the sign-in subsystem (accounts, lockout, sessions, tokens, password
reset, login analytics) over HTTP.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (settings, stores, AuthService) and shutdown (close
DB connections) symmetrically. A missing SECRET_KEY in production aborts
startup with ConfigError -- the server never accepts a request it cannot
issue tokens for.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from analytics.store import AnalyticsLog
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.security import router as security_router
from api.routes.v1.sessions import router as sessions_router
from auth.dependencies import Principal, get_principal
from auth.errors import AuthError
from auth.service import AuthService
from auth.store import AccountStore
from core.config import get_settings
from notify.email import EmailNotifier

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")

settings = get_settings()


def build_notifier(cfg) -> EmailNotifier:
    return EmailNotifier(
        smtp_host=cfg.smtp_host or None,
        smtp_port=cfg.smtp_port,
        smtp_user=cfg.smtp_user or None,
        smtp_password=cfg.smtp_password or None,
        smtp_use_tls=cfg.smtp_use_tls,
        from_email=cfg.smtp_from or None,
        frontend_url=cfg.frontend_url,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Pattern: asynccontextmanager lifespan. Everything before yield runs on
    startup; everything after yield runs on shutdown.

    Startup order matters:
      1. Stores first -- AuthService holds references to both.
      2. AuthService last -- its TokenIssuer validates SECRET_KEY, so a
         misconfigured process fails here, before serving anything.
    """
    cfg = get_settings()
    logger.info("Gatehouse API starting up (debug=%s)", cfg.debug)
    app.state.account_store = AccountStore(cfg.auth_db_url) if cfg.auth_db_url else AccountStore()
    app.state.analytics_log = AnalyticsLog(cfg.analytics_db_url) if cfg.analytics_db_url else AnalyticsLog()
    logger.info("Stores initialized")
    app.state.auth_service = AuthService.from_settings(
        cfg,
        app.state.account_store,
        app.state.analytics_log,
        notifier=build_notifier(cfg),
    )
    logger.info(
        "Auth initialized (max_attempts=%d lockout=%dm max_sessions=%d strict_refresh=%s)",
        cfg.max_login_attempts,
        cfg.lockout_minutes,
        cfg.max_sessions,
        cfg.strict_refresh,
    )

    yield

    # Shutdown
    app.state.analytics_log.close()
    app.state.account_store.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Sign-in, lockout, session tracking, password reset and login risk analytics.",
    version=__version__,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
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
    allowed_hosts=settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. Wall-clock time before and
# after call_next gives the latency on every response. Query strings are not
# logged: reset tokens never travel there, but nothing else needs them either.
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
app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])
app.include_router(security_router, prefix="/api/v1", tags=["Security"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
#
# /docs and /redoc are disabled on the FastAPI() constructor and replaced here
# with routes that require a valid bearer token, so unauthenticated callers
# cannot browse the full API schema.
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(principal: Principal = Depends(get_principal)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Gatehouse API")


@app.get("/redoc", include_in_schema=False)
async def redoc(principal: Principal = Depends(get_principal)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Gatehouse API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render every auth.errors.AuthError subclass.

    The status code, code and context (remaining_minutes, actual_role,
    remaining_attempts, fields) all come from the exception. ConfigError's
    message is generic; the real cause is only in the server log.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(**exc.to_dict())).model_dump(exclude_none=True),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly, without awaiting.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages when the body or query params fail validation.

    Input values are not echoed back: a rejected password must not appear in
    the response.
    """
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields[".".join(loc) or "body"] = err.get("msg", "Invalid value.")
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                fields=fields,
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404, 405, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the server log only, never
    to the response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    """Return API liveness, version, and whether the account database answers."""
    try:
        db_ok = request.app.state.account_store.ping()
    except Exception:
        logger.exception("Health check: account database unavailable")
        db_ok = False
    body = HealthResponse(
        status="ok" if db_ok else "degraded",
        version=__version__,
        database="ok" if db_ok else "unavailable",
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
