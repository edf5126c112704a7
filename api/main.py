"""
api/main.py -- FastAPI application entry point for Keystone.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- authlib OAuth state between redirect and callback

Lifespan builds the database engine, the auth stores, the token issuer and
the AuthService, then starts the expired-session purge task. Shutdown cancels
the task and disposes the engine.

Error contract: every failure leaves as {"success": false, "message": ...}.
Every 401 also clears the accessToken and sessionId cookies so a broken
client credential cannot wedge the browser into a permanent bad state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.oauth import build_oauth
from auth.passwords import PasswordHasher
from auth.permissions import API_PREFIX
from auth.roles import RoleStore
from auth.schema import create_db_engine
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import TokenIssuer, clear_auth_cookies
from core.config import Settings, get_settings
from core.errors import KeystoneError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("keystone.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_auth(app: FastAPI, settings: Settings, engine: Engine) -> None:
    """Build every auth collaborator once and publish them on app.state.

    Shared by the real lifespan and the test lifespan so both run the same
    object graph. The token issuer receives an immutable TokenConfig; nothing
    downstream reads Settings for secrets or lifetimes.
    """
    app.state.settings = settings
    app.state.engine = engine
    app.state.account_store = AccountStore(engine)
    app.state.role_store = RoleStore(engine)
    app.state.session_store = SessionStore(engine)
    app.state.auth_service = AuthService(
        accounts=app.state.account_store,
        roles=app.state.role_store,
        sessions=app.state.session_store,
        hasher=PasswordHasher(settings.bcrypt_rounds),
        issuer=TokenIssuer(settings.token_config()),
        session_ttl_hours=settings.session_ttl_hours,
        default_role=settings.default_role,
        reset_ttl_minutes=settings.password_reset_ttl_minutes,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions every SESSION_PURGE_INTERVAL_SECONDS.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(app.state.settings.session_purge_interval_seconds)
        purged = app.state.session_store.purge_expired()
        logger.info("Purged %d expired session(s)", purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown."""
    logger.info("Keystone API starting up")
    engine = create_db_engine(_settings.database_url)
    wire_auth(app, _settings, engine)
    app.state.oauth = build_oauth(_settings)
    purged = app.state.session_store.purge_expired()
    logger.info("Auth initialized (%d stale session(s) purged)", purged)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.engine.dispose()
    logger.info("Keystone API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Keystone API",
    description="Accounts, sessions, JWT access tokens and role-based permissions.",
    version=VERSION,
    lifespan=lifespan,
)
app.state.settings = _settings

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.session_secret,
    same_site="lax",
    https_only=bool(_settings.secure_cookies),
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
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

app.include_router(auth_router, prefix=API_PREFIX, tags=["Auth"])
app.include_router(roles_router, prefix=API_PREFIX, tags=["Roles"])
app.include_router(users_router, prefix=API_PREFIX, tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------


def _error(request: Request, status_code: int, message: str, detail: str | None = None) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, detail=detail).model_dump(exclude_none=True),
    )
    if status_code == 401:
        clear_auth_cookies(response, secure=bool(request.app.state.settings.secure_cookies))
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(KeystoneError)
async def keystone_error_handler(request: Request, exc: KeystoneError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return _error(request, exc.status_code, "An unexpected error occurred.")
    return _error(request, exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After. slowapi stores the window on exc.retry_after."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(request, 429, "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or missing input is a 400 with the field errors as detail.

    Only location, message and type are echoed back. The submitted value is
    dropped so a rejected password never appears in the response.
    """
    errors = [{key: err[key] for key in ("loc", "msg", "type") if key in err} for err in exc.errors()]
    return _error(request, 400, "Request validation failed.", str(errors))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors (including raw store failures).

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(request, 500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a gated router) so it is always
# reachable without credentials.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    components = {"app": "ok", "database": "ok"}
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
