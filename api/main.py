"""
api/main.py -- FastAPI application entry point for the urbanfleet backend.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- one access log line per request, with the acting user
  5. authentication_gate   -- resolves the bearer token into request.state.auth

Lifespan builds the engine, the stores and the services from Settings and
seeds the bootstrap administrator; shutdown disposes the engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.clients import router as clients_router
from api.routes.v1.drivers import router as drivers_router
from api.routes.v1.orders import router as orders_router
from api.routes.v1.users import router as users_router
from api.routes.v1.vehicles import router as vehicles_router
from audit.recorder import AuditRecorder
from auth.authorization import current_username_or_default
from auth.gate import AuthenticationGate, attach_context
from auth.service import IdentityService
from auth.store import IdentityStore
from core.config import get_settings
from core.db import make_engine
from core.errors import AppError, Internal
from fleet.services import FleetService
from fleet.store import FleetStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("urbanfleet.api")

VERSION = "0.1.0"

_settings = get_settings()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_state(app: FastAPI, engine: Engine) -> None:
    """Build every store and service on engine and attach them to app.state.

    All stores share one engine so a service can write an entity and its
    audit entry on the same connection.
    """
    app.state.engine = engine
    app.state.identity_store = IdentityStore(engine)
    app.state.fleet_store = FleetStore(engine)
    app.state.recorder = AuditRecorder(engine)
    app.state.fleet_service = FleetService(app.state.fleet_store, app.state.recorder)
    app.state.identity_service = IdentityService(
        app.state.identity_store, app.state.fleet_store, app.state.recorder
    )
    app.state.gate = AuthenticationGate(app.state.identity_store)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create resources on startup and release them on shutdown."""
    logger.info("urbanfleet API starting up")
    engine = make_engine(_settings.database_url)
    wire_state(app, engine)
    seeded = app.state.identity_service.ensure_admin(
        _settings.bootstrap_admin_username, _settings.bootstrap_admin_password
    )
    logger.info("Stores initialized (admin seeded=%s)", seeded is not None)

    yield

    engine.dispose()
    logger.info("urbanfleet API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="urbanfleet API",
    description="Transport logistics: clients, drivers, vehicles and delivery orders with a full audit trail.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps @app.middleware("http") functions and add_middleware()
# classes so that the LAST registered is the OUTERMOST. The two function
# middlewares below are registered first and therefore run innermost.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def authentication_gate(request: Request, call_next):
    """Attach the AuthContext for this request before any route runs.

    The gate reads the identity store, so it runs in the thread pool. It never
    rejects a request itself; routes that need an identity fail closed.
    """
    ctx = await run_in_threadpool(request.app.state.gate.resolve, request.headers.get("Authorization"))
    attach_context(request, ctx)
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        current_username_or_default(getattr(request.state, "auth", None)),
    )
    return response


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(clients_router, prefix="/api/v1", tags=["Clients"])
app.include_router(drivers_router, prefix="/api/v1", tags=["Drivers"])
app.include_router(vehicles_router, prefix="/api/v1", tags=["Vehicles"])
app.include_router(orders_router, prefix="/api/v1", tags=["Orders"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(request: Request, status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            status=status_code,
            error=HTTPStatus(status_code).phrase,
            message=message,
            path=request.url.path,
        ).model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map the application taxonomy onto its HTTP status.

    Internal failures (including AuditWriteError) are logged with their
    message and answered with a generic one.
    """
    if isinstance(exc, Internal):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        return _error(request, exc.status_code, "An unexpected error occurred.")
    return _error(request, exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a field -> message map when the body, path or query fail validation."""
    errors: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(loc) or "request"] = err.get("msg", "invalid")
    return _error(request, 400, f"Validation failed. Errors: {errors}")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing failures (unknown path, wrong method) in the same envelope."""
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(request, 429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(request, 500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Public and not rate limited. Reports "degraded" when the database does not
# answer a trivial query.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
