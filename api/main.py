"""
api/main.py -- FastAPI application entry point for Marquee.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for trusted browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan handles startup (database, stores, gate, mailer, background runner,
token purge task) and shutdown (cancel purge task, drain background work,
dispose the engine) symmetrically.

GET /v1/debug/vars publishes runtime counters: version, live threads,
connection pool stats and the current Unix timestamp.

Every domain error (core/errors.py) is rendered through one exception handler
into the ErrorResponse envelope, keyed by the error's stable code.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse, MetricsResponse
from api.routes.v1.movies import router as movies_router
from api.routes.v1.tokens import router as tokens_router
from api.routes.v1.users import router as users_router
from auth.gate import AccessGate
from auth.permissions import PermissionStore
from auth.store import TokenStore, UserStore
from catalog.store import MovieStore
from core.background import BackgroundRunner
from core.config import get_settings
from core.database import Database
from core.errors import DuplicateEmailError, MarqueeError, UnauthenticatedError, ValidationFailed
from core.mailer import Mailer

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("marquee.api")

# ---------------------------------------------------------------------------
# Background token purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired token rows every ``interval`` seconds.

    The store call runs in a worker thread so the event loop is never blocked.
    Any failed purge is logged and retried on the next tick. CancelledError
    from task.cancel() during shutdown unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(app.state.tokens.delete_expired)
        except Exception:
            logger.exception("Expired token purge failed")
            continue
        if removed:
            logger.info("Purged %d expired tokens", removed)


async def stop_task(task: asyncio.Task) -> None:
    """Cancel task and wait for it to finish unwinding."""
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def wire_state(app: FastAPI, db: Database, mailer, runner: BackgroundRunner) -> None:
    """Build every store on db and attach them, the gate, mailer and runner to app.state."""
    app.state.db = db
    app.state.users = UserStore(db)
    app.state.tokens = TokenStore(db)
    app.state.permissions = PermissionStore(db)
    app.state.movies = MovieStore(db)
    app.state.gate = AccessGate(app.state.users, app.state.permissions)
    app.state.mailer = mailer
    app.state.runner = runner


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Shutdown order matters: the purge task is cancelled first, then the
    background runner is drained (queued emails still go out), and only then
    is the engine disposed.
    """
    settings = get_settings()
    logger.info("Marquee API starting up (env=%s)", settings.env)
    db = Database(
        settings.database_url,
        timeout=settings.db_timeout_seconds,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
    )
    mailer = Mailer(
        settings.smtp_host,
        settings.smtp_port,
        settings.smtp_username,
        settings.smtp_password,
        settings.smtp_sender,
    )
    wire_state(app, db, mailer, BackgroundRunner())
    logger.info("Database connection pool established")
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    await stop_task(app.state.purge_task)
    app.state.runner.shutdown()
    app.state.db.close()
    logger.info("Marquee API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Marquee API",
    description="Movie catalog with token authentication, permissions and optimistic concurrency.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_trusted_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Expected-Version"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

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

app.include_router(users_router, prefix="/v1", tags=["Users"])
app.include_router(tokens_router, prefix="/v1", tags=["Tokens"])
app.include_router(movies_router, prefix="/v1", tags=["Movies"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status: int, detail: ErrorDetail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status, content=ErrorResponse(error=detail).model_dump(), headers=headers)


@app.exception_handler(MarqueeError)
async def domain_error_handler(request: Request, exc: MarqueeError) -> JSONResponse:
    """Render a domain error by its stable code.

    401s carry WWW-Authenticate: Bearer. Internal errors are logged with the
    chained cause; the client only ever sees the generic message.
    """
    fields = None
    if isinstance(exc, ValidationFailed):
        fields = exc.errors
    elif isinstance(exc, DuplicateEmailError):
        fields = {"email": "a user with this email address already exists"}

    if exc.status >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path, exc_info=exc)

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthenticatedError) else None
    return _error_response(
        exc.status,
        ErrorDetail(code=exc.code, message=str(exc), detail=exc.detail, fields=fields),
        headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(
        429,
        ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc)),
        {"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body or query params fail to parse."""
    fields = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        fields.setdefault(".".join(loc) or "body", err.get("msg", "invalid value"))
    return _error_response(
        422,
        ErrorDetail(code="validation_failed", message="Request validation failed.", fields=fields),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes and disallowed methods also answer with the error envelope."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(
        exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)), exc.headers
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(
        500,
        ErrorDetail(code="internal", message="The server encountered a problem and could not process your request."),
    )


# ---------------------------------------------------------------------------
# Health and debug endpoints -- no rate limit, no auth
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/v1/healthcheck", tags=["Health"])
def healthcheck(request: Request) -> HealthResponse:
    """Return liveness, environment, version and database reachability."""
    db_ok = request.app.state.db.ping()
    return HealthResponse(
        environment=get_settings().env,
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )


@limiter.exempt
@app.get("/v1/debug/vars", tags=["Health"])
def debug_vars(request: Request) -> MetricsResponse:
    """Return version, live thread count, connection pool counters and the Unix time."""
    return MetricsResponse(
        version=__version__,
        threads=threading.active_count(),
        database=request.app.state.db.pool_stats(),
        timestamp=int(time.time()),
    )
