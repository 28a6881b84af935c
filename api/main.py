"""
api/main.py -- FastAPI application entry point for Market authentication.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests    -- method, path, status and latency for every request
  2. session_cookie  -- resolves the session cookie into request.state.session
                        via SessionStore.read() and forwards any Set-Cookie
                        it produced (new or rotated session)

Lifespan handles startup (store, services, sweep task) and shutdown (cancel
sweep task, drain background expiries, close DB connections) symmetrically.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth import errors
from auth.accounts import Accounts
from auth.credentials import CredentialManager
from auth.sessions import SessionStore
from auth.store import AuthStore
from core.config import get_settings

API_VERSION = "0.1.0"

# Paths that never get a session: load balancer health checks would otherwise mint
# an anonymous session row per hit.
_SESSIONLESS_PATHS = ("/api/v1/health",)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("market.api")

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Mark expired sessions every `interval` seconds.

    close_expired() is a blocking DB round trip, so it runs in the threadpool.
    A failed sweep is logged and retried on the next tick. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(app.state.sessions.close_expired)
        except errors.StoreError:
            logger.exception("periodic session sweep failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The store must exist before the services that wrap it, and the
    sweep task references app.state.sessions, so it starts last.
    """
    settings = get_settings()
    logger.info("Market auth API starting up")
    app.state.auth_store = AuthStore(settings.database_url)
    app.state.sessions = SessionStore(app.state.auth_store, settings)
    app.state.credentials = CredentialManager(app.state.auth_store, rounds=settings.bcrypt_rounds)
    app.state.accounts = Accounts(app.state.auth_store, app.state.credentials)
    logger.info("Auth store initialized")
    app.state.sweep_task = None
    if settings.session_sweep_interval_seconds > 0:
        app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.session_sweep_interval_seconds))

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await app.state.sweep_task
    app.state.sessions.shutdown()
    app.state.auth_store.close()
    logger.info("Market auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Market Auth API",
    description="Session lifecycle, password policy and credential storage for the Market storefront.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Session middleware
#
# SessionStore.read() writes Set-Cookie on the response object it is given.
# The real response does not exist until the route has run, so read() gets a
# scratch Response and its cookies are copied over afterwards -- unless the
# route set the session cookie itself (login, logout, password change), in
# which case the route's cookie wins.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def session_cookie(request: Request, call_next):
    if request.url.path in _SESSIONLESS_PATHS:
        return await call_next(request)

    sessions: SessionStore = request.app.state.sessions
    scratch = Response()
    try:
        request.state.session = await run_in_threadpool(
            sessions.read, request.cookies.get(sessions.cookie_name), scratch
        )
    except errors.StoreError:
        logger.exception("cannot start session for %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
            ).model_dump(),
        )

    response = await call_next(request)
    prefix = f"{sessions.cookie_name}="
    if not any(header.startswith(prefix) for header in response.headers.getlist("set-cookie")):
        for header in scratch.headers.getlist("set-cookie"):
            response.headers.append("set-cookie", header)
    return response


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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(errors.ValidationError)
async def policy_error_handler(request: Request, exc: errors.ValidationError) -> JSONResponse:
    """Return 422 with the policy's own message; it is written for end users."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(code="invalid_input", message=str(exc), detail=exc.field)
        ).model_dump(),
    )


@app.exception_handler(errors.AuthenticationError)
async def authentication_error_handler(request: Request, exc: errors.AuthenticationError) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=ErrorResponse(error=ErrorDetail(code="authentication_failed", message=str(exc))).model_dump(),
    )


@app.exception_handler(errors.InternalError)
async def internal_error_handler(request: Request, exc: errors.InternalError) -> JSONResponse:
    """Log the store failure with its cause; tell the client nothing specific."""
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


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

    Route handlers raise HTTPException with a dict detail; when detail is
    already structured, use it directly as the error field.
    """
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
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors, including FatalError.

    The raw exception is written to the log only, never to the response body.
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
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database = "ok"
    try:
        await run_in_threadpool(request.app.state.auth_store.ping)
    except SQLAlchemyError:
        logger.warning("health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
