"""
main.py - OnePass back-office FastAPI application entry point.

Start with: uvicorn onepass.main:app --reload --port 5000
(run from the repository root)
"""
import asyncio
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from onepass.billing.codes import SequenceLocks
from onepass.config import settings
from onepass.errors import OnePassError
from onepass.mailer import Mailer
from onepass.realtime.connections import ConnectionManager
from onepass.realtime.registry import (
    InMemoryBindingStore,
    RedisBindingStore,
    SessionRegistry,
    run_relay_listener,
)
from onepass.storage import PUBLIC_MOUNT, LocalStorage

# ---------------------------------------------------------------------------
# Logging - configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _run_migrations() -> None:
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    logger.info("Alembic: %s", result.stdout.strip() or "No pending migrations")


# ---------------------------------------------------------------------------
# Lifespan - startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations (unless RUN_MIGRATIONS=false)
      2. Build the session registry (in-memory, or Redis-backed with relay listener)
      3. Mailer, upload storage and per-day sequence locks
    Shutdown:
      1. Stop the relay listener and close the Redis pool
    """
    # --- 1. Database ---
    if settings.run_migrations:
        await asyncio.to_thread(_run_migrations)

    # --- 2. Realtime session registry ---
    connections = ConnectionManager()
    app.state.redis = None
    relay_task = None
    if settings.session_backend == "redis":
        from onepass.cache import create_redis_pool

        app.state.redis = await create_redis_pool()
        app.state.registry = SessionRegistry(
            connections,
            bindings=RedisBindingStore(app.state.redis),
            relay=app.state.redis,
        )
        relay_task = asyncio.create_task(run_relay_listener(app.state.redis, connections))
        logger.info("Session registry using Redis bindings")
    else:
        app.state.registry = SessionRegistry(connections, bindings=InMemoryBindingStore())
        logger.info("Session registry using in-memory bindings")

    # --- 3. Collaborators ---
    app.state.mailer = Mailer()
    app.state.storage = LocalStorage()
    app.state.sequence_locks = SequenceLocks()

    logger.info("OnePass v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    if relay_task is not None:
        relay_task.cancel()
        with suppress(asyncio.CancelledError):
            await relay_task
    if app.state.redis is not None:
        await app.state.redis.aclose()
        logger.info("Redis connection pool closed")
    logger.info("OnePass shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="OnePass API",
    version=settings.app_version,
    description=(
        "Back office for OnePass: consultation intake, B2B partners, "
        "service approval with business codes and tier discounts, and realtime CMS notifications."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware - restricted to CMS / website origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers - registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(OnePassError)
async def onepass_error_handler(request: Request, exc: OnePassError) -> JSONResponse:
    """Domain errors carry their own status and semantic code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _make_error_response(
        code=exc.code,
        message=exc.message,
        details=exc.details,
        status_code=exc.status_code,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Converts HTTPException to standard error format with semantic code."""
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        413: "FILE_TOO_LARGE",
        415: "INVALID_MIME_TYPE",
        422: "VALIDATION_ERROR",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  -> includes exception type & message in details (dev only).
    DEBUG=false -> generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    registry = getattr(request.app.state, "registry", None)
    return {
        "status": "ok",
        "version": settings.app_version,
        "session_backend": settings.session_backend,
        "realtime_connections": registry.connections.open_count if registry else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Uploaded files (avatars)
# ---------------------------------------------------------------------------
Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
app.mount(PUBLIC_MOUNT, StaticFiles(directory=settings.upload_dir), name="uploads")


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from onepass.accounts.routes import router as accounts_router  # noqa: E402
from onepass.billing.routes import router as billing_router  # noqa: E402
from onepass.intake.routes import router as intake_router  # noqa: E402
from onepass.realtime.routes import router as realtime_router  # noqa: E402

app.include_router(accounts_router)
app.include_router(intake_router)
app.include_router(billing_router)
app.include_router(realtime_router)
