from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parentauth.api.error_handling import register_exception_handlers
from parentauth.api.routes import router
from parentauth.config import Settings
from parentauth.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 2.0
# Lower bound on the sweeper interval so a misconfigured value cannot spin
MIN_MAINTENANCE_INTERVAL_SECONDS = 5

_maintenance_task: asyncio.Task | None = None


async def _run_maintenance(runtime, interval_seconds: int) -> None:
    """Background loop that purges expired sessions and stale OTP records."""

    interval = max(interval_seconds, MIN_MAINTENANCE_INTERVAL_SECONDS)
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(runtime.run_maintenance)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - best-effort sweep
                logger.warning("maintenance_sweep_failed", error=str(exc))
    except asyncio.CancelledError:
        logger.info("maintenance_task_cancelled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global _maintenance_task
    from parentauth.service.runtime import get_runtime

    runtime = get_runtime()
    interval = runtime.settings.maintenance_interval_seconds
    if interval > 0:
        _maintenance_task = asyncio.create_task(_run_maintenance(runtime, interval))
        logger.info("maintenance_task_started", interval_seconds=interval)

    yield

    if _maintenance_task:
        _maintenance_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _maintenance_task
        _maintenance_task = None
    try:
        get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Parent Auth", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:19006",
        "http://127.0.0.1:3000",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "API-Version"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with a correlation ID for structured logs.

    Taken from the X-Request-ID header when the client sends one, otherwise
    generated. Echoed back in the X-Request-ID response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Tokens travel in these bodies
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    response.headers.setdefault("API-Version", __version__)
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Report record store reachability and version info."""
    from parentauth.service.runtime import get_runtime

    runtime = get_runtime()
    store_type = "memory" if runtime.settings.use_memory_store else "redis"
    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.store.verify_connection),
            HEALTH_CHECK_TIMEOUT_SECONDS,
        )
        store_ok = True
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component="store", timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
        store_ok = False
    except Exception as exc:
        logger.error("health_check_store_failed", error=str(exc))
        store_ok = False

    return {
        "status": "healthy" if store_ok else "unhealthy",
        "checks": {"store": {"status": "healthy" if store_ok else "unhealthy", "type": store_type}},
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app() -> FastAPI:
    return app
