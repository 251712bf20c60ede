from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from parentauth.config import get_settings, reset_settings_cache
from parentauth.logging import get_logger
from parentauth.service.analytics import AnalyticsRecorder
from parentauth.service.auth import AuthService
from parentauth.service.entropy import SecureRandom
from parentauth.service.maintenance import PurgeReport, purge_expired
from parentauth.service.otp import OTPEngine
from parentauth.service.profiles import ProfileService
from parentauth.service.sessions import SessionEngine
from parentauth.storage.memory import MemoryStore
from parentauth.storage.redis_store import RedisStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for logging.

    Example: redis://:secret@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    user = parsed.username or ""
    netloc = f"{user}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "redis"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            test_mode=self.settings.test_mode,
        )

        try:
            if self.settings.use_memory_store:
                self.store = MemoryStore(fs_root=self.settings.shared_fs_root)
            else:
                self.store = RedisStore(
                    self.settings.redis_url,
                    key_prefix=self.settings.redis_key_prefix,
                    socket_timeout=self.settings.redis_socket_timeout,
                )
            self.store.verify_connection()
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                redis_url=_mask_url_password(self.settings.redis_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.random = SecureRandom()
        self.analytics = AnalyticsRecorder(self.store)
        self.otp = OTPEngine.from_settings(self.store, self.random, self.settings)
        self.sessions = SessionEngine.from_settings(self.store, self.random, self.settings)
        self.auth = AuthService(
            self.store,
            self.otp,
            self.sessions,
            self.analytics,
            self.settings,
            random=self.random,
        )
        self.profiles = ProfileService(self.store, self.analytics)
        logger.info("runtime_init_completed")

    def run_maintenance(self, *, dry_run: bool = False) -> PurgeReport:
        return purge_expired(self.store, self.sessions, self.otp, dry_run=dry_run)

    def close(self) -> None:
        if isinstance(self.store, RedisStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the unlocked read is the fast path once the
    runtime exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


__all__ = ["Runtime", "get_runtime", "reset_runtime_for_tests"]
