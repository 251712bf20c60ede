from __future__ import annotations

import json
import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from parentauth.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the parental auth service."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_key_prefix: str = env_field("parentauth", "REDIS_KEY_PREFIX")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    use_memory_store: bool = env_field(
        False,
        "USE_MEMORY_STORE",
        description="Keep records in process memory with a JSON snapshot under SHARED_FS_ROOT",
    )
    shared_fs_root: str = env_field("/srv/parentauth", "SHARED_FS_ROOT")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Return freshly issued OTP codes to the caller. Never enable for real traffic.",
    )
    otp_code_length: int = env_field(6, "OTP_CODE_LENGTH")
    otp_validity_minutes: int = env_field(10, "OTP_VALIDITY_MINUTES")
    otp_max_attempts: int = env_field(5, "OTP_MAX_ATTEMPTS")
    otp_attempt_window_minutes: int = env_field(60, "OTP_ATTEMPT_WINDOW_MINUTES")
    session_ttl_days: int = env_field(7, "SESSION_TTL_DAYS")
    maintenance_interval_seconds: int = env_field(
        300,
        "MAINTENANCE_INTERVAL_SECONDS",
        description="Interval of the expired-record sweeper; 0 disables it",
    )
    extra_disposable_domains: list[str] = env_field(
        [],
        "EXTRA_DISPOSABLE_DOMAINS",
        description="Comma separated domains rejected in addition to the built-in list",
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("extra_disposable_domains", "cors_allow_origins", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [item.strip() for item in raw.split(",") if item.strip()]
        return value

    @field_validator("extra_disposable_domains")
    @classmethod
    def _normalize_domains(cls, value: list[str]) -> list[str]:
        return [domain.strip().lower() for domain in value if domain.strip()]

    @field_validator("otp_code_length")
    @classmethod
    def _validate_code_length(cls, value: int) -> int:
        if not 4 <= value <= 10:
            raise ValueError("otp_code_length must be between 4 and 10")
        return value

    @field_validator(
        "otp_validity_minutes",
        "otp_max_attempts",
        "otp_attempt_window_minutes",
        "session_ttl_days",
    )
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("maintenance_interval_seconds")
    @classmethod
    def _validate_interval(cls, value: int) -> int:
        if value < 0:
            raise ValueError("maintenance_interval_seconds cannot be negative")
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        if _settings_cache.test_mode:
            logger.warning(
                "test_mode_enabled",
                message="OTP codes are returned to callers; do not serve real traffic",
            )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
