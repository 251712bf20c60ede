from __future__ import annotations

import unicodedata
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from parentauth.service.auth import AuthContext
from parentauth.storage.models import Account, Session

MAX_DEVICE_SIGNALS = 32
MAX_SIGNAL_LENGTH = 512

_ZERO_WIDTH = "\u200b\u200c\u200d\ufeff"
_BIDI_OVERRIDES = frozenset(
    [chr(c) for c in range(0x202A, 0x202F)] + [chr(c) for c in range(0x2066, 0x206A)]
)


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then NFKC normalize."""
    cleaned = "".join(
        c for c in value if c not in _ZERO_WIDTH and c not in _BIDI_OVERRIDES
    )
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "code_invalid",
    "code_expired",
    "unauthorized",
    "not_found",
    "rate_limited",
    "storage_unavailable",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable machine-readable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class SignupStartRequest(BaseModel):
    # Format and disposable-domain checks happen in the service so the
    # caller sees the same messages everywhere
    email: str = Field(..., max_length=320)


class SignupStartResponse(BaseModel):
    email: str
    expires_at: datetime
    code: Optional[str] = None


class SignupCompleteRequest(BaseModel):
    email: str = Field(..., max_length=320)
    code: str = Field(..., max_length=16)
    device: Optional[Dict[str, Any]] = None

    @field_validator("device")
    @classmethod
    def _validate_device(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if value is None:
            return None
        if len(value) > MAX_DEVICE_SIGNALS:
            raise ValueError(f"device may carry at most {MAX_DEVICE_SIGNALS} signals")
        for key, item in value.items():
            if isinstance(item, (dict, list)):
                raise ValueError(f"device signal '{key}' must be a scalar")
            if isinstance(item, str) and len(item) > MAX_SIGNAL_LENGTH:
                raise ValueError(f"device signal '{key}' is too long")
        return value


class TokenRefreshRequest(BaseModel):
    refresh_token: str = Field(..., max_length=2048)


class ProfileUpdateRequest(BaseModel):
    name: str = Field(..., max_length=256)

    @field_validator("name")
    @classmethod
    def _clean_name(cls, value: str) -> str:
        return _normalize_unicode(value)


class SessionResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    account_id: str
    device_fingerprint: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            account_id=session.account_id,
            device_fingerprint=session.device_fingerprint,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


class AccountResponse(BaseModel):
    email: str
    name: Optional[str] = None
    profile_complete: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            email=account.email,
            name=account.name,
            profile_complete=account.profile_complete,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class AuthResponse(BaseModel):
    session: SessionResponse
    account: Optional[AccountResponse] = None


class SessionInfoResponse(BaseModel):
    account_id: str
    device_fingerprint: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_context(cls, ctx: AuthContext) -> "SessionInfoResponse":
        return cls(
            account_id=ctx.account_id,
            device_fingerprint=ctx.session.device_fingerprint,
            created_at=ctx.session.created_at,
            expires_at=ctx.session.expires_at,
        )
