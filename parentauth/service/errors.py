from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries both an HTTP status_code and a stable error_code:
    - validation_error (400)
    - code_invalid (400)
    - code_expired (400)
    - unauthorized (401)
    - not_found (404)
    - rate_limited (429)
    - storage_unavailable (503)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Caller input rejected (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidCodeError(ServiceError):
    """Submitted OTP does not match the live code (400)."""
    status_code = 400
    error_code = "code_invalid"


class ExpiredCodeError(ServiceError):
    """Live OTP is past its validity window (400)."""
    status_code = 400
    error_code = "code_expired"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class SessionNotFoundError(AuthenticationError):
    """Unknown or expired access/refresh token (401)."""
    pass


class NotFoundError(ServiceError):
    """Requested record not found (404)."""
    status_code = 404
    error_code = "not_found"


class ThrottledError(ServiceError):
    """Attempt cap reached for the rolling window (429)."""
    status_code = 429
    error_code = "rate_limited"


class ServiceUnavailableError(ServiceError):
    """Record store failed; the call did not complete (503)."""
    status_code = 503
    error_code = "storage_unavailable"


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidCodeError",
    "ExpiredCodeError",
    "AuthenticationError",
    "SessionNotFoundError",
    "NotFoundError",
    "ThrottledError",
    "ServiceUnavailableError",
]
