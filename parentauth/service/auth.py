from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Optional

from parentauth.config import Settings
from parentauth.logging import get_logger, sanitize_error_message
from parentauth.service.analytics import AnalyticsRecorder
from parentauth.service.email_validation import normalize_email, validate_email
from parentauth.service.entropy import SecureRandom
from parentauth.service.errors import (
    ExpiredCodeError,
    InvalidCodeError,
    NotFoundError,
    ServiceError,
    ServiceUnavailableError,
    SessionNotFoundError,
    ThrottledError,
    ValidationError,
)
from parentauth.service.fingerprint import compute_device_fingerprint
from parentauth.service.otp import OTPEngine, VerificationOutcome
from parentauth.service.sessions import SessionEngine
from parentauth.storage.common import Namespace, RecordStore
from parentauth.storage.errors import StorageError
from parentauth.storage.models import Account, Session, utcnow

logger = get_logger(__name__)

STORAGE_UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again."

_OUTCOME_ERRORS: dict[VerificationOutcome, type[ServiceError]] = {
    VerificationOutcome.EXPIRED: ExpiredCodeError,
    VerificationOutcome.INVALID: InvalidCodeError,
    VerificationOutcome.THROTTLED: ThrottledError,
    VerificationOutcome.NOT_FOUND: NotFoundError,
}


@dataclass
class AuthContext:
    """The authenticated caller for one request.

    Passed explicitly to whatever needs it; nothing in the service keeps a
    process-wide "current session".
    """

    account_id: str
    access_token: str
    session: Session
    account: Optional[Account] = None


@dataclass
class SignupStarted:
    success: bool
    expires_at: Optional[datetime] = None
    code: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class SignupCompleted:
    success: bool
    session: Optional[Session] = None
    account: Optional[Account] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class SignOutResult:
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None


def _storage_failure(exc: StorageError, event: str, **fields) -> ServiceUnavailableError:
    logger.error(
        event,
        namespace=exc.namespace,
        operation=exc.operation,
        error=sanitize_error_message(exc.message),
        **fields,
    )
    return ServiceUnavailableError(STORAGE_UNAVAILABLE_MESSAGE)


class AuthService:
    """Signup-by-OTP and session handling for parent accounts.

    ``start_signup`` and ``complete_signup`` never raise: every failure is
    returned as a result with a readable ``error`` and a stable
    ``error_code``. Lookups (``get_session``, ``refresh_session``) return
    ``None`` for unknown tokens and raise ``ServiceUnavailableError`` when
    the store itself fails, so an outage is never mistaken for a signed-out
    user.
    """

    def __init__(
        self,
        store: RecordStore,
        otp: OTPEngine,
        sessions: SessionEngine,
        analytics: AnalyticsRecorder,
        settings: Settings,
        *,
        random: Optional[SecureRandom] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.otp = otp
        self.sessions = sessions
        self.analytics = analytics
        self.settings = settings
        self.random = random or sessions.random
        self._clock = clock or utcnow
        self.logger = logger

    def _now(self) -> datetime:
        return self._clock()

    def _expose_codes(self) -> bool:
        return bool(self.settings.test_mode)

    def start_signup(self, email: str) -> SignupStarted:
        raw_email = email.strip().lower() if isinstance(email, str) else ""
        self.analytics.track("auth_signup_started", email=raw_email)

        validation = validate_email(
            email, extra_disposable_domains=self.settings.extra_disposable_domains
        )
        if not validation.valid:
            self.analytics.track("auth_signup_failed", email=raw_email, reason=validation.error)
            self.logger.info("signup_start_rejected", email=raw_email, reason=validation.error)
            return SignupStarted(
                success=False,
                error=validation.error,
                error_code=ValidationError.error_code,
            )

        try:
            issued = self.otp.request_code(validation.email)
        except ThrottledError as exc:
            self.analytics.track("auth_signup_failed", email=validation.email, reason=exc.message)
            return SignupStarted(success=False, error=exc.message, error_code=exc.error_code)
        except StorageError as exc:
            err = _storage_failure(exc, "signup_start_storage_failed", email=validation.email)
            return SignupStarted(success=False, error=err.message, error_code=err.error_code)

        result = SignupStarted(success=True, expires_at=issued.expires_at)
        if self._expose_codes():
            result.code = issued.code
        return result

    def _upsert_account(self, email: str) -> Account:
        now = self._now()
        existing = self.store.get(Namespace.ACCOUNTS, email)
        if existing is not None:
            account = Account.from_record(existing)
            account.updated_at = now
        else:
            account = Account(email=email, created_at=now, updated_at=now)
        self.store.set(Namespace.ACCOUNTS, email, account.to_record())
        return account

    def complete_signup(
        self,
        email: str,
        code: str,
        *,
        device_signals: Optional[Mapping[str, object]] = None,
    ) -> SignupCompleted:
        if not isinstance(email, str) or not email.strip():
            return SignupCompleted(
                success=False,
                error="Email is required",
                error_code=ValidationError.error_code,
            )
        key = normalize_email(email)
        try:
            verification = self.otp.verify_code(key, code)
        except StorageError as exc:
            err = _storage_failure(exc, "signup_verify_storage_failed", email=key)
            return SignupCompleted(success=False, error=err.message, error_code=err.error_code)

        if not verification.valid:
            error_cls = _OUTCOME_ERRORS[verification.outcome]
            self.analytics.track("auth_signup_failed", email=key, reason=verification.message)
            return SignupCompleted(
                success=False,
                error=verification.message,
                error_code=error_cls.error_code,
            )

        # The code is already spent; a failure below means requesting a new one
        try:
            account = self._upsert_account(key)
            fingerprint = compute_device_fingerprint(device_signals, self.random)
            session = self.sessions.issue(account.email, fingerprint)
        except StorageError as exc:
            err = _storage_failure(exc, "signup_complete_storage_failed", email=key)
            return SignupCompleted(success=False, error=err.message, error_code=err.error_code)

        self.analytics.track("auth_signup_success", email=key)
        self.logger.info("signup_completed", email=key)
        return SignupCompleted(success=True, session=session, account=account)

    def get_session(self, access_token: Optional[str]) -> Optional[Session]:
        if not access_token:
            return None
        try:
            return self.sessions.lookup(access_token)
        except StorageError as exc:
            raise _storage_failure(exc, "session_lookup_storage_failed") from exc

    def refresh_session(self, refresh_token: Optional[str]) -> Optional[Session]:
        if not refresh_token:
            return None
        try:
            return self.sessions.rotate(refresh_token)
        except SessionNotFoundError:
            return None
        except StorageError as exc:
            raise _storage_failure(exc, "session_refresh_storage_failed") from exc

    def sign_out(self, access_token: Optional[str]) -> SignOutResult:
        if not access_token:
            return SignOutResult(success=True)
        try:
            self.sessions.revoke(access_token)
        except StorageError as exc:
            err = _storage_failure(exc, "sign_out_storage_failed")
            return SignOutResult(success=False, error=err.message, error_code=err.error_code)
        self.analytics.track("auth_signed_out")
        return SignOutResult(success=True)

    def get_account(self, email: str) -> Optional[Account]:
        try:
            data = self.store.get(Namespace.ACCOUNTS, normalize_email(email))
        except StorageError as exc:
            raise _storage_failure(exc, "account_lookup_storage_failed") from exc
        return Account.from_record(data) if data is not None else None

    def get_account_for_session(self, access_token: Optional[str]) -> Optional[Account]:
        session = self.get_session(access_token)
        if session is None:
            return None
        return self.get_account(session.account_id)

    def authenticate(self, access_token: Optional[str]) -> Optional[AuthContext]:
        session = self.get_session(access_token)
        if session is None:
            return None
        return AuthContext(
            account_id=session.account_id,
            access_token=session.access_token,
            session=session,
            account=self.get_account(session.account_id),
        )

    def remaining_attempts(self, email: str) -> int:
        try:
            return self.otp.remaining_attempts(email)
        except StorageError as exc:
            raise _storage_failure(exc, "otp_remaining_storage_failed") from exc


__all__ = [
    "AuthContext",
    "AuthService",
    "SignOutResult",
    "SignupCompleted",
    "SignupStarted",
]
