"""Unit tests for the auth orchestrator.

Tests for:
- Signup start: email validation, code issuance, throttling
- Signup completion: account upsert, session issue, error codes
- Session lookup, refresh and sign out
- Storage failures surfacing as explicit results
"""

from datetime import timedelta

import pytest

from parentauth.config import Settings
from parentauth.service.analytics import AnalyticsRecorder
from parentauth.service.auth import AuthService
from parentauth.service.errors import ServiceUnavailableError
from parentauth.service.otp import OTPEngine
from parentauth.service.sessions import SessionEngine
from parentauth.storage.common import Namespace
from parentauth.storage.errors import StorageError
from parentauth.storage.models import Account

EMAIL = "parent@example.com"


@pytest.fixture
def settings():
    return Settings(test_mode=True, use_memory_store=True)


def _build(store, settings, random_source, clock):
    analytics = AnalyticsRecorder(store, clock=clock)
    otp = OTPEngine.from_settings(store, random_source, settings, clock=clock)
    sessions = SessionEngine.from_settings(store, random_source, settings, clock=clock)
    return AuthService(store, otp, sessions, analytics, settings, clock=clock)


@pytest.fixture
def auth_service(memory_store, settings, random_source, clock):
    return _build(memory_store, settings, random_source, clock)


def _wrong(code: str) -> str:
    return "".join(str((int(c) + 1) % 10) for c in code)


class FailingStore:
    """Store whose every call fails the way an unreachable backend does."""

    def _fail(self, *args, **kwargs):
        raise StorageError("redis get failed: Connection refused", operation="get")

    get = set = delete = get_all = write_batch = verify_connection = _fail


class TestStartSignup:
    def test_returns_code_in_test_mode(self, auth_service, clock):
        result = auth_service.start_signup("Parent@Example.com")

        assert result.success is True
        assert result.code is not None and len(result.code) == 6
        assert result.expires_at == clock.now + timedelta(minutes=10)
        assert result.error is None

    def test_code_hidden_outside_test_mode(self, memory_store, random_source, clock):
        service = _build(memory_store, Settings(test_mode=False), random_source, clock)

        result = service.start_signup(EMAIL)

        assert result.success is True
        assert result.code is None

    @pytest.mark.parametrize(
        "email, message",
        [
            ("", "Email is required"),
            ("   ", "Email is required"),
            ("not-an-email", "Invalid email format"),
            ("user@mailinator.com", "Disposable email domains are not allowed"),
        ],
    )
    def test_rejects_bad_email(self, auth_service, memory_store, email, message):
        result = auth_service.start_signup(email)

        assert result.success is False
        assert result.error == message
        assert result.error_code == "validation_error"
        assert memory_store.get_all(Namespace.OTP_RECORDS) == {}

    def test_extra_disposable_domains(self, memory_store, random_source, clock):
        settings = Settings(test_mode=True, extra_disposable_domains="burner.test")
        service = _build(memory_store, settings, random_source, clock)

        result = service.start_signup("kid@burner.test")

        assert result.error == "Disposable email domains are not allowed"

    def test_throttled_after_too_many_attempts(self, auth_service):
        code = auth_service.start_signup(EMAIL).code
        for _ in range(5):
            auth_service.complete_signup(EMAIL, _wrong(code))

        result = auth_service.start_signup(EMAIL)

        assert result.success is False
        assert result.error == "Too many attempts. Please try again later."
        assert result.error_code == "rate_limited"

    def test_tracks_analytics(self, auth_service):
        auth_service.start_signup(EMAIL)
        auth_service.start_signup("bad")

        names = [e.event for e in auth_service.analytics.list_events()]
        assert names.count("auth_signup_started") == 2
        assert names.count("auth_signup_failed") == 1


class TestCompleteSignup:
    def test_signup_flow_creates_account_and_session(self, auth_service, clock):
        code = auth_service.start_signup(EMAIL).code

        result = auth_service.complete_signup(
            EMAIL, code, device_signals={"user_agent": "Mozilla/5.0", "platform": "ios"}
        )

        assert result.success is True
        assert result.account.email == EMAIL
        assert result.account.profile_complete is False
        assert result.account.created_at == clock.now
        assert result.session.account_id == EMAIL
        assert result.session.device_fingerprint.startswith("device_")
        assert auth_service.get_session(result.session.access_token) == result.session

    def test_same_signals_give_same_fingerprint(self, auth_service):
        signals = {"user_agent": "Mozilla/5.0", "screen": "390x844"}
        first = auth_service.complete_signup(
            EMAIL, auth_service.start_signup(EMAIL).code, device_signals=signals
        )
        second = auth_service.complete_signup(
            EMAIL, auth_service.start_signup(EMAIL).code, device_signals=signals
        )

        assert first.session.device_fingerprint == second.session.device_fingerprint
        assert first.session.access_token != second.session.access_token

    def test_second_signup_keeps_account_profile(self, auth_service, memory_store, clock):
        auth_service.complete_signup(EMAIL, auth_service.start_signup(EMAIL).code)
        stored = Account.from_record(memory_store.get(Namespace.ACCOUNTS, EMAIL))
        stored.name = "Dana"
        stored.profile_complete = True
        memory_store.set(Namespace.ACCOUNTS, EMAIL, stored.to_record())
        created = stored.created_at
        clock.advance(hours=1)

        result = auth_service.complete_signup(EMAIL, auth_service.start_signup(EMAIL).code)

        assert result.account.name == "Dana"
        assert result.account.profile_complete is True
        assert result.account.created_at == created
        assert result.account.updated_at == clock.now

    def test_invalid_code(self, auth_service):
        code = auth_service.start_signup(EMAIL).code

        result = auth_service.complete_signup(EMAIL, _wrong(code))

        assert result.success is False
        assert result.error == "Invalid code"
        assert result.error_code == "code_invalid"
        assert result.session is None

    def test_expired_code(self, auth_service, clock):
        code = auth_service.start_signup(EMAIL).code
        clock.advance(minutes=11)

        result = auth_service.complete_signup(EMAIL, code)

        assert result.error == "Code expired"
        assert result.error_code == "code_expired"

    def test_no_code_requested(self, auth_service):
        result = auth_service.complete_signup(EMAIL, "123456")

        assert result.error == "No OTP found. Please request a new one."
        assert result.error_code == "not_found"

    def test_throttled(self, auth_service):
        code = auth_service.start_signup(EMAIL).code
        for _ in range(5):
            auth_service.complete_signup(EMAIL, _wrong(code))

        result = auth_service.complete_signup(EMAIL, code)

        assert result.error == "Too many attempts"
        assert result.error_code == "rate_limited"

    def test_missing_email(self, auth_service):
        result = auth_service.complete_signup("", "123456")

        assert result.success is False
        assert result.error_code == "validation_error"

    def test_emits_success_event(self, auth_service):
        auth_service.complete_signup(EMAIL, auth_service.start_signup(EMAIL).code)

        events = auth_service.analytics.list_events("auth_signup_success")
        assert len(events) == 1
        assert events[0].properties == {"email": EMAIL}


class TestSessions:
    def _signed_in(self, auth_service):
        code = auth_service.start_signup(EMAIL).code
        return auth_service.complete_signup(EMAIL, code).session

    def test_refresh_rotates_tokens(self, auth_service):
        session = self._signed_in(auth_service)

        rotated = auth_service.refresh_session(session.refresh_token)

        assert rotated is not None
        assert auth_service.get_session(session.access_token) is None
        assert auth_service.get_session(rotated.access_token) == rotated
        assert auth_service.refresh_session(session.refresh_token) is None

    def test_refresh_with_empty_or_unknown_token(self, auth_service):
        assert auth_service.refresh_session("") is None
        assert auth_service.refresh_session(None) is None
        assert auth_service.refresh_session("refresh_nope") is None

    def test_sign_out(self, auth_service):
        session = self._signed_in(auth_service)

        result = auth_service.sign_out(session.access_token)

        assert result.success is True
        assert auth_service.get_session(session.access_token) is None
        assert auth_service.sign_out(session.access_token).success is True
        assert auth_service.sign_out(None).success is True

    def test_authenticate_builds_context(self, auth_service):
        session = self._signed_in(auth_service)

        ctx = auth_service.authenticate(session.access_token)

        assert ctx.account_id == EMAIL
        assert ctx.access_token == session.access_token
        assert ctx.account.email == EMAIL
        assert auth_service.authenticate("access_bogus") is None
        assert auth_service.authenticate(None) is None

    def test_get_account_for_session(self, auth_service):
        session = self._signed_in(auth_service)

        assert auth_service.get_account_for_session(session.access_token).email == EMAIL
        assert auth_service.get_account_for_session("access_bogus") is None

    def test_expired_session_is_gone(self, auth_service, clock):
        session = self._signed_in(auth_service)
        clock.advance(days=7, seconds=1)

        assert auth_service.get_session(session.access_token) is None
        assert auth_service.refresh_session(session.refresh_token) is None

    def test_remaining_attempts(self, auth_service):
        code = auth_service.start_signup(EMAIL).code
        auth_service.complete_signup(EMAIL, _wrong(code))

        assert auth_service.remaining_attempts(EMAIL) == 4


class TestStorageFailures:
    @pytest.fixture
    def broken(self, settings, random_source, clock):
        return _build(FailingStore(), settings, random_source, clock)

    def test_start_signup_reports_unavailable(self, broken):
        result = broken.start_signup(EMAIL)

        assert result.success is False
        assert result.error_code == "storage_unavailable"
        assert "Connection refused" not in result.error

    def test_complete_signup_reports_unavailable(self, broken):
        result = broken.complete_signup(EMAIL, "123456")

        assert result.success is False
        assert result.error_code == "storage_unavailable"

    def test_sign_out_reports_unavailable(self, broken):
        result = broken.sign_out("access_token")

        assert result.success is False
        assert result.error_code == "storage_unavailable"

    def test_lookups_raise_instead_of_reporting_signed_out(self, broken):
        with pytest.raises(ServiceUnavailableError):
            broken.get_session("access_token")
        with pytest.raises(ServiceUnavailableError):
            broken.refresh_session("refresh_token")
