"""Unit tests for the OTP engine.

Covers code issuance, verification outcomes, the rolling attempt window
and the expiry boundary.
"""

from datetime import timedelta

import pytest

from parentauth.service.entropy import SecureRandom
from parentauth.service.errors import ThrottledError
from parentauth.service.otp import (
    MSG_EXPIRED,
    MSG_INVALID,
    MSG_NOT_FOUND,
    MSG_THROTTLED,
    OTPEngine,
    VerificationOutcome,
)
from parentauth.storage.common import Namespace
from parentauth.storage.models import OTPRecord

EMAIL = "parent@example.com"


def _zero_bytes(nbytes: int) -> bytes:
    return b"\x00" * nbytes


@pytest.fixture
def engine(memory_store, clock):
    return OTPEngine(memory_store, SecureRandom(), clock=clock)


def _wrong(code: str) -> str:
    return "".join(str((int(c) + 1) % 10) for c in code)


def _record(store, email=EMAIL) -> OTPRecord:
    return OTPRecord.from_record(store.get(Namespace.OTP_RECORDS, email))


class TestRequestCode:
    def test_issues_six_digit_code(self, engine, clock):
        issued = engine.request_code(EMAIL)

        assert len(issued.code) == 6
        assert issued.code.isdigit()
        assert issued.expires_at == clock.now + timedelta(minutes=10)

    def test_codes_are_zero_padded(self, memory_store, clock):
        engine = OTPEngine(memory_store, SecureRandom(_zero_bytes), clock=clock)

        assert engine.request_code(EMAIL).code == "000000"

    def test_new_code_replaces_previous(self, engine, memory_store):
        first = engine.request_code(EMAIL)
        second = engine.request_code(EMAIL)

        assert _record(memory_store).code == second.code
        if first.code != second.code:
            result = engine.verify_code(EMAIL, first.code)
            assert result.outcome is VerificationOutcome.INVALID

    def test_email_is_normalized(self, engine, memory_store):
        engine.request_code("  Parent@Example.COM ")

        assert memory_store.get(Namespace.OTP_RECORDS, EMAIL) is not None

    def test_request_refused_when_attempt_cap_met(self, engine, memory_store):
        issued = engine.request_code(EMAIL)
        for _ in range(5):
            engine.verify_code(EMAIL, _wrong(issued.code))
        before = memory_store.get(Namespace.OTP_RECORDS, EMAIL)

        with pytest.raises(ThrottledError) as exc_info:
            engine.request_code(EMAIL)

        assert exc_info.value.error_code == "rate_limited"
        assert exc_info.value.detail == {"remaining_attempts": 0}
        assert memory_store.get(Namespace.OTP_RECORDS, EMAIL) == before


class TestVerifyCode:
    def test_without_code_is_not_found(self, engine, memory_store):
        result = engine.verify_code(EMAIL, "123456")

        assert result.outcome is VerificationOutcome.NOT_FOUND
        assert result.message == MSG_NOT_FOUND
        assert memory_store.get(Namespace.OTP_RECORDS, EMAIL) is None

    def test_valid_code_is_single_use(self, engine, memory_store):
        issued = engine.request_code(EMAIL)

        first = engine.verify_code(EMAIL, issued.code)
        second = engine.verify_code(EMAIL, issued.code)

        assert first.valid
        assert first.message is None
        assert second.outcome is VerificationOutcome.NOT_FOUND
        record = _record(memory_store)
        assert record.code is None
        assert record.generated_at is None
        assert [a.success for a in record.attempts] == [True]

    def test_wrong_code_records_attempt(self, engine, memory_store):
        issued = engine.request_code(EMAIL)

        result = engine.verify_code(EMAIL, _wrong(issued.code))

        assert result.outcome is VerificationOutcome.INVALID
        assert result.message == MSG_INVALID
        attempt = _record(memory_store).attempts[-1]
        assert attempt.success is False
        assert attempt.reason == "invalid"
        assert _record(memory_store).code == issued.code

    def test_submitted_code_is_trimmed(self, engine):
        issued = engine.request_code(EMAIL)

        assert engine.verify_code(EMAIL, f" {issued.code} ").valid

    def test_fifth_failure_reports_throttled(self, engine, memory_store):
        issued = engine.request_code(EMAIL)
        outcomes = [engine.verify_code(EMAIL, _wrong(issued.code)).outcome for _ in range(5)]

        assert outcomes[:4] == [VerificationOutcome.INVALID] * 4
        assert outcomes[4] is VerificationOutcome.THROTTLED
        # Evaluated reason stays on the stored attempt
        assert _record(memory_store).attempts[-1].reason == "invalid"

    def test_correct_code_rejected_while_throttled(self, engine, memory_store):
        issued = engine.request_code(EMAIL)
        for _ in range(5):
            engine.verify_code(EMAIL, _wrong(issued.code))

        result = engine.verify_code(EMAIL, issued.code)

        assert result.outcome is VerificationOutcome.THROTTLED
        assert result.message == MSG_THROTTLED
        record = _record(memory_store)
        assert record.code == issued.code
        assert record.attempts[-1].reason == "throttled"
        assert len(record.attempts) == 6

    def test_throttle_releases_after_window(self, engine, clock):
        issued = engine.request_code(EMAIL)
        for _ in range(5):
            engine.verify_code(EMAIL, _wrong(issued.code))
        assert engine.remaining_attempts(EMAIL) == 0

        clock.advance(minutes=60)

        assert engine.remaining_attempts(EMAIL) == 5
        fresh = engine.request_code(EMAIL)
        assert engine.verify_code(EMAIL, fresh.code).valid

    def test_attempt_still_counts_just_inside_window(self, engine, clock):
        issued = engine.request_code(EMAIL)
        engine.verify_code(EMAIL, _wrong(issued.code))

        clock.advance(minutes=59, seconds=59)

        assert engine.remaining_attempts(EMAIL) == 4


class TestExpiry:
    def test_code_valid_exactly_at_validity_limit(self, engine, clock):
        issued = engine.request_code(EMAIL)
        clock.advance(minutes=10)

        assert engine.verify_code(EMAIL, issued.code).valid

    def test_code_expired_one_millisecond_after_limit(self, engine, clock, memory_store):
        issued = engine.request_code(EMAIL)
        clock.advance(minutes=10, milliseconds=1)

        result = engine.verify_code(EMAIL, issued.code)

        assert result.outcome is VerificationOutcome.EXPIRED
        assert result.message == MSG_EXPIRED
        record = _record(memory_store)
        assert record.code == issued.code
        assert record.attempts[-1].reason == "expired"

    def test_expired_attempt_meeting_cap_reports_throttled(self, engine, clock):
        issued = engine.request_code(EMAIL)
        for _ in range(4):
            engine.verify_code(EMAIL, _wrong(issued.code))
        clock.advance(minutes=11)

        # Fifth attempt meets the cap, so the caller hears about throttling
        assert engine.verify_code(EMAIL, issued.code).outcome is VerificationOutcome.THROTTLED

    def test_has_live_code(self, engine, clock):
        assert engine.has_live_code(EMAIL) is False
        engine.request_code(EMAIL)
        assert engine.has_live_code(EMAIL) is True
        clock.advance(minutes=11)
        assert engine.has_live_code(EMAIL) is False


class TestStaleRecords:
    def test_record_with_live_code_is_not_stale(self, engine, memory_store, clock):
        engine.request_code(EMAIL)

        assert engine.is_stale(_record(memory_store), clock.now) is False

    def test_expired_code_without_recent_attempts_is_stale(self, engine, memory_store, clock):
        engine.request_code(EMAIL)
        clock.advance(minutes=11)

        assert engine.is_stale(_record(memory_store), clock.now) is True

    def test_recent_attempts_keep_record(self, engine, memory_store, clock):
        issued = engine.request_code(EMAIL)
        engine.verify_code(EMAIL, issued.code)

        assert engine.is_stale(_record(memory_store), clock.now) is False
        clock.advance(minutes=61)
        assert engine.is_stale(_record(memory_store), clock.now) is True


def test_from_settings_uses_configured_limits(memory_store, clock):
    from parentauth.config import Settings

    settings = Settings(otp_code_length=8, otp_max_attempts=2, otp_validity_minutes=1)
    engine = OTPEngine.from_settings(memory_store, SecureRandom(), settings, clock=clock)

    issued = engine.request_code(EMAIL)
    assert len(issued.code) == 8
    assert issued.expires_at == clock.now + timedelta(minutes=1)
    engine.verify_code(EMAIL, _wrong(issued.code))
    assert engine.verify_code(EMAIL, _wrong(issued.code)).outcome is VerificationOutcome.THROTTLED
