from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from parentauth.config import Settings
from parentauth.logging import get_logger
from parentauth.service.email_validation import normalize_email
from parentauth.service.entropy import SecureRandom
from parentauth.service.errors import ThrottledError
from parentauth.storage.common import Namespace, RecordStore
from parentauth.storage.models import OTPAttempt, OTPRecord, utcnow

logger = get_logger(__name__)

MSG_NOT_FOUND = "No OTP found. Please request a new one."
MSG_EXPIRED = "Code expired"
MSG_INVALID = "Invalid code"
MSG_THROTTLED = "Too many attempts"
MSG_REQUEST_THROTTLED = "Too many attempts. Please try again later."


class VerificationOutcome(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"
    THROTTLED = "throttled"
    NOT_FOUND = "not_found"


_OUTCOME_MESSAGES = {
    VerificationOutcome.VALID: None,
    VerificationOutcome.EXPIRED: MSG_EXPIRED,
    VerificationOutcome.INVALID: MSG_INVALID,
    VerificationOutcome.THROTTLED: MSG_THROTTLED,
    VerificationOutcome.NOT_FOUND: MSG_NOT_FOUND,
}


@dataclass(frozen=True)
class IssuedCode:
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class CodeVerification:
    outcome: VerificationOutcome
    message: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.outcome is VerificationOutcome.VALID


class OTPEngine:
    """Issues and checks numeric one-time codes per email identity.

    Attempts are throttled over a rolling window: an attempt counts while
    ``now - attempt.timestamp < attempt_window``. The count is recomputed on
    every call; old attempts stay in the record but stop counting.

    Each call is a load / mutate / save sequence against the store with no
    locking, so two concurrent verifications for the same email can lose
    one attempt record.
    """

    def __init__(
        self,
        store: RecordStore,
        random: SecureRandom,
        *,
        code_length: int = 6,
        validity: timedelta = timedelta(minutes=10),
        max_attempts: int = 5,
        attempt_window: timedelta = timedelta(minutes=60),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.random = random
        self.code_length = code_length
        self.validity = validity
        self.max_attempts = max_attempts
        self.attempt_window = attempt_window
        self._clock = clock or utcnow

    @classmethod
    def from_settings(
        cls,
        store: RecordStore,
        random: SecureRandom,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "OTPEngine":
        return cls(
            store,
            random,
            code_length=settings.otp_code_length,
            validity=timedelta(minutes=settings.otp_validity_minutes),
            max_attempts=settings.otp_max_attempts,
            attempt_window=timedelta(minutes=settings.otp_attempt_window_minutes),
            clock=clock,
        )

    def _now(self) -> datetime:
        return self._clock()

    def _load(self, email: str) -> OTPRecord:
        data = self.store.get(Namespace.OTP_RECORDS, email)
        if data is None:
            return OTPRecord(email=email)
        return OTPRecord.from_record(data)

    def _save(self, record: OTPRecord) -> None:
        self.store.set(Namespace.OTP_RECORDS, record.email, record.to_record())

    def recent_attempts(self, record: OTPRecord, now: datetime) -> List[OTPAttempt]:
        return [a for a in record.attempts if now - a.timestamp < self.attempt_window]

    def _is_throttled(self, record: OTPRecord, now: datetime) -> bool:
        return len(self.recent_attempts(record, now)) >= self.max_attempts

    def _is_expired(self, record: OTPRecord, now: datetime) -> bool:
        return now - record.generated_at > self.validity

    def request_code(self, email: str) -> IssuedCode:
        """Generate a fresh code, replacing any live one.

        Raises:
            ThrottledError: the attempt cap is already met; nothing is written.
        """
        key = normalize_email(email)
        now = self._now()
        record = self._load(key)
        if self._is_throttled(record, now):
            logger.info("otp_request_throttled", email=key, attempts=len(record.attempts))
            raise ThrottledError(
                MSG_REQUEST_THROTTLED,
                detail={"remaining_attempts": 0},
            )
        record.code = self.random.numeric_code(self.code_length)
        record.generated_at = now
        self._save(record)
        expires_at = now + self.validity
        logger.info("otp_code_issued", email=key, expires_at=expires_at.isoformat())
        return IssuedCode(code=record.code, expires_at=expires_at)

    def verify_code(self, email: str, submitted: str) -> CodeVerification:
        key = normalize_email(email)
        submitted = "" if submitted is None else str(submitted).strip()
        now = self._now()
        record = self._load(key)
        if not record.has_code:
            logger.info("otp_verification", email=key, outcome=VerificationOutcome.NOT_FOUND.value)
            return CodeVerification(VerificationOutcome.NOT_FOUND, MSG_NOT_FOUND)

        if self._is_expired(record, now):
            outcome = VerificationOutcome.EXPIRED
        elif self._is_throttled(record, now):
            # Checked before the comparison so a throttled caller never matches
            outcome = VerificationOutcome.THROTTLED
        elif hmac.compare_digest(submitted.encode("utf-8"), record.code.encode("utf-8")):
            outcome = VerificationOutcome.VALID
        else:
            outcome = VerificationOutcome.INVALID

        success = outcome is VerificationOutcome.VALID
        record.attempts.append(
            OTPAttempt(
                submitted=submitted,
                timestamp=now,
                success=success,
                reason=None if success else outcome.value,
            )
        )
        if success:
            record.code = None
            record.generated_at = None
        self._save(record)

        # The attempt keeps its evaluated reason; the caller is told about the cap
        if outcome in (VerificationOutcome.EXPIRED, VerificationOutcome.INVALID):
            if self._is_throttled(record, now):
                outcome = VerificationOutcome.THROTTLED

        logger.info(
            "otp_verification",
            email=key,
            outcome=outcome.value,
            recent_attempts=len(self.recent_attempts(record, now)),
        )
        return CodeVerification(outcome, _OUTCOME_MESSAGES[outcome])

    def remaining_attempts(self, email: str) -> int:
        key = normalize_email(email)
        record = self._load(key)
        return max(0, self.max_attempts - len(self.recent_attempts(record, self._now())))

    def has_live_code(self, email: str) -> bool:
        record = self._load(normalize_email(email))
        if not record.has_code:
            return False
        return not self._is_expired(record, self._now())

    def is_stale(self, record: OTPRecord, now: datetime) -> bool:
        """True when a record no longer affects any decision and may be dropped."""
        if record.has_code and not self._is_expired(record, now):
            return False
        return not self.recent_attempts(record, now)


__all__ = [
    "CodeVerification",
    "IssuedCode",
    "OTPEngine",
    "VerificationOutcome",
]
