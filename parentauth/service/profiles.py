from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from parentauth.logging import get_logger
from parentauth.service.analytics import AnalyticsRecorder
from parentauth.service.email_validation import normalize_email
from parentauth.service.errors import NotFoundError, ValidationError
from parentauth.storage.common import Namespace, RecordStore
from parentauth.storage.models import Account, utcnow

logger = get_logger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50


@dataclass(frozen=True)
class NameValidation:
    valid: bool
    error: Optional[str] = None
    name: Optional[str] = None


def validate_parent_name(name: object) -> NameValidation:
    if not isinstance(name, str) or not name.strip():
        return NameValidation(valid=False, error="Name is required")
    trimmed = name.strip()
    if len(trimmed) < MIN_NAME_LENGTH:
        return NameValidation(
            valid=False, error=f"Name must be at least {MIN_NAME_LENGTH} characters"
        )
    if len(trimmed) > MAX_NAME_LENGTH:
        return NameValidation(
            valid=False, error=f"Name must be {MAX_NAME_LENGTH} characters or less"
        )
    return NameValidation(valid=True, name=trimmed)


def is_profile_complete(account: Optional[Account]) -> bool:
    return bool(account and account.name and len(account.name.strip()) >= MIN_NAME_LENGTH)


class ProfileService:
    """Parent profile edits on the account row."""

    def __init__(
        self,
        store: RecordStore,
        analytics: AnalyticsRecorder,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.analytics = analytics
        self._clock = clock or utcnow

    def get_account(self, email: str) -> Optional[Account]:
        data = self.store.get(Namespace.ACCOUNTS, normalize_email(email))
        return Account.from_record(data) if data is not None else None

    def update_profile(self, email: str, *, name: object) -> Account:
        """Set the parent's display name.

        Raises:
            ValidationError: name fails the length checks.
            NotFoundError: no account for ``email``.
        """
        result = validate_parent_name(name)
        if not result.valid:
            raise ValidationError(result.error, detail={"field": "name"})
        account = self.get_account(email)
        if account is None:
            raise NotFoundError("Parent not found")
        account.name = result.name
        account.profile_complete = is_profile_complete(account)
        account.updated_at = self._clock()
        self.store.set(Namespace.ACCOUNTS, account.email, account.to_record())
        self.analytics.track("parent_profile_updated", parent_email=account.email)
        logger.info("parent_profile_updated", account_email=account.email)
        return account


__all__ = [
    "MAX_NAME_LENGTH",
    "MIN_NAME_LENGTH",
    "NameValidation",
    "ProfileService",
    "is_profile_complete",
    "validate_parent_name",
]
