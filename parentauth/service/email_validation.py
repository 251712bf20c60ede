from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional

# Known throwaway inbox providers
DISPOSABLE_DOMAINS = frozenset({
    "10minutemail.com",
    "tempmail.com",
    "guerrillamail.com",
    "mailinator.com",
    "throwaway.email",
    "temp-mail.org",
    "getnada.com",
    "mohmal.com",
    "fakeinbox.com",
    "trashmail.com",
    "maildrop.cc",
    "yopmail.com",
    "sharklasers.com",
    "grr.la",
    "guerrillamailblock.com",
    "pokemail.net",
    "spam4.me",
    "bccto.me",
    "chitthi.in",
    "dispostable.com",
    "meltmail.com",
    "emailondeck.com",
    "spamgourmet.com",
    "mytrashmail.com",
    "tempinbox.co.uk",
    "mintemail.com",
    "melt.li",
    "33mail.com",
    "mailcatch.com",
    "spambox.us",
})

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")

EMAIL_REQUIRED = "Email is required"
EMAIL_INVALID = "Invalid email format"
EMAIL_DISPOSABLE = "Disposable email domains are not allowed"


@dataclass(frozen=True)
class EmailValidation:
    valid: bool
    error: Optional[str] = None
    email: Optional[str] = None


def normalize_email(value: str) -> str:
    """Canonical identity key: NFKC-normalised, trimmed, lowercase."""
    return unicodedata.normalize("NFKC", value).strip().lower()


def is_valid_email_format(email: str) -> bool:
    if not email or len(email) > 254:
        return False
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain or len(local) > 64:
        return False
    if not _EMAIL_LOCAL_PART.match(local):
        return False
    labels = domain.split(".")
    if len(labels) < 2:
        return False
    return all(len(label) <= 63 and _EMAIL_DOMAIN_LABEL.match(label) for label in labels)


def is_disposable_domain(email: str, extra_domains: Iterable[str] = ()) -> bool:
    _, sep, domain = email.lower().rpartition("@")
    if not sep or not domain:
        return False
    return domain in DISPOSABLE_DOMAINS or domain in set(extra_domains)


def validate_email(value: object, *, extra_disposable_domains: Iterable[str] = ()) -> EmailValidation:
    """Format check followed by the disposable-domain deny-list."""
    if not isinstance(value, str) or not value.strip():
        return EmailValidation(valid=False, error=EMAIL_REQUIRED)
    email = normalize_email(value)
    if not is_valid_email_format(email):
        return EmailValidation(valid=False, error=EMAIL_INVALID)
    if is_disposable_domain(email, extra_disposable_domains):
        return EmailValidation(valid=False, error=EMAIL_DISPOSABLE)
    return EmailValidation(valid=True, email=email)


__all__ = [
    "DISPOSABLE_DOMAINS",
    "EmailValidation",
    "is_disposable_domain",
    "is_valid_email_format",
    "normalize_email",
    "validate_email",
]
