from __future__ import annotations

import hashlib
import json
from typing import Mapping, Optional

from parentauth.service.entropy import SecureRandom

FINGERPRINT_PREFIX = "device_"
_SIGNAL_MAX_LENGTH = 512


def compute_device_fingerprint(
    signals: Optional[Mapping[str, object]], random: SecureRandom
) -> str:
    """Derive a descriptive device label from client environment signals.

    The label is a SHA-256 digest of the canonicalised signals (user agent,
    screen size, platform...). It describes a session; it is never used to
    grant or deny access. Without any usable signal a random label is
    returned so unrelated anonymous clients do not share one fingerprint.
    """
    cleaned = {
        str(key).strip().lower(): str(value).strip()[:_SIGNAL_MAX_LENGTH]
        for key, value in (signals or {}).items()
        if value is not None and str(value).strip()
    }
    if not cleaned:
        return FINGERPRINT_PREFIX + random.token_hex(8)
    canonical = json.dumps(cleaned, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return FINGERPRINT_PREFIX + digest[:16]


__all__ = ["FINGERPRINT_PREFIX", "compute_device_fingerprint"]
