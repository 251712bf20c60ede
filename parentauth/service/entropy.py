from __future__ import annotations

import base64
import secrets
from typing import Callable

RandomBytes = Callable[[int], bytes]


class SecureRandom:
    """Single source of unpredictable values for codes, tokens and fingerprints.

    Wraps a random-bytes callable (``secrets.token_bytes`` unless a test
    injects something deterministic). Everything else is derived from it so
    no part of the service falls back to a statistical PRNG.
    """

    def __init__(self, read_bytes: RandomBytes | None = None) -> None:
        self._read_bytes = read_bytes or secrets.token_bytes

    def token_bytes(self, nbytes: int) -> bytes:
        data = self._read_bytes(nbytes)
        if len(data) != nbytes:
            raise ValueError(f"random source returned {len(data)} bytes, expected {nbytes}")
        return data

    def token_urlsafe(self, nbytes: int = 32) -> str:
        return base64.urlsafe_b64encode(self.token_bytes(nbytes)).rstrip(b"=").decode("ascii")

    def token_hex(self, nbytes: int = 16) -> str:
        return self.token_bytes(nbytes).hex()

    def randbelow(self, upper: int) -> int:
        """Uniform integer in [0, upper) using rejection sampling."""
        if upper <= 0:
            raise ValueError("upper bound must be positive")
        if upper == 1:
            return 0
        nbits = (upper - 1).bit_length()
        nbytes = (nbits + 7) // 8
        mask = (1 << nbits) - 1
        while True:
            candidate = int.from_bytes(self.token_bytes(nbytes), "big") & mask
            if candidate < upper:
                return candidate

    def numeric_code(self, length: int) -> str:
        """Zero-padded decimal code; every string of ``length`` digits is equally likely."""
        return f"{self.randbelow(10 ** length):0{length}d}"


__all__ = ["RandomBytes", "SecureRandom"]
