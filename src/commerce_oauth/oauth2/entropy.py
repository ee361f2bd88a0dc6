# Random values for codes, tokens and secrets, plus the clock.
# Created: 2026-10-12
#
# Both are injected into the stores so tests can be deterministic without
# touching the production entropy source.

from __future__ import annotations

import base64
import hashlib
import secrets
from collections.abc import Callable
from datetime import UTC, datetime

# 32 bytes = 256 bits; codes and tokens need at least 192
DEFAULT_TOKEN_BYTES = 32
MIN_TOKEN_BYTES = 24

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class TokenGenerator:
    """Produces opaque, prefixed random strings from a random-bytes source."""

    def __init__(self, random_bytes: Callable[[int], bytes] = secrets.token_bytes):
        self._random_bytes = random_bytes

    def token(self, prefix: str = "", nbytes: int = DEFAULT_TOKEN_BYTES) -> str:
        if nbytes < MIN_TOKEN_BYTES:
            raise ValueError(f"nbytes must be at least {MIN_TOKEN_BYTES}")
        raw = self._random_bytes(nbytes)
        if len(raw) != nbytes:
            raise ValueError("random source returned the wrong number of bytes")
        return prefix + base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    def hex(self, nbytes: int = 16) -> str:
        return self._random_bytes(nbytes).hex()


def hash_token(value: str) -> str:
    """Lookup key for a bearer value; plaintext tokens are never stored."""
    return hashlib.sha256(value.encode()).hexdigest()
