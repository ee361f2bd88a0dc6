# Authorization code store.
# Created: 2026-10-12
#
# Codes stay in memory only (short-lived, 10 min TTL). A code flips
# consumed=False -> True exactly once via compare-and-swap.

from __future__ import annotations

import dataclasses
import logging
from datetime import timedelta

from commerce_oauth.oauth2.entropy import Clock, TokenGenerator, utc_now
from commerce_oauth.oauth2.models import AuthorizationCode, PKCEMethod
from commerce_oauth.oauth2.storage import RecordTable

logger = logging.getLogger(__name__)

CODE_PREFIX = "code_"
CODE_TTL = timedelta(minutes=10)


class CodeStore:
    """In-memory store of single-use authorization codes."""

    def __init__(
        self,
        generator: TokenGenerator | None = None,
        clock: Clock = utc_now,
        ttl: timedelta = CODE_TTL,
    ):
        self._generator = generator or TokenGenerator()
        self._clock = clock
        self.ttl = ttl
        self._codes: RecordTable[AuthorizationCode] = RecordTable()

    def issue(
        self,
        client_id: str,
        tenant_id: str,
        granted_scopes: list[str],
        redirect_uri: str,
        pkce_challenge: str | None = None,
        pkce_method: PKCEMethod = PKCEMethod.S256,
    ) -> AuthorizationCode:
        now = self._clock()
        while True:
            code = AuthorizationCode(
                value=self._generator.token(CODE_PREFIX),
                client_id=client_id,
                tenant_id=tenant_id,
                granted_scopes=list(granted_scopes),
                redirect_uri=redirect_uri,
                pkce_challenge=pkce_challenge or None,
                pkce_method=pkce_method,
                grant_id=self._generator.hex(16),
                issued_at=now,
                expires_at=now + self.ttl,
            )
            if self._codes.insert(code.value, code):
                return code

    def get(self, value: str) -> AuthorizationCode | None:
        return self._codes.get(value)

    def consume(self, value: str) -> AuthorizationCode | None:
        """Atomically mark the code consumed.

        Returns the consumed record for the single caller that won the
        transition; every other caller (replay, concurrent race, expired
        code) gets None.
        """
        now = self._clock()
        swapped = self._codes.compare_and_swap(
            value,
            lambda c: not c.consumed and not c.is_expired(now),
            lambda c: dataclasses.replace(c, consumed=True),
        )
        if swapped is None:
            return None
        return swapped[1]

    def cleanup_expired(self) -> int:
        """Drop expired codes. Returns how many were removed.

        Consumed codes are kept until they expire so replays stay detectable.
        """
        now = self._clock()
        removed = self._codes.remove_where(lambda c: c.is_expired(now))
        if removed:
            logger.debug("Removed %d stale authorization codes", len(removed))
        return len(removed)

    def __len__(self) -> int:
        return len(self._codes)
