# Token store: access/refresh pairs, revocation and expiry.
# Created: 2026-10-12
#
# Tokens are keyed by the sha256 of their value; the plaintext leaves this
# module once, inside the IssuedTokenPair returned at issuance.
# Optional file-backed persistence so refresh tokens survive restarts.

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path

from commerce_oauth.oauth2.entropy import Clock, TokenGenerator, hash_token, utc_now
from commerce_oauth.oauth2.models import AccessToken, IssuedTokenPair, RefreshToken
from commerce_oauth.oauth2.storage import RecordTable, write_json_atomic

logger = logging.getLogger(__name__)

ACCESS_TOKEN_PREFIX = "oat_"
REFRESH_TOKEN_PREFIX = "ort_"

# Token lifetimes
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=30)


class TokenStore:
    """Access and refresh tokens with atomic revocation and rotation."""

    def __init__(
        self,
        persist_path: Path | None = None,
        generator: TokenGenerator | None = None,
        clock: Clock = utc_now,
        access_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_ttl: timedelta = REFRESH_TOKEN_TTL,
    ):
        self._generator = generator or TokenGenerator()
        self._clock = clock
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._access: RecordTable[AccessToken] = RecordTable()
        self._refresh: RecordTable[RefreshToken] = RecordTable()
        # grant_id -> when the grant was revoked; blocks minting into a dead grant
        self._revoked_grants: RecordTable[datetime] = RecordTable()
        self._persist_path = persist_path
        self._save_lock = threading.Lock()
        self._load()

    # -- persistence ---------------------------------------------------

    def _load(self) -> None:
        """Load tokens from disk on startup."""
        path = self._persist_path
        if path is None or not path.exists():
            return
        try:
            data = json.loads(path.read_text())
            for entry in data.get("access", []):
                token = AccessToken(**_decode(entry))
                self._access.put(token.token_hash, token)
            for entry in data.get("refresh", []):
                token = RefreshToken(**_decode(entry))
                self._refresh.put(token.token_hash, token)
            logger.debug(
                "Loaded %d access / %d refresh tokens from %s",
                len(self._access),
                len(self._refresh),
                path,
            )
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Failed to load OAuth tokens from %s: %s", path, exc)

    def _save(self) -> None:
        """Persist tokens to disk."""
        path = self._persist_path
        if path is None:
            return
        # Snapshot under the lock so writes land in snapshot order
        with self._save_lock:
            data = {
                "access": [_encode(t) for t in self._access.values()],
                "refresh": [_encode(t) for t in self._refresh.values()],
            }
            write_json_atomic(path, data)

    # -- issuance ------------------------------------------------------

    def issue_pair(
        self,
        client_id: str,
        tenant_id: str,
        scopes: list[str],
        grant_id: str,
    ) -> IssuedTokenPair | None:
        """Mint a pair under *grant_id*. Returns None if the grant is revoked."""
        pair = self._mint_pair(client_id, tenant_id, scopes, grant_id)
        self._save()
        return pair

    def _mint_pair(
        self,
        client_id: str,
        tenant_id: str,
        scopes: list[str],
        grant_id: str,
    ) -> IssuedTokenPair | None:
        now = self._clock()
        access_value = self._generator.token(ACCESS_TOKEN_PREFIX)
        refresh_value = self._generator.token(REFRESH_TOKEN_PREFIX)
        access_hash = hash_token(access_value)
        refresh_hash = hash_token(refresh_value)

        access = AccessToken(
            token_hash=access_hash,
            client_id=client_id,
            tenant_id=tenant_id,
            scopes=list(scopes),
            expires_at=now + self.access_ttl,
            grant_id=grant_id,
            refresh_token_hash=refresh_hash,
            issued_at=now,
        )
        refresh = RefreshToken(
            token_hash=refresh_hash,
            client_id=client_id,
            tenant_id=tenant_id,
            scopes=list(scopes),
            expires_at=now + self.refresh_ttl,
            grant_id=grant_id,
            access_token_hash=access_hash,
            issued_at=now,
        )
        if not self._access.insert(access_hash, access) or not self._refresh.insert(
            refresh_hash, refresh
        ):
            # 256 random bits colliding means the random source is broken
            raise RuntimeError("Token value collision")

        # Checked after the insert: a concurrent revoke_grant either sees the new
        # records when it sweeps, or has already marked the grant and we see it here
        if grant_id in self._revoked_grants:
            self._revoke_access(access_hash)
            self._revoke_refresh(refresh_hash)
            logger.warning("Refused to issue tokens for revoked grant %s", grant_id)
            return None
        return IssuedTokenPair(access_value, refresh_value, access, refresh)

    def rotate(
        self,
        refresh_value: str,
        client_id: str,
        scopes: list[str] | None = None,
        revoke_access: bool = True,
    ) -> IssuedTokenPair | None:
        """Revoke the presented refresh token and mint its successor pair.

        The revoke is a compare-and-swap on the refresh record, so of two
        concurrent rotations of the same token only one gets a new pair.
        Returns None when the token is unknown, inactive or not *client_id*'s,
        or when its grant was revoked meanwhile.
        """
        now = self._clock()
        swapped = self._refresh.compare_and_swap(
            hash_token(refresh_value),
            lambda t: t.client_id == client_id and t.is_active(now),
            lambda t: dataclasses.replace(t, revoked=True),
        )
        if swapped is None:
            return None
        old = swapped[0]

        if revoke_access:
            self._revoke_access(old.access_token_hash)

        pair = self._mint_pair(
            client_id=old.client_id,
            tenant_id=old.tenant_id,
            scopes=list(scopes) if scopes is not None else old.scopes,
            grant_id=old.grant_id,
        )
        self._save()
        return pair

    # -- lookup --------------------------------------------------------

    def find_access(self, value: str) -> AccessToken | None:
        return self._access.get(hash_token(value))

    def find_refresh(self, value: str) -> RefreshToken | None:
        return self._refresh.get(hash_token(value))

    def active_access(self, value: str) -> AccessToken | None:
        token = self.find_access(value)
        if token is None or not token.is_active(self._clock()):
            return None
        return token

    def active_refresh(self, value: str) -> RefreshToken | None:
        token = self.find_refresh(value)
        if token is None or not token.is_active(self._clock()):
            return None
        return token

    # -- revocation ----------------------------------------------------

    def _revoke_access(self, token_hash: str) -> bool:
        swapped = self._access.compare_and_swap(
            token_hash,
            lambda t: not t.revoked,
            lambda t: dataclasses.replace(t, revoked=True),
        )
        return swapped is not None

    def _revoke_refresh(self, token_hash: str) -> bool:
        swapped = self._refresh.compare_and_swap(
            token_hash,
            lambda t: not t.revoked,
            lambda t: dataclasses.replace(t, revoked=True),
        )
        return swapped is not None

    def revoke_access(self, token: AccessToken) -> bool:
        """Revoke one access token. Returns False if it was already revoked."""
        revoked = self._revoke_access(token.token_hash)
        if revoked:
            self._save()
        return revoked

    def revoke_refresh(self, token: RefreshToken) -> bool:
        """Revoke a refresh token and every access token of its grant."""
        revoked = self._revoke_refresh(token.token_hash)
        revoked_access = self._revoke_grant_access(token.grant_id)
        if revoked or revoked_access:
            self._save()
        return revoked

    def _revoke_grant_access(self, grant_id: str) -> int:
        return sum(
            self._revoke_access(t.token_hash)
            for t in self._access.values()
            if t.grant_id == grant_id and not t.revoked
        )

    def revoke_grant(self, grant_id: str) -> int:
        """Revoke every token minted under *grant_id*. Returns how many changed.

        The grant stays marked as revoked, so a pair minted concurrently (an
        exchange that won its code just before a replay) is revoked as well.
        """
        self._revoked_grants.put(grant_id, self._clock())
        count = self._revoke_grant_access(grant_id)
        count += sum(
            self._revoke_refresh(t.token_hash)
            for t in self._refresh.values()
            if t.grant_id == grant_id and not t.revoked
        )
        if count:
            self._save()
        return count

    def cleanup_expired(self) -> int:
        """Remove expired tokens. Returns how many were dropped."""
        now = self._clock()
        removed = len(self._access.remove_where(lambda t: now >= t.expires_at))
        removed += len(self._refresh.remove_where(lambda t: now >= t.expires_at))
        # Nothing can still be minted into a grant revoked a refresh lifetime ago
        self._revoked_grants.remove_where(lambda at: now - at >= self.refresh_ttl)
        if removed:
            self._save()
        return removed


def _encode(token: AccessToken | RefreshToken) -> dict:
    entry = dataclasses.asdict(token)
    entry["expires_at"] = token.expires_at.isoformat()
    entry["issued_at"] = token.issued_at.isoformat()
    return entry


def _decode(entry: dict) -> dict:
    entry = dict(entry)
    entry["expires_at"] = datetime.fromisoformat(entry["expires_at"])
    entry["issued_at"] = datetime.fromisoformat(entry["issued_at"])
    return entry
