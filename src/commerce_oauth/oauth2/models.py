# OAuth2 data models.
# Created: 2026-10-12
#
# Records are treated as immutable snapshots once stored: stores swap in a
# dataclasses.replace() copy instead of mutating a shared instance, so a reader
# never observes a half-applied update.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class ClientStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class PKCEMethod(str, Enum):
    S256 = "S256"
    PLAIN = "plain"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Client:
    """Registered OAuth2 client application."""

    id: str
    client_id: str
    secret_hash: str
    name: str
    redirect_uris: list[str] = field(default_factory=list)
    allowed_scopes: list[str] = field(default_factory=list)
    status: ClientStatus = ClientStatus.ACTIVE
    description: str = ""
    website: str = ""
    created_at: datetime = field(default_factory=_now)
    secret_rotated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is ClientStatus.ACTIVE

    def consent_view(self) -> dict[str, str]:
        """The subset of client metadata shown on a consent screen."""
        return {
            "name": self.name,
            "description": self.description,
            "website": self.website,
        }


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code."""

    value: str
    client_id: str
    tenant_id: str
    granted_scopes: list[str]
    redirect_uri: str
    expires_at: datetime
    grant_id: str
    pkce_challenge: str | None = None
    pkce_method: PKCEMethod = PKCEMethod.S256
    issued_at: datetime = field(default_factory=_now)
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class AccessToken:
    """Bearer access token. `token_hash` is the sha256 of the issued value."""

    token_hash: str
    client_id: str
    tenant_id: str
    scopes: list[str]
    expires_at: datetime
    grant_id: str
    refresh_token_hash: str
    issued_at: datetime = field(default_factory=_now)
    revoked: bool = False

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


@dataclass
class RefreshToken:
    """Refresh token; its scopes are the ceiling for every later refresh."""

    token_hash: str
    client_id: str
    tenant_id: str
    scopes: list[str]
    expires_at: datetime
    grant_id: str
    access_token_hash: str
    issued_at: datetime = field(default_factory=_now)
    revoked: bool = False

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


@dataclass
class IssuedTokenPair:
    """Plaintext values of a freshly minted pair, returned exactly once."""

    access_token: str
    refresh_token: str
    access: AccessToken
    refresh: RefreshToken
