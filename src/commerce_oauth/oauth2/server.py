# OAuth2 Authorization Server with PKCE support.
# Created: 2026-10-12
#
# Implements the authorization code flow (RFC 6749) with PKCE (RFC 7636),
# refresh token rotation, revocation (RFC 7009) and introspection (RFC 7662).
# Every operation returns (result, error); protocol violations are never
# raised, so the HTTP layer can map each error 1:1 to a response.

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta

from commerce_oauth.oauth2.clients import ClientStore
from commerce_oauth.oauth2.codes import CodeStore
from commerce_oauth.oauth2.entropy import Clock, TokenGenerator, utc_now
from commerce_oauth.oauth2.errors import (
    OAuthError,
    OAuthErrorCode,
    invalid_client,
    invalid_code,
    invalid_refresh_token,
)
from commerce_oauth.oauth2.models import (
    AccessToken,
    Client,
    IssuedTokenPair,
    PKCEMethod,
    RefreshToken,
)
from commerce_oauth.oauth2.scopes import ScopeRegistry, default_registry
from commerce_oauth.oauth2.tokens import TokenStore
from commerce_oauth.security.audit import AuditLogger, AuditSeverity, get_audit_logger

logger = logging.getLogger(__name__)

TOKEN_TYPE = "Bearer"
ACCESS_TOKEN_HINT = "access_token"
REFRESH_TOKEN_HINT = "refresh_token"
AUTH_METHODS = ["client_secret_basic", "client_secret_post"]

# RFC 7636 §4.2: 43-128 characters from the unreserved set
_PKCE_CHALLENGE_RE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def parse_scopes(scope: str | Iterable[str] | None) -> list[str]:
    """Split a space-delimited scope string (or list) into unique scopes, in order."""
    if scope is None:
        return []
    items = scope.split() if isinstance(scope, str) else [s for s in scope if s]
    return list(dict.fromkeys(items))


def pkce_challenge(verifier: str, method: PKCEMethod = PKCEMethod.S256) -> str:
    """Derive the code challenge for *verifier*. S256 = BASE64URL(SHA256(verifier))."""
    if method is PKCEMethod.PLAIN:
        return verifier
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


@dataclass
class AuthorizationRequest:
    """A validated authorization request, ready for a consent screen."""

    client: Client
    redirect_uri: str
    scopes: list[str]
    pkce_challenge: str | None = None
    pkce_method: PKCEMethod = PKCEMethod.S256
    state: str | None = None


@dataclass
class AuthorizationResult:
    """Outcome of a successful authorize call."""

    code: str
    client: dict[str, str]
    scopes: list[dict[str, str]]
    redirect_uri: str
    expires_in: int
    state: str | None = None
    granted_scopes: list[str] = field(default_factory=list)


class AuthorizationServer:
    """OAuth2 authorization server. Owns every protocol invariant."""

    def __init__(
        self,
        clients: ClientStore | None = None,
        codes: CodeStore | None = None,
        tokens: TokenStore | None = None,
        registry: ScopeRegistry | None = None,
        clock: Clock = utc_now,
        generator: TokenGenerator | None = None,
        revoke_access_on_refresh: bool = True,
        audit: AuditLogger | None = None,
    ):
        self.registry = registry or (clients.registry if clients else default_registry())
        self.clock = clock
        generator = generator or TokenGenerator()
        self.clients = clients or ClientStore(self.registry, generator=generator, clock=clock)
        self.codes = codes or CodeStore(generator=generator, clock=clock)
        self.tokens = tokens or TokenStore(generator=generator, clock=clock)
        self.revoke_access_on_refresh = revoke_access_on_refresh
        self.audit = audit or get_audit_logger()

    @classmethod
    def from_settings(cls, settings=None) -> AuthorizationServer:
        """Build a server wired to the configured lifetimes and storage paths."""
        from commerce_oauth.config import get_settings

        settings = settings or get_settings()
        registry = default_registry()
        data_dir = settings.data_dir if settings.persist else None
        clients = ClientStore(
            registry,
            persist_path=data_dir / "oauth_clients.json" if data_dir else None,
            hash_iterations=settings.secret_hash_iterations,
        )
        codes = CodeStore(ttl=timedelta(seconds=settings.code_ttl_seconds))
        tokens = TokenStore(
            persist_path=data_dir / "oauth_tokens.json" if data_dir else None,
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
        )
        return cls(
            clients=clients,
            codes=codes,
            tokens=tokens,
            registry=registry,
            revoke_access_on_refresh=settings.revoke_access_on_refresh,
            audit=AuditLogger(settings.audit_log_path),
        )

    # ------------------------------------------------------------------
    # Client authentication
    # ------------------------------------------------------------------

    def authenticate_client(
        self, client_id: str | None, client_secret: str | None
    ) -> tuple[Client | None, OAuthError | None]:
        """Verify client credentials. Unknown, suspended or bad secret -> invalid_client."""
        if not client_id or not client_secret:
            return None, OAuthError(
                OAuthErrorCode.INVALID_CLIENT, "Client authentication required"
            )
        client = self.clients.verify_credentials(client_id, client_secret)
        if client is None or not client.is_active:
            logger.info("Client authentication failed for %s", client_id)
            return None, invalid_client()
        return client, None

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def preview_authorization(
        self,
        client_id: str,
        redirect_uri: str,
        scope: str | Iterable[str] | None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        state: str | None = None,
    ) -> tuple[AuthorizationRequest | None, OAuthError | None]:
        """Validate an authorization request without minting a code.

        Checks run in a fixed order and the first failure wins: client,
        redirect URI, scopes, PKCE parameters.
        """
        client = self.clients.find_by_public_id(client_id)
        if client is None or not client.is_active:
            return None, OAuthError(OAuthErrorCode.UNKNOWN_CLIENT, "Unknown client identifier")

        if redirect_uri not in client.redirect_uris:
            return None, OAuthError(
                OAuthErrorCode.REDIRECT_URI_NOT_ALLOWED, "Redirect URI not allowed"
            )

        requested = parse_scopes(scope)
        if not requested:
            return None, OAuthError(OAuthErrorCode.INVALID_SCOPE, "At least one scope is required")
        invalid = [
            s
            for s in requested
            if not self.registry.is_known(s) or not self.registry.covers(client.allowed_scopes, s)
        ]
        if invalid:
            return None, OAuthError(
                OAuthErrorCode.INVALID_SCOPE,
                "Invalid or unauthorized scopes: " + ", ".join(invalid),
            )

        method = PKCEMethod.S256
        if code_challenge_method:
            try:
                method = PKCEMethod(code_challenge_method)
            except ValueError:
                return None, OAuthError(
                    OAuthErrorCode.INVALID_REQUEST, "Invalid code_challenge_method"
                )
            if not code_challenge:
                return None, OAuthError(
                    OAuthErrorCode.INVALID_REQUEST,
                    "code_challenge_method requires code_challenge",
                )
        if code_challenge and not _PKCE_CHALLENGE_RE.match(code_challenge):
            return None, OAuthError(OAuthErrorCode.INVALID_REQUEST, "Malformed code_challenge")

        return (
            AuthorizationRequest(
                client=client,
                redirect_uri=redirect_uri,
                scopes=requested,
                pkce_challenge=code_challenge or None,
                pkce_method=method,
                state=state,
            ),
            None,
        )

    def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        scope: str | Iterable[str] | None,
        tenant_id: str,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        state: str | None = None,
    ) -> tuple[AuthorizationResult | None, OAuthError | None]:
        """Create an authorization code for an approved request."""
        request, error = self.preview_authorization(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state,
        )
        if error:
            return None, error
        if not tenant_id:
            return None, OAuthError(OAuthErrorCode.INVALID_REQUEST, "Tenant context required")

        code = self.codes.issue(
            client_id=request.client.client_id,
            tenant_id=tenant_id,
            granted_scopes=request.scopes,
            redirect_uri=request.redirect_uri,
            pkce_challenge=request.pkce_challenge,
            pkce_method=request.pkce_method,
        )
        self.audit.log_oauth_event(
            action="code_issued",
            client_id=client_id,
            target=f"tenant:{tenant_id}",
            scopes=request.scopes,
            pkce=request.pkce_challenge is not None,
        )
        logger.info("Authorization code issued to %s for tenant %s", client_id, tenant_id)

        return (
            AuthorizationResult(
                code=code.value,
                client=request.client.consent_view(),
                scopes=self.registry.describe(request.scopes),
                redirect_uri=request.redirect_uri,
                expires_in=int(self.codes.ttl.total_seconds()),
                state=state,
                granted_scopes=list(request.scopes),
            ),
            None,
        )

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def exchange_code(
        self,
        code: str,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        code_verifier: str | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Exchange an authorization code (+ PKCE verifier) for a token pair."""
        client, error = self.authenticate_client(client_id, client_secret)
        if error:
            return None, error

        auth_code = self.codes.get(code) if code else None
        if auth_code is None or auth_code.client_id != client.client_id:
            return None, invalid_code()

        if auth_code.consumed:
            revoked = self.tokens.revoke_grant(auth_code.grant_id)
            logger.warning(
                "Authorization code replay by %s; revoked %d tokens", client.client_id, revoked
            )
            self.audit.log_oauth_event(
                action="code_replay",
                client_id=client.client_id,
                target=f"grant:{auth_code.grant_id}",
                status="denied",
                severity=AuditSeverity.ALERT,
                revoked_tokens=revoked,
            )
            return None, invalid_code()

        if auth_code.is_expired(self.clock()):
            return None, invalid_code()

        if redirect_uri != auth_code.redirect_uri:
            return None, OAuthError(OAuthErrorCode.INVALID_GRANT, "Redirect URI mismatch")

        if auth_code.pkce_challenge:
            if not code_verifier:
                return None, OAuthError(OAuthErrorCode.INVALID_GRANT, "Code verifier required")
            computed = pkce_challenge(code_verifier, auth_code.pkce_method)
            if not hmac.compare_digest(computed.encode(), auth_code.pkce_challenge.encode()):
                return None, OAuthError(
                    OAuthErrorCode.INVALID_GRANT, "Code verifier validation failed"
                )

        # Only one concurrent exchange can win this transition
        consumed = self.codes.consume(code)
        if consumed is None:
            return None, invalid_code()

        pair = self.tokens.issue_pair(
            client_id=consumed.client_id,
            tenant_id=consumed.tenant_id,
            scopes=consumed.granted_scopes,
            grant_id=consumed.grant_id,
        )
        if pair is None:
            # A replay of this code revoked the grant before we could mint
            return None, invalid_code()
        self.audit.log_oauth_event(
            action="token_issued",
            client_id=consumed.client_id,
            target=f"tenant:{consumed.tenant_id}",
            scopes=consumed.granted_scopes,
        )
        logger.info(
            "Access token issued to %s for tenant %s", consumed.client_id, consumed.tenant_id
        )
        return self._token_response(pair), None

    def refresh_token(
        self,
        refresh_token: str,
        client_id: str | None,
        client_secret: str | None,
        scope: str | Iterable[str] | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Rotate a refresh token into a new pair, optionally narrowing scopes."""
        client, error = self.authenticate_client(client_id, client_secret)
        if error:
            return None, error

        current = self.tokens.active_refresh(refresh_token) if refresh_token else None
        if current is None or current.client_id != client.client_id:
            return None, invalid_refresh_token()

        requested = parse_scopes(scope)
        if requested:
            for s in requested:
                if not self.registry.covers(current.scopes, s):
                    return None, OAuthError(
                        OAuthErrorCode.INVALID_SCOPE, "Cannot expand scopes on refresh"
                    )

        pair = self.tokens.rotate(
            refresh_token,
            client_id=client.client_id,
            scopes=requested or None,
            revoke_access=self.revoke_access_on_refresh,
        )
        if pair is None:
            # Lost a race with a concurrent rotation or revocation
            return None, invalid_refresh_token()

        self.audit.log_oauth_event(
            action="token_refreshed",
            client_id=client.client_id,
            target=f"tenant:{pair.refresh.tenant_id}",
            scopes=pair.refresh.scopes,
        )
        logger.info("Access token refreshed for %s", client.client_id)
        return self._token_response(pair), None

    def _token_response(self, pair: IssuedTokenPair) -> dict:
        return {
            "access_token": pair.access_token,
            "refresh_token": pair.refresh_token,
            "token_type": TOKEN_TYPE,
            "expires_in": int(self.tokens.access_ttl.total_seconds()),
            "scope": " ".join(pair.access.scopes),
        }

    # ------------------------------------------------------------------
    # Revocation and introspection
    # ------------------------------------------------------------------

    def _find_token(
        self, token: str, token_type_hint: str | None
    ) -> AccessToken | RefreshToken | None:
        lookups = [self.tokens.find_access, self.tokens.find_refresh]
        if token_type_hint == REFRESH_TOKEN_HINT:
            lookups.reverse()
        for lookup in lookups:
            record = lookup(token)
            if record is not None:
                return record
        return None

    def revoke(
        self,
        token: str,
        client_id: str | None,
        client_secret: str | None,
        token_type_hint: str | None = None,
    ) -> OAuthError | None:
        """Revoke a token (RFC 7009).

        Only client authentication can fail. Unknown tokens and tokens owned
        by another client are ignored without any signal to the caller.
        """
        client, error = self.authenticate_client(client_id, client_secret)
        if error:
            return error

        record = self._find_token(token, token_type_hint) if token else None
        if record is None or record.client_id != client.client_id:
            return None

        if isinstance(record, RefreshToken):
            changed = self.tokens.revoke_refresh(record)
        else:
            changed = self.tokens.revoke_access(record)
        if changed:
            is_refresh = isinstance(record, RefreshToken)
            self.audit.log_oauth_event(
                action="token_revoked",
                client_id=client.client_id,
                target=f"grant:{record.grant_id}",
                token_type=REFRESH_TOKEN_HINT if is_refresh else ACCESS_TOKEN_HINT,
            )
        return None

    def introspect(
        self,
        token: str,
        client_id: str | None,
        client_secret: str | None,
        token_type_hint: str | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Introspect a token (RFC 7662). Another client's token is never active."""
        client, error = self.authenticate_client(client_id, client_secret)
        if error:
            return None, error

        record = self._find_token(token, token_type_hint) if token else None
        if (
            record is None
            or record.client_id != client.client_id
            or not record.is_active(self.clock())
        ):
            return {"active": False}, None

        return {
            "active": True,
            "scope": " ".join(record.scopes),
            "client_id": record.client_id,
            "token_type": TOKEN_TYPE,
            "exp": int(record.expires_at.timestamp()),
            "iat": int(record.issued_at.timestamp()),
        }, None

    # ------------------------------------------------------------------
    # Resource-server helpers
    # ------------------------------------------------------------------

    def validate_token(self, bearer: str | None) -> AccessToken | None:
        """Return the access token record if it is known, unexpired and unrevoked."""
        if not bearer:
            return None
        value = bearer.strip()
        if value[:7].lower() == "bearer ":
            value = value[7:].strip()
        if not value:
            return None
        return self.tokens.active_access(value)

    def token_has_scope(self, token: AccessToken, required: str) -> bool:
        return self.registry.has_scope(token.scopes, required)

    def metadata(self, issuer: str) -> dict:
        """Authorization server metadata (RFC 8414)."""
        return {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/oauth/authorize",
            "token_endpoint": f"{issuer}/oauth/token",
            "revocation_endpoint": f"{issuer}/oauth/revoke",
            "introspection_endpoint": f"{issuer}/oauth/introspect",
            "scopes_supported": list(self.registry),
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_methods_supported": AUTH_METHODS,
            "revocation_endpoint_auth_methods_supported": AUTH_METHODS,
            "introspection_endpoint_auth_methods_supported": AUTH_METHODS,
            "code_challenge_methods_supported": [m.value for m in PKCEMethod],
        }

    def scopes_document(self) -> dict:
        return {
            "scopes": self.registry.all(),
            "grouped": self.registry.grouped(),
            "presets": self.registry.presets(),
        }

    def cleanup_expired(self) -> None:
        """Remove expired codes and tokens."""
        codes = self.codes.cleanup_expired()
        tokens = self.tokens.cleanup_expired()
        if codes or tokens:
            logger.info("Cleaned up %d codes and %d tokens", codes, tokens)


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = AuthorizationServer.from_settings()
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
