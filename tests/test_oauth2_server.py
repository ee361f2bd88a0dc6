# Tests for the OAuth2 authorization server.
# Created: 2026-10-13

import base64
import hashlib
import secrets
import threading
from datetime import UTC, datetime, timedelta

import pytest

from commerce_oauth.oauth2.clients import ClientStore
from commerce_oauth.oauth2.codes import CodeStore
from commerce_oauth.oauth2.errors import OAuthErrorCode
from commerce_oauth.oauth2.models import ClientStatus
from commerce_oauth.oauth2.scopes import default_registry
from commerce_oauth.oauth2.server import AuthorizationServer, parse_scopes, pkce_challenge
from commerce_oauth.oauth2.tokens import TokenStore
from commerce_oauth.security.audit import AuditLogger

REDIRECT = "https://app.example.com/callback"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _make_pkce_pair():
    """Generate a PKCE code_verifier and code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def server(clock, audit_events):
    registry = default_registry()
    audit = AuditLogger()
    audit.on_log(audit_events.append)
    return AuthorizationServer(
        clients=ClientStore(registry, clock=clock, hash_iterations=1000),
        codes=CodeStore(clock=clock),
        tokens=TokenStore(clock=clock),
        registry=registry,
        clock=clock,
        audit=audit,
    )


@pytest.fixture
def app(server):
    client, secret = server.clients.create(
        "Test App", [REDIRECT], ["orders.read", "orders.write", "products.read"]
    )
    return client.client_id, secret


def _authorize(server, client_id, scope="orders.read", **kwargs):
    result, error = server.authorize(
        client_id=client_id,
        redirect_uri=REDIRECT,
        scope=scope,
        tenant_id="42",
        **kwargs,
    )
    assert error is None, error
    return result.code


def _tokens(server, app, scope="orders.read"):
    client_id, secret = app
    code = _authorize(server, client_id, scope)
    result, error = server.exchange_code(code, client_id, secret, REDIRECT)
    assert error is None, error
    return result


# ===================== Helpers =====================


class TestHelpers:
    def test_parse_scopes(self):
        assert parse_scopes("orders.read  products.read orders.read") == [
            "orders.read",
            "products.read",
        ]
        assert parse_scopes(None) == []
        assert parse_scopes(["a.read", "", "b.read"]) == ["a.read", "b.read"]

    def test_pkce_s256_rfc_vector(self):
        # RFC 7636 Appendix B
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert pkce_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


# ===================== Authorization =====================


class TestAuthorize:
    def test_authorize_creates_code(self, server, app, audit_events):
        result, error = server.authorize(
            client_id=app[0],
            redirect_uri=REDIRECT,
            scope="orders.read",
            tenant_id="42",
            state="xyz",
        )
        assert error is None
        assert result.code.startswith("code_")
        assert result.state == "xyz"
        assert result.expires_in == 600
        assert result.client["name"] == "Test App"
        assert result.granted_scopes == ["orders.read"]
        assert audit_events[-1]["action"] == "code_issued"

    def test_unknown_client(self, server):
        _, error = server.authorize("app_nope", REDIRECT, "orders.read", "42")
        assert error.code is OAuthErrorCode.UNKNOWN_CLIENT

    def test_suspended_client(self, server, app):
        server.clients.set_status(app[0], ClientStatus.SUSPENDED)
        _, error = server.authorize(app[0], REDIRECT, "orders.read", "42")
        assert error.code is OAuthErrorCode.UNKNOWN_CLIENT

    def test_redirect_uri_exact_match(self, server, app):
        _, error = server.authorize(app[0], REDIRECT + "/", "orders.read", "42")
        assert error.code is OAuthErrorCode.REDIRECT_URI_NOT_ALLOWED

    def test_scope_outside_allowed(self, server, app):
        _, error = server.authorize(app[0], REDIRECT, "customers.read", "42")
        assert error.code is OAuthErrorCode.INVALID_SCOPE

    def test_manage_not_covered_by_actions(self, server, app):
        _, error = server.authorize(app[0], REDIRECT, "orders.manage", "42")
        assert error.code is OAuthErrorCode.INVALID_SCOPE

    def test_unknown_scope(self, server, app):
        _, error = server.authorize(app[0], REDIRECT, "orders.read orders.fly", "42")
        assert error.code is OAuthErrorCode.INVALID_SCOPE
        assert "orders.fly" in error.description

    def test_empty_scope(self, server, app):
        _, error = server.authorize(app[0], REDIRECT, "", "42")
        assert error.code is OAuthErrorCode.INVALID_SCOPE

    def test_missing_tenant(self, server, app):
        _, error = server.authorize(app[0], REDIRECT, "orders.read", "")
        assert error.code is OAuthErrorCode.INVALID_REQUEST

    def test_bad_pkce_method(self, server, app):
        _, challenge = _make_pkce_pair()
        _, error = server.authorize(
            app[0],
            REDIRECT,
            "orders.read",
            "42",
            code_challenge=challenge,
            code_challenge_method="S512",
        )
        assert error.code is OAuthErrorCode.INVALID_REQUEST

    def test_malformed_challenge(self, server, app):
        _, error = server.authorize(
            app[0], REDIRECT, "orders.read", "42", code_challenge="short"
        )
        assert error.code is OAuthErrorCode.INVALID_REQUEST

    def test_error_order_client_before_scope(self, server):
        _, error = server.authorize("app_nope", "https://evil.example", "bogus", "")
        assert error.code is OAuthErrorCode.UNKNOWN_CLIENT

    def test_preview_does_not_mint(self, server, app):
        request, error = server.preview_authorization(app[0], REDIRECT, "orders.read")
        assert error is None
        assert request.scopes == ["orders.read"]
        assert len(server.codes) == 0


# ===================== Code exchange =====================


class TestExchange:
    def test_exchange_success(self, server, app):
        result = _tokens(server, app)
        assert result["access_token"].startswith("oat_")
        assert result["refresh_token"].startswith("ort_")
        assert result["token_type"] == "Bearer"
        assert result["expires_in"] == 3600
        assert result["scope"] == "orders.read"
        token = server.validate_token(result["access_token"])
        assert token.tenant_id == "42"

    def test_wrong_secret(self, server, app):
        code = _authorize(server, app[0])
        _, error = server.exchange_code(code, app[0], "secret_wrong", REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_CLIENT
        assert error.status_code == 401
        # A failed attempt does not burn the code
        _, error = server.exchange_code(code, app[0], app[1], REDIRECT)
        assert error is None

    def test_missing_credentials(self, server, app):
        code = _authorize(server, app[0])
        _, error = server.exchange_code(code, app[0], None, REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_CLIENT

    def test_code_bound_to_client(self, server, app):
        other, secret = server.clients.create("Other", [REDIRECT], ["orders.read"])
        code = _authorize(server, app[0])
        _, error = server.exchange_code(code, other.client_id, secret, REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_GRANT

    def test_redirect_mismatch(self, server, app):
        code = _authorize(server, app[0])
        _, error = server.exchange_code(code, app[0], app[1], "https://other.example/cb")
        assert error.code is OAuthErrorCode.INVALID_GRANT

    def test_expired_code(self, server, app, clock):
        code = _authorize(server, app[0])
        clock.advance(minutes=10, seconds=1)
        _, error = server.exchange_code(code, app[0], app[1], REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_GRANT

    def test_unknown_code(self, server, app):
        _, error = server.exchange_code("code_nope", app[0], app[1], REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_GRANT

    def test_replay_revokes_grant(self, server, app, audit_events):
        code = _authorize(server, app[0])
        first, _ = server.exchange_code(code, app[0], app[1], REDIRECT)
        _, error = server.exchange_code(code, app[0], app[1], REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_GRANT
        assert server.validate_token(first["access_token"]) is None
        assert server.tokens.active_refresh(first["refresh_token"]) is None
        assert audit_events[-1]["action"] == "code_replay"
        assert audit_events[-1]["severity"] == "alert"

    def test_replay_revokes_rotated_tokens_too(self, server, app):
        code = _authorize(server, app[0])
        first, _ = server.exchange_code(code, app[0], app[1], REDIRECT)
        rotated, _ = server.refresh_token(first["refresh_token"], app[0], app[1])
        server.exchange_code(code, app[0], app[1], REDIRECT)
        assert server.validate_token(rotated["access_token"]) is None
        assert server.tokens.active_refresh(rotated["refresh_token"]) is None

    def test_concurrent_exchange_single_winner(self, server, app):
        code = _authorize(server, app[0])
        barrier = threading.Barrier(10)
        results = []

        def worker():
            barrier.wait()
            results.append(server.exchange_code(code, app[0], app[1], REDIRECT))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r, e in results if e is None]
        assert len(winners) == 1
        assert all(e.code is OAuthErrorCode.INVALID_GRANT for r, e in results if e)

    def test_replay_between_consume_and_mint_leaves_no_live_tokens(
        self, server, app, monkeypatch
    ):
        code = _authorize(server, app[0])
        real_issue = server.tokens.issue_pair
        replays = []

        def issue_after_replay(**kwargs):
            # The replay lands after this exchange consumed the code
            if not replays:
                replays.append(server.exchange_code(code, app[0], app[1], REDIRECT))
            return real_issue(**kwargs)

        monkeypatch.setattr(server.tokens, "issue_pair", issue_after_replay)
        result, error = server.exchange_code(code, app[0], app[1], REDIRECT)

        _, replay_error = replays[0]
        assert replay_error.code is OAuthErrorCode.INVALID_GRANT
        assert result is None
        assert error.code is OAuthErrorCode.INVALID_GRANT
        grant_id = server.codes.get(code).grant_id
        assert not [
            t for t in server.tokens._access.values() if t.grant_id == grant_id and not t.revoked
        ]
        assert not [
            t for t in server.tokens._refresh.values() if t.grant_id == grant_id and not t.revoked
        ]


class TestPKCE:
    def test_s256(self, server, app):
        verifier, challenge = _make_pkce_pair()
        code = _authorize(server, app[0], code_challenge=challenge)
        _, error = server.exchange_code(code, app[0], app[1], REDIRECT, "wrong" * 10)
        assert error.code is OAuthErrorCode.INVALID_GRANT
        result, error = server.exchange_code(code, app[0], app[1], REDIRECT, verifier)
        assert error is None
        assert result["access_token"]

    def test_plain(self, server, app):
        verifier = secrets.token_urlsafe(48)
        code = _authorize(
            server, app[0], code_challenge=verifier, code_challenge_method="plain"
        )
        _, error = server.exchange_code(code, app[0], app[1], REDIRECT, verifier)
        assert error is None

    def test_missing_verifier(self, server, app):
        _, challenge = _make_pkce_pair()
        code = _authorize(server, app[0], code_challenge=challenge)
        _, error = server.exchange_code(code, app[0], app[1], REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_GRANT
        assert "verifier" in error.description.lower()


# ===================== Refresh =====================


class TestRefresh:
    def test_refresh_rotates(self, server, app, audit_events):
        first = _tokens(server, app, "orders.read products.read")
        second, error = server.refresh_token(first["refresh_token"], app[0], app[1])
        assert error is None
        assert second["refresh_token"] != first["refresh_token"]
        assert second["scope"] == "orders.read products.read"
        # Old pair is dead
        assert server.validate_token(first["access_token"]) is None
        _, error = server.refresh_token(first["refresh_token"], app[0], app[1])
        assert error.code is OAuthErrorCode.INVALID_GRANT
        assert audit_events[-1]["action"] == "token_refreshed"

    def test_refresh_keeps_grant_tenant(self, server, app):
        first = _tokens(server, app)
        second, _ = server.refresh_token(first["refresh_token"], app[0], app[1])
        token = server.validate_token(second["access_token"])
        assert token.tenant_id == "42"

    def test_narrowing(self, server, app):
        first = _tokens(server, app, "orders.read products.read")
        second, error = server.refresh_token(
            first["refresh_token"], app[0], app[1], scope="orders.read"
        )
        assert error is None
        assert second["scope"] == "orders.read"
        # Narrowed scopes are the new ceiling
        _, error = server.refresh_token(
            second["refresh_token"], app[0], app[1], scope="orders.read products.read"
        )
        assert error.code is OAuthErrorCode.INVALID_SCOPE

    def test_cannot_expand(self, server, app):
        first = _tokens(server, app)
        _, error = server.refresh_token(
            first["refresh_token"], app[0], app[1], scope="orders.write"
        )
        assert error.code is OAuthErrorCode.INVALID_SCOPE
        # The refresh token survives a rejected request
        _, error = server.refresh_token(first["refresh_token"], app[0], app[1])
        assert error is None

    def test_other_client(self, server, app):
        first = _tokens(server, app)
        other, secret = server.clients.create("Other", [REDIRECT], ["orders.read"])
        _, error = server.refresh_token(first["refresh_token"], other.client_id, secret)
        assert error.code is OAuthErrorCode.INVALID_GRANT

    def test_expired_refresh(self, server, app, clock):
        first = _tokens(server, app)
        clock.advance(days=30)
        _, error = server.refresh_token(first["refresh_token"], app[0], app[1])
        assert error.code is OAuthErrorCode.INVALID_GRANT

    def test_keep_access_on_refresh(self, server, app):
        server.revoke_access_on_refresh = False
        first = _tokens(server, app)
        server.refresh_token(first["refresh_token"], app[0], app[1])
        assert server.validate_token(first["access_token"]) is not None

    def test_concurrent_refresh_single_winner(self, server, app):
        first = _tokens(server, app)
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(server.refresh_token(first["refresh_token"], app[0], app[1]))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(1 for r, e in results if e is None) == 1


# ===================== Revocation / introspection =====================


class TestRevokeAndIntrospect:
    def test_revoke_access(self, server, app):
        tokens = _tokens(server, app)
        assert server.revoke(tokens["access_token"], app[0], app[1]) is None
        assert server.validate_token(tokens["access_token"]) is None
        # Refresh token still works
        _, error = server.refresh_token(tokens["refresh_token"], app[0], app[1])
        assert error is None

    def test_revoke_refresh_kills_access(self, server, app):
        tokens = _tokens(server, app)
        server.revoke(tokens["refresh_token"], app[0], app[1], token_type_hint="refresh_token")
        assert server.validate_token(tokens["access_token"]) is None
        _, error = server.refresh_token(tokens["refresh_token"], app[0], app[1])
        assert error.code is OAuthErrorCode.INVALID_GRANT

    def test_revoke_unknown_token_is_silent(self, server, app):
        assert server.revoke("oat_nope", app[0], app[1]) is None

    def test_revoke_other_clients_token_is_ignored(self, server, app):
        tokens = _tokens(server, app)
        other, secret = server.clients.create("Other", [REDIRECT], ["orders.read"])
        assert server.revoke(tokens["access_token"], other.client_id, secret) is None
        assert server.validate_token(tokens["access_token"]) is not None

    def test_revoke_requires_auth(self, server, app):
        error = server.revoke("oat_x", app[0], "bad")
        assert error.code is OAuthErrorCode.INVALID_CLIENT

    def test_introspect_active(self, server, app, clock):
        tokens = _tokens(server, app)
        result, error = server.introspect(tokens["access_token"], app[0], app[1])
        assert error is None
        assert result["active"] is True
        assert result["scope"] == "orders.read"
        assert result["client_id"] == app[0]
        assert result["exp"] == int((clock.now + timedelta(hours=1)).timestamp())

    def test_introspect_refresh(self, server, app):
        tokens = _tokens(server, app)
        result, _ = server.introspect(tokens["refresh_token"], app[0], app[1])
        assert result["active"] is True

    def test_introspect_inactive(self, server, app, clock):
        tokens = _tokens(server, app)
        clock.advance(hours=1)
        result, _ = server.introspect(tokens["access_token"], app[0], app[1])
        assert result == {"active": False}
        result, _ = server.introspect("oat_unknown", app[0], app[1])
        assert result == {"active": False}

    def test_introspect_other_client(self, server, app):
        tokens = _tokens(server, app)
        other, secret = server.clients.create("Other", [REDIRECT], ["orders.read"])
        result, _ = server.introspect(tokens["access_token"], other.client_id, secret)
        assert result == {"active": False}


# ===================== Resource helpers =====================


class TestResourceHelpers:
    def test_validate_token_bearer_prefix(self, server, app):
        tokens = _tokens(server, app)
        assert server.validate_token(f"Bearer {tokens['access_token']}") is not None
        assert server.validate_token(f"bearer {tokens['access_token']}") is not None
        assert server.validate_token("Bearer ") is None
        assert server.validate_token(None) is None

    def test_token_has_scope(self, server, app):
        tokens = _tokens(server, app, "orders.write")
        token = server.validate_token(tokens["access_token"])
        assert server.token_has_scope(token, "orders.write")
        assert not server.token_has_scope(token, "orders.read")

    def test_rotated_secret_blocks_old_credentials(self, server, app):
        code = _authorize(server, app[0])
        new_secret = server.clients.rotate_secret(app[0])
        _, error = server.exchange_code(code, app[0], app[1], REDIRECT)
        assert error.code is OAuthErrorCode.INVALID_CLIENT
        _, error = server.exchange_code(code, app[0], new_secret, REDIRECT)
        assert error is None

    def test_metadata(self, server):
        meta = server.metadata("https://auth.example.com")
        assert meta["token_endpoint"] == "https://auth.example.com/oauth/token"
        assert meta["code_challenge_methods_supported"] == ["S256", "plain"]
        assert "orders.read" in meta["scopes_supported"]

    def test_cleanup_expired(self, server, app, clock):
        _authorize(server, app[0])
        _tokens(server, app)
        clock.advance(days=31)
        server.cleanup_expired()
        assert len(server.codes) == 0

    def test_failing_audit_callback_does_not_fail_exchange(self, server, app):
        def broken(_event):
            raise RuntimeError("sink down")

        server.audit.on_log(broken)
        tokens = _tokens(server, app)
        assert server.validate_token(tokens["access_token"]) is not None
