# Tests for the OAuth bearer-token scope dependency.
# Created: 2026-10-14

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from commerce_oauth.api.deps import require_oauth_scope
from commerce_oauth.oauth2.clients import ClientStore
from commerce_oauth.oauth2.scopes import default_registry
from commerce_oauth.oauth2.server import AuthorizationServer
from commerce_oauth.security.audit import AuditLogger

REDIRECT = "https://app.example.com/callback"


@pytest.fixture
def server():
    registry = default_registry()
    return AuthorizationServer(
        clients=ClientStore(registry, hash_iterations=1000),
        registry=registry,
        audit=AuditLogger(),
    )


@pytest.fixture
def issue(server):
    """Return a function minting an access token with the given scopes."""
    client, secret = server.clients.create("App", [REDIRECT], ["orders.manage", "read_all"])

    def _issue(scope):
        result, _ = server.authorize(client.client_id, REDIRECT, scope, tenant_id="42")
        tokens, _ = server.exchange_code(result.code, client.client_id, secret, REDIRECT)
        return tokens["access_token"]

    return _issue


@pytest.fixture
def client(server, monkeypatch):
    import commerce_oauth.oauth2.server as mod

    monkeypatch.setattr(mod, "_server", server)
    app = FastAPI()

    @app.get("/orders", dependencies=[Depends(require_oauth_scope("orders.read"))])
    async def list_orders(request: Request):
        return {"tenant": request.state.oauth_token.tenant_id}

    @app.post("/orders", dependencies=[Depends(require_oauth_scope("orders.write"))])
    async def create_order():
        return {"ok": True}

    @app.get("/products", dependencies=[Depends(require_oauth_scope("products.read"))])
    async def list_products():
        return {"ok": True}

    return TestClient(app)


class TestRequireOAuthScope:
    def test_missing_token(self, client):
        resp = client.get("/orders")
        assert resp.status_code == 401
        assert 'error="invalid_token"' in resp.headers["www-authenticate"]

    def test_unknown_token(self, client):
        resp = client.get("/orders", headers={"Authorization": "Bearer oat_nope"})
        assert resp.status_code == 401

    def test_exact_scope(self, client, issue):
        token = issue("orders.read")
        resp = client.get("/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json() == {"tenant": "42"}

    def test_insufficient_scope(self, client, issue):
        token = issue("orders.read")
        resp = client.post("/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403
        assert 'error="insufficient_scope"' in resp.headers["www-authenticate"]

    def test_manage_implies_write(self, client, issue):
        token = issue("orders.manage")
        resp = client.post("/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_read_all_implies_read(self, client, issue):
        token = issue("read_all")
        headers = {"Authorization": f"Bearer {token}"}
        assert client.get("/products", headers=headers).status_code == 200
        assert client.post("/orders", headers=headers).status_code == 403

    def test_revoked_token(self, client, issue, server):
        token = issue("orders.read")
        server.tokens.revoke_access(server.tokens.find_access(token))
        resp = client.get("/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
