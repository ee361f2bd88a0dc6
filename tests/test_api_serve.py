"""Tests for the ``commerce-oauth serve`` app factory."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from commerce_oauth.config import get_settings
from commerce_oauth.oauth2.clients import ClientStore
from commerce_oauth.oauth2.scopes import default_registry
from commerce_oauth.oauth2.server import AuthorizationServer
from commerce_oauth.security.audit import AuditLogger

# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


@pytest.fixture
def server(monkeypatch):
    import commerce_oauth.oauth2.server as mod

    registry = default_registry()
    server = AuthorizationServer(
        clients=ClientStore(registry, hash_iterations=1000),
        registry=registry,
        audit=AuditLogger(),
    )
    monkeypatch.setattr(mod, "_server", server)
    return server


@pytest.fixture
def api_app(server, monkeypatch):
    """Create the app with CORS enabled for one origin."""
    from commerce_oauth.api.serve import create_api_app

    monkeypatch.setenv("COMMERCE_OAUTH_CORS_ALLOWED_ORIGINS", '["https://admin.example.com"]')
    get_settings.cache_clear()
    yield create_api_app()
    get_settings.cache_clear()


@pytest.fixture
def client(api_app):
    with TestClient(api_app) as c:
        yield c


# ---------------------------------------------------------------------------
# Basic structure
# ---------------------------------------------------------------------------


class TestAPIAppStructure:
    def test_openapi_json(self, client):
        resp = client.get("/openapi.json")
        assert resp.status_code == 200
        data = resp.json()
        assert data["info"]["title"] == "Commerce OAuth"
        assert "/oauth/token" in data["paths"]

    def test_docs_page(self, client):
        assert client.get("/docs").status_code == 200

    def test_oauth_routes_mounted_at_root(self, client):
        assert client.get("/.well-known/oauth-authorization-server").status_code == 200
        assert client.get("/oauth/scopes").status_code == 200

    def test_cors_preflight(self, client):
        resp = client.options(
            "/oauth/token",
            headers={
                "Origin": "https://admin.example.com",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.headers["access-control-allow-origin"] == "https://admin.example.com"

    def test_startup_cleanup(self, api_app, server):
        with patch.object(server, "cleanup_expired") as cleanup:
            with TestClient(api_app):
                pass
        cleanup.assert_called_once()


class TestRunServer:
    def test_run_api_server_uses_uvicorn(self, server):
        from commerce_oauth.api.serve import run_api_server

        with patch("uvicorn.run") as run:
            run_api_server(host="127.0.0.1", port=9999)
        run.assert_called_once()
        assert run.call_args.kwargs["port"] == 9999
