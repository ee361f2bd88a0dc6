# Tests for the command-line entry point.
# Created: 2026-10-15

import pytest

from commerce_oauth import __main__ as cli
from commerce_oauth.config import get_settings
from commerce_oauth.oauth2.server import reset_oauth_server


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.setenv("COMMERCE_OAUTH_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("COMMERCE_OAUTH_SECRET_HASH_ITERATIONS", "1000")
    get_settings.cache_clear()
    reset_oauth_server()
    yield
    reset_oauth_server()
    get_settings.cache_clear()


def _create(capsys):
    rc = cli.main(
        [
            "create-client",
            "CLI App",
            "--redirect-uri",
            "https://app.example.com/cb",
            "--scope",
            "orders.read",
        ]
    )
    assert rc == 0
    out = capsys.readouterr().out
    values = dict(line.split(":", 1) for line in out.splitlines() if ":" in line)
    return values["client_id"].strip(), values["client_secret"].strip()


class TestCLI:
    def test_create_client_persists(self, capsys, tmp_path):
        client_id, secret = _create(capsys)
        assert client_id.startswith("app_")
        assert secret.startswith("secret_")
        assert client_id in (tmp_path / "oauth_clients.json").read_text()

    def test_create_client_rejects_unknown_scope(self):
        rc = cli.main(
            ["create-client", "Bad", "--redirect-uri", "https://a.example/cb", "--scope", "x.y"]
        )
        assert rc == 2

    def test_rotate_secret(self, capsys):
        client_id, old = _create(capsys)
        assert cli.main(["rotate-secret", client_id]) == 0
        from commerce_oauth.oauth2.server import get_oauth_server

        clients = get_oauth_server().clients
        assert clients.verify_credentials(client_id, old) is None

    def test_suspend_and_activate(self, capsys):
        client_id, _ = _create(capsys)
        assert cli.main(["suspend", client_id]) == 0
        assert "suspended" in capsys.readouterr().out
        assert cli.main(["activate", client_id]) == 0
        assert "active" in capsys.readouterr().out

    def test_unknown_client(self):
        assert cli.main(["suspend", "app_missing"]) == 1

    def test_scopes(self, capsys):
        assert cli.main(["scopes"]) == 0
        assert "orders.read" in capsys.readouterr().out
