# Tests for the OAuth audit logger.
# Created: 2026-10-14

import json
import logging

from commerce_oauth.security.audit import AuditLogger, AuditSeverity


class TestAuditLogger:
    def test_writes_jsonl(self, tmp_path):
        path = tmp_path / "audit" / "oauth.jsonl"
        audit = AuditLogger(path)
        event_id = audit.log_oauth_event(
            action="token_issued", client_id="app_1", target="tenant:42", scopes=["orders.read"]
        )
        lines = path.read_text().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["id"] == event_id
        assert entry["actor"] == "app_1"
        assert entry["severity"] == "info"
        assert entry["context"] == {"scopes": ["orders.read"]}

    def test_without_path_only_logs(self, caplog):
        audit = AuditLogger()
        with caplog.at_level(logging.WARNING, logger="audit"):
            audit.log_oauth_event(
                action="code_replay",
                client_id="app_1",
                target="grant:g1",
                status="denied",
                severity=AuditSeverity.ALERT,
            )
        assert "code_replay" in caplog.text

    def test_callbacks(self):
        audit = AuditLogger()
        seen = []
        audit.on_log(seen.append)
        audit.log_oauth_event(action="token_revoked", client_id="app_1", target="grant:g1")
        assert seen[0]["action"] == "token_revoked"
        assert seen[0]["status"] == "success"

    def test_unwritable_path_does_not_raise(self, tmp_path, caplog):
        blocker = tmp_path / "file"
        blocker.write_text("")
        audit = AuditLogger(blocker / "audit.jsonl")
        with caplog.at_level(logging.CRITICAL, logger="audit"):
            audit.log_oauth_event(action="token_issued", client_id="app_1", target="t")
        assert "FAILED TO WRITE AUDIT LOG" in caplog.text

    def test_failing_callback_does_not_break_logging(self, caplog):
        audit = AuditLogger()
        seen = []

        def broken(_event):
            raise RuntimeError("sink down")

        audit.on_log(broken)
        audit.on_log(seen.append)
        with caplog.at_level(logging.WARNING, logger="audit"):
            event_id = audit.log_oauth_event(
                action="token_issued", client_id="app_1", target="tenant:42"
            )
        assert [e["id"] for e in seen] == [event_id]
        assert "Audit callback" in caplog.text
