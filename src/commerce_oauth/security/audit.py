"""
Audit trail for OAuth protocol events.
Created: 2026-10-12

Every grant, refresh, revocation and secret rotation is recorded as an
``AuditEvent``. Events always go to the ``audit`` logger; when an audit path
is configured they are also appended to a JSONL file. Secrets and token
values never appear in events.
"""

import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal protocol traffic (code issued, token refreshed)
    WARNING = "warning"  # Rejected or suspicious request
    ALERT = "alert"  # Likely attack (authorization code replay)


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    actor: str  # client_id performing the action
    action: str  # e.g. "code_issued", "token_revoked"
    target: str  # e.g. "tenant:42", "grant:ab12..."
    status: str  # "success", "denied"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        actor: str,
        action: str,
        target: str,
        status: str,
        **context: Any,
    ) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            status=status,
            context=context,
        )


class AuditLogger:
    """
    Append-only audit logger.
    Writes JSONL to *log_path* when given; otherwise only logs.
    """

    def __init__(self, log_path: Path | None = None):
        self.log_path = log_path
        self._write_lock = threading.Lock()
        self._callbacks: list[Callable[[dict], None]] = []

    def on_log(self, callback: Callable[[dict], None]) -> None:
        """Register a callback to be called after each audit event."""
        self._callbacks.append(callback)

    def log(self, event: AuditEvent) -> None:
        event_dict = asdict(event)
        event_dict["severity"] = event.severity.value

        level = logging.INFO if event.severity is AuditSeverity.INFO else logging.WARNING
        logger.log(
            level, "%s %s by %s -> %s", event.action, event.target, event.actor, event.status
        )

        if self.log_path is not None:
            try:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with self._write_lock, open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(event_dict) + "\n")
            except OSError as e:
                logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, event.id)

        for cb in self._callbacks:
            try:
                cb(event_dict)
            except Exception:
                logger.warning("Audit callback %r failed for event %s", cb, event.id, exc_info=True)

    def log_oauth_event(
        self,
        action: str,
        client_id: str,
        target: str,
        status: str = "success",
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        """Helper to record an OAuth protocol event."""
        event = AuditEvent.create(
            severity=severity,
            actor=client_id,
            action=action,
            target=target,
            status=status,
            **context,
        )
        self.log(event)
        return event.id


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        from commerce_oauth.config import get_settings

        _audit_logger = AuditLogger(get_settings().audit_log_path)
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset singleton (for testing)."""
    global _audit_logger
    _audit_logger = None
