"""Structured audit logging for the gateway.

Audit events go to a dedicated ``gateway.audit`` logger as one JSON object per
line, separate from the application log.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from gateway.observability.models import AuditEvent, AuditEventType

audit_logger = logging.getLogger("gateway.audit")

_SESSION_ACTIONS = {
    "created": AuditEventType.SESSION_CREATED,
    "closed": AuditEventType.SESSION_CLOSED,
    "expired": AuditEventType.SESSION_EXPIRED,
}

_DISPATCH_OUTCOMES = {
    "completed": AuditEventType.DISPATCH_COMPLETED,
    "failed": AuditEventType.DISPATCH_FAILED,
    "timed_out": AuditEventType.DISPATCH_TIMED_OUT,
    "cancelled": AuditEventType.DISPATCH_CANCELLED,
}


class AuditLogger:
    """Structured audit logger bound to one request and session.

    Usage:
        audit = AuditLogger(request_id="req-123", session_id="0b6f...")
        audit.log_session_event("created", model="sonnet")
        audit.log_dispatch_started(message_length=42)
    """

    def __init__(
        self,
        request_id: str,
        session_id: str,
        enabled: bool = True,
    ) -> None:
        """Initialize the audit logger.

        Args:
            request_id: The request ID for correlation.
            session_id: The gateway session ID.
            enabled: Whether audit logging is enabled.
        """
        self._request_id = request_id
        self._session_id = session_id
        self._enabled = enabled

    def _emit(self, event_type: AuditEventType, **metadata: Any) -> None:
        if not self._enabled:
            return

        event = AuditEvent(
            event_type=event_type,
            timestamp=datetime.now(UTC),
            request_id=self._request_id,
            session_id=self._session_id,
            metadata=metadata,
        )
        try:
            audit_logger.info(json.dumps(event.to_dict(), default=str))
        except Exception as e:
            # Audit failures must not break request handling
            logging.getLogger(__name__).warning("Failed to emit audit event: %s", e)

    def log_session_event(
        self,
        action: str,
        reason: str | None = None,
        model: str | None = None,
    ) -> None:
        """Log a session lifecycle event.

        Args:
            action: One of created, closed, expired.
            reason: Why the session ended (client, inactivity, agent_inactive).
            model: The model the session was created with.
        """
        metadata: dict[str, Any] = {"action": action}
        if reason:
            metadata["reason"] = reason
        if model:
            metadata["model"] = model
        self._emit(_SESSION_ACTIONS.get(action, AuditEventType.SESSION_CLOSED), **metadata)

    def log_dispatch_started(self, message_length: int) -> None:
        """Log that a message was handed to the agent."""
        self._emit(AuditEventType.DISPATCH_STARTED, message_length=message_length)

    def log_dispatch_rejected(self, error_kind: str) -> None:
        """Log a dispatch refused before streaming (unknown or expired session)."""
        self._emit(AuditEventType.DISPATCH_REJECTED, error_kind=error_kind)

    def log_dispatch_finished(
        self,
        outcome: str,
        chunk_count: int,
        duration_ms: float,
        error_kind: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Log how a dispatch ended.

        Args:
            outcome: One of completed, failed, timed_out, cancelled.
            chunk_count: Number of message events emitted.
            duration_ms: Wall time from stream start to the end.
            error_kind: Error taxonomy value for failed outcomes.
            error_message: Failure description, truncated to 200 characters.
        """
        metadata: dict[str, Any] = {
            "chunk_count": chunk_count,
            "duration_ms": round(duration_ms, 2),
        }
        if error_kind:
            metadata["error_kind"] = error_kind
        if error_message:
            metadata["error_message"] = error_message[:200]
        self._emit(_DISPATCH_OUTCOMES.get(outcome, AuditEventType.DISPATCH_FAILED), **metadata)


def configure_audit_logging(level: str = "INFO") -> None:
    """Configure the audit logger with its own handler.

    Args:
        level: The logging level for audit events.
    """
    audit_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not audit_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(getattr(logging, level.upper(), logging.INFO))
        # The message is already JSON
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        audit_logger.addHandler(handler)

    # Prevent duplicate output through the root logger
    audit_logger.propagate = False
