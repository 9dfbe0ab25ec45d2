"""Data models for audit logging."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AuditEventType(str, Enum):
    """Types of audit events logged by the gateway."""

    SESSION_CREATED = "session_created"
    SESSION_CLOSED = "session_closed"
    SESSION_EXPIRED = "session_expired"
    DISPATCH_STARTED = "dispatch_started"
    DISPATCH_COMPLETED = "dispatch_completed"
    DISPATCH_FAILED = "dispatch_failed"
    DISPATCH_TIMED_OUT = "dispatch_timed_out"
    DISPATCH_CANCELLED = "dispatch_cancelled"
    DISPATCH_REJECTED = "dispatch_rejected"


@dataclass
class AuditEvent:
    """A structured audit event for logging.

    Provides a consistent format for audit trail entries that can
    be serialized to JSON for structured logging.
    """

    event_type: AuditEventType
    """The type of audit event."""

    timestamp: datetime
    """When the event occurred."""

    request_id: str
    """The request ID for correlation."""

    session_id: str
    """The gateway session the event belongs to."""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Event-specific metadata."""

    def to_dict(self) -> dict[str, Any]:
        """Convert the audit event to a dictionary for JSON serialization."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "session_id": self.session_id,
            **self.metadata,
        }
