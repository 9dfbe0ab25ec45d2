"""Observability module for the gateway.

Provides AuditLogger, which emits structured JSON audit events for session
lifecycle changes and dispatch outcomes on the ``gateway.audit`` logger.
"""

from gateway.observability.audit import AuditLogger, configure_audit_logging
from gateway.observability.models import AuditEvent, AuditEventType

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "configure_audit_logging",
]
