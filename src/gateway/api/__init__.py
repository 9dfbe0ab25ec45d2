"""HTTP surface of the gateway.

Routers live in ``gateway.api.endpoint``; this package exports the wire models.
"""

from gateway.api.models import (
    CloseSessionResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    HealthResponse,
    PromptRequest,
    SendMessageRequest,
    SessionStatusResponse,
)

__all__ = [
    "CloseSessionResponse",
    "CreateSessionRequest",
    "CreateSessionResponse",
    "HealthResponse",
    "PromptRequest",
    "SendMessageRequest",
    "SessionStatusResponse",
]
