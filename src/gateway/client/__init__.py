"""Client for the chat gateway."""

from gateway.client.client import GatewayClient, GatewayClientError, SessionGoneError
from gateway.client.parser import EventStreamParser, ServerEvent

__all__ = [
    "EventStreamParser",
    "GatewayClient",
    "GatewayClientError",
    "ServerEvent",
    "SessionGoneError",
]
