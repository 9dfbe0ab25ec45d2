"""Adapter contract between the gateway core and a command-line agent."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class SessionOptions:
    """Options for starting an agent-side conversation.

    Attributes:
        model: Model override; None uses the agent profile's default.
        inactivity_timeout_minutes: Agent-side idle limit; None uses the default.
    """

    model: str | None = None
    inactivity_timeout_minutes: int | None = None


@runtime_checkable
class AgentAdapter(Protocol):
    """Operations the gateway needs from an agent.

    ``send_message`` returns a lazy, forward-only async generator of output chunks.
    Closing the iterator early (``aclose``) must release the underlying process.
    """

    @property
    def is_configured(self) -> bool: ...

    def is_available(self) -> bool: ...

    async def version(self) -> str: ...

    async def create_session(self, options: SessionOptions) -> str: ...

    def send_message(self, handle: str, text: str) -> AsyncGenerator[str, None]: ...

    async def close_session(self, handle: str) -> None: ...

    def is_session_active(self, handle: str) -> bool: ...

    async def aclose(self) -> None: ...
