"""Agent adapters: the boundary to the command-line agent process."""

from gateway.agent.base import AgentAdapter, SessionOptions
from gateway.agent.cli import ClaudeCliAdapter
from gateway.agent.errors import (
    AgentError,
    AgentExecutionError,
    AgentStartupError,
    AgentUnavailableError,
)

__all__ = [
    "AgentAdapter",
    "AgentError",
    "AgentExecutionError",
    "AgentStartupError",
    "AgentUnavailableError",
    "ClaudeCliAdapter",
    "SessionOptions",
]
