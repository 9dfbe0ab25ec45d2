"""Streaming dispatch of client messages to agent sessions."""

from gateway.dispatch.channel import ChannelClosedError, DispatchStream, EventChannel
from gateway.dispatch.dispatcher import (
    DispatchRejectedError,
    SessionExpiredError,
    SessionNotFoundError,
    StreamingDispatcher,
)
from gateway.dispatch.models import (
    Dispatch,
    DispatchState,
    ErrorKind,
    InvalidTransitionError,
    StreamEvent,
    StreamEventType,
)

__all__ = [
    "ChannelClosedError",
    "Dispatch",
    "DispatchRejectedError",
    "DispatchState",
    "DispatchStream",
    "ErrorKind",
    "EventChannel",
    "InvalidTransitionError",
    "SessionExpiredError",
    "SessionNotFoundError",
    "StreamEvent",
    "StreamEventType",
    "StreamingDispatcher",
]
