"""Stream events, error taxonomy and the per-dispatch state machine."""

import time
import uuid
from dataclasses import dataclass
from enum import Enum


class StreamEventType(str, Enum):
    """Event names as they appear on the wire."""

    MESSAGE = "message"
    ERROR = "error"
    COMPLETE = "complete"


class ErrorKind(str, Enum):
    """Failure categories surfaced to clients."""

    AGENT_UNAVAILABLE = "agent_unavailable"
    AGENT_STARTUP = "agent_startup"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    AGENT_EXECUTION = "agent_execution"
    STREAM_TIMEOUT = "stream_timeout"
    INTERNAL = "internal"


@dataclass(frozen=True)
class StreamEvent:
    """One event of a dispatch stream.

    ``message`` events carry one chunk of agent output verbatim, ``error``
    events a human-readable reason. ``complete`` has no payload.
    """

    type: StreamEventType
    data: str = ""
    error_kind: ErrorKind | None = None

    @classmethod
    def message(cls, chunk: str) -> "StreamEvent":
        return cls(type=StreamEventType.MESSAGE, data=chunk)

    @classmethod
    def error(cls, kind: ErrorKind, reason: str) -> "StreamEvent":
        return cls(type=StreamEventType.ERROR, data=reason, error_kind=kind)

    @classmethod
    def complete(cls) -> "StreamEvent":
        return cls(type=StreamEventType.COMPLETE)

    @property
    def is_terminal(self) -> bool:
        return self.type is not StreamEventType.MESSAGE

    def to_sse(self) -> dict[str, str] | None:
        """Render for ``EventSourceResponse``; None means end of stream."""
        if self.type is StreamEventType.COMPLETE:
            return None
        return {"event": self.type.value, "data": self.data}


class DispatchState(str, Enum):
    """States of a single dispatch."""

    PENDING = "pending"
    VALIDATING = "validating"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


_NEXT_STATES: dict[DispatchState, frozenset[DispatchState]] = {
    DispatchState.PENDING: frozenset({DispatchState.VALIDATING}),
    DispatchState.VALIDATING: frozenset({DispatchState.STREAMING, DispatchState.FAILED}),
    DispatchState.STREAMING: frozenset(
        {DispatchState.COMPLETED, DispatchState.FAILED, DispatchState.TIMED_OUT}
    ),
    DispatchState.COMPLETED: frozenset(),
    DispatchState.FAILED: frozenset(),
    DispatchState.TIMED_OUT: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a dispatch is moved to a state it cannot reach."""

    def __init__(self, current: DispatchState, target: DispatchState):
        super().__init__(f"Cannot move dispatch from {current.value} to {target.value}")
        self.current = current
        self.target = target


class Dispatch:
    """Tracks one message sent to one session."""

    def __init__(self, session_id: str) -> None:
        self.dispatch_id = str(uuid.uuid4())
        self.session_id = session_id
        self.state = DispatchState.PENDING
        self.chunk_count = 0
        self.error_kind: ErrorKind | None = None
        self.started_at = time.monotonic()

    def advance(self, target: DispatchState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the move is not part of the state machine.
        """
        if target not in _NEXT_STATES[self.state]:
            raise InvalidTransitionError(self.state, target)
        self.state = target

    def fail(self, kind: ErrorKind | None = None) -> None:
        """Record a failure unless the dispatch already ended.

        A None kind marks a dispatch the client abandoned.
        """
        if self.is_terminal:
            return
        self.error_kind = kind
        self.advance(DispatchState.FAILED)

    @property
    def is_terminal(self) -> bool:
        return not _NEXT_STATES[self.state]

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000
