"""Session state dataclass for gateway conversations."""

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum


class SessionStatus(str, Enum):
    """Lifecycle states of a session. Transitions only move forward."""

    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({SessionStatus.CLOSING}),
    SessionStatus.CLOSING: frozenset({SessionStatus.CLOSED}),
    SessionStatus.CLOSED: frozenset(),
}


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class SessionState:
    """Represents one conversation between a client and the agent.

    The session store owns these records. ``in_flight`` counts dispatches
    currently streaming against the session; the store will not sweep or
    discard a session while it is non-zero.
    """

    session_id: str
    agent_handle: str
    inactivity_timeout_minutes: int = 30
    model: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    in_flight: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        """Whether messages may be dispatched against this session."""
        return self.status is SessionStatus.ACTIVE

    def touch(self, now: datetime | None = None) -> None:
        """Update last activity timestamp; never moves it backwards."""
        now = now or utcnow()
        with self.lock:
            if now > self.last_activity:
                self.last_activity = now

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the session has been idle longer than its timeout.

        Args:
            now: Reference time, defaults to the current time.

        Returns:
            True if session is expired, False otherwise.
        """
        now = now or utcnow()
        return now - self.last_activity > timedelta(minutes=self.inactivity_timeout_minutes)

    def transition(self, target: SessionStatus) -> bool:
        """Move to ``target`` if the lifecycle allows it.

        Returns:
            True if the status changed, False if the move is not allowed.
        """
        with self.lock:
            if target not in _TRANSITIONS[self.status]:
                return False
            self.status = target
            return True
