"""Session management: state, store, expiry sweep and lifecycle."""

from gateway.session.lifecycle import SessionLifecycleManager
from gateway.session.state import SessionState, SessionStatus
from gateway.session.store import SessionStore
from gateway.session.sweeper import SessionSweeper

__all__ = [
    "SessionLifecycleManager",
    "SessionState",
    "SessionStatus",
    "SessionStore",
    "SessionSweeper",
]
