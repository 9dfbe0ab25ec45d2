"""In-memory session store with inactivity expiry."""

import logging
import threading
from collections import OrderedDict
from datetime import datetime

from gateway.agent.base import AgentAdapter
from gateway.observability import AuditLogger
from gateway.session.state import SessionState, SessionStatus, utcnow

logger = logging.getLogger(__name__)

# Number of expired session ids remembered for SessionExpired reporting
DEFAULT_TOMBSTONE_LIMIT = 10_000


class SessionStore:
    """Thread-safe in-memory session store.

    The map lock only guards membership; every state change happens under the
    session's own lock, so work on one session never waits on another. Lock
    order is always map lock before session lock.

    Note: This implementation is suitable for single-instance deployments.
    Sessions do not survive a restart.
    """

    def __init__(
        self,
        adapter: AgentAdapter | None = None,
        timeout_minutes: int = 30,
        tombstone_limit: int = DEFAULT_TOMBSTONE_LIMIT,
        audit_enabled: bool = False,
    ) -> None:
        """Initialize the session store.

        Args:
            adapter: Adapter used to release agent-side resources on expiry.
            timeout_minutes: Default inactivity timeout for new sessions.
            tombstone_limit: How many expired ids to remember.
            audit_enabled: Whether to emit audit events for expiries.
        """
        self._adapter = adapter
        self._sessions: dict[str, SessionState] = {}
        self._expired: OrderedDict[str, datetime] = OrderedDict()
        self._lock = threading.Lock()
        self._timeout_minutes = timeout_minutes
        self._tombstone_limit = tombstone_limit
        self._audit_enabled = audit_enabled

    @property
    def timeout_minutes(self) -> int:
        """Get the default session timeout in minutes."""
        return self._timeout_minutes

    def put(self, session: SessionState) -> None:
        """Add a new session.

        Raises:
            ValueError: If the id is already in use or was used before.
        """
        with self._lock:
            if session.session_id in self._sessions or session.session_id in self._expired:
                raise ValueError(f"Duplicate session id: {session.session_id}")
            self._sessions[session.session_id] = session
        logger.debug(
            "Stored session (session_id=%s, handle=%s)",
            session.session_id,
            session.agent_handle,
        )

    def get(self, session_id: str) -> SessionState | None:
        """Get a session by id, or None if the store does not hold it."""
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        """Drop a session regardless of its state.

        Returns:
            True if session was removed, False if not found.
        """
        with self._lock:
            if session_id in self._sessions:
                logger.debug("Removing session (session_id=%s)", session_id)
                del self._sessions[session_id]
                return True
            return False

    def _discard(self, session: SessionState) -> None:
        with self._lock:
            if self._sessions.get(session.session_id) is session:
                del self._sessions[session.session_id]

    def _record_expired(self, session_id: str) -> None:
        with self._lock:
            self._expired[session_id] = utcnow()
            self._expired.move_to_end(session_id)
            while len(self._expired) > self._tombstone_limit:
                self._expired.popitem(last=False)

    def was_expired(self, session_id: str) -> bool:
        """Whether the id belonged to a session that ended by expiry."""
        with self._lock:
            return session_id in self._expired

    def touch(self, session_id: str) -> bool:
        """Update the last activity timestamp of an active session.

        Returns:
            True if session was found and updated, False otherwise.
        """
        session = self.get(session_id)
        if session is None:
            return False
        with session.lock:
            if not session.is_active:
                return False
            session.touch()
            return True

    def acquire(self, session_id: str) -> SessionState | None:
        """Take a dispatch lease on an active session.

        Touches activity and counts the dispatch as in flight, which keeps the
        session out of the expiry sweep until ``release`` is called.

        Returns:
            The session, or None if it is absent or not active.
        """
        session = self.get(session_id)
        if session is None:
            return None
        with session.lock:
            if not session.is_active:
                return None
            session.in_flight += 1
            session.touch()
            return session

    def release(self, session_id: str) -> None:
        """Return a dispatch lease; a closed session is dropped with its last lease."""
        session = self.get(session_id)
        if session is None:
            return
        with session.lock:
            session.in_flight = max(0, session.in_flight - 1)
            drop = session.status is SessionStatus.CLOSED and session.in_flight == 0
        if drop:
            self._discard(session)

    def begin_close(self, session_id: str) -> SessionState | None:
        """Move an active session to CLOSING.

        Returns:
            The session if this call started closing it, None otherwise.
        """
        session = self.get(session_id)
        if session is None:
            return None
        if session.transition(SessionStatus.CLOSING):
            return session
        return None

    def finish_close(self, session_id: str) -> None:
        """Mark a CLOSING session CLOSED and drop it once no dispatch holds it."""
        session = self.get(session_id)
        if session is None:
            return
        with session.lock:
            session.transition(SessionStatus.CLOSED)
            drop = session.status is SessionStatus.CLOSED and session.in_flight == 0
        if drop:
            self._discard(session)

    async def expire(self, session_id: str, reason: str = "agent_inactive") -> SessionState | None:
        """Remove a session the agent no longer recognises.

        The entry leaves the store immediately so no new dispatch can start;
        streams already in flight keep running to their natural end.

        Returns:
            The expired session, or None if it was not in the store.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return None

        session.transition(SessionStatus.CLOSING)
        session.transition(SessionStatus.CLOSED)
        self._record_expired(session_id)

        if self._adapter is not None:
            try:
                await self._adapter.close_session(session.agent_handle)
            except Exception:
                logger.exception(
                    "Failed to close agent session on expiry (session_id=%s)", session_id
                )

        logger.info("Session expired (session_id=%s, reason=%s)", session_id, reason)
        AuditLogger(
            request_id="-", session_id=session_id, enabled=self._audit_enabled
        ).log_session_event("expired", reason=reason)
        return session

    async def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Close and remove every idle session.

        A session is swept when it is ACTIVE, has no dispatch in flight and
        ``now - last_activity`` exceeds its timeout. The agent side is closed
        before the entry is removed; a failure to close one session is logged
        and does not stop the sweep.

        Args:
            now: Reference time, defaults to the current time.

        Returns:
            The ids of the sessions that were swept.
        """
        now = now or utcnow()

        with self._lock:
            snapshot = list(self._sessions.values())

        candidates: list[SessionState] = []
        for session in snapshot:
            with session.lock:
                if session.in_flight or not session.is_active or not session.is_expired(now):
                    continue
                session.transition(SessionStatus.CLOSING)
            candidates.append(session)
            # Reported as expired while the agent side is still closing
            self._record_expired(session.session_id)

        expired_ids: list[str] = []
        for session in candidates:
            if self._adapter is not None:
                try:
                    await self._adapter.close_session(session.agent_handle)
                except Exception:
                    logger.exception(
                        "Failed to close agent session during sweep (session_id=%s)",
                        session.session_id,
                    )
            session.transition(SessionStatus.CLOSED)
            self._discard(session)
            expired_ids.append(session.session_id)
            logger.debug(
                "Session expired (session_id=%s, last_activity=%s)",
                session.session_id,
                session.last_activity.isoformat(),
            )
            AuditLogger(
                request_id="-", session_id=session.session_id, enabled=self._audit_enabled
            ).log_session_event("expired", reason="inactivity")

        if expired_ids:
            logger.info("Cleaned up %d expired sessions", len(expired_ids))

        return expired_ids

    def count(self) -> int:
        """Get the number of sessions held."""
        with self._lock:
            return len(self._sessions)

    def clear(self) -> None:
        """Remove all sessions."""
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        if count:
            logger.info("Cleared %d sessions", count)
