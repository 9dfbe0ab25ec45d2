"""Session lifecycle: creating, closing and probing sessions."""

import logging
import uuid

from gateway.agent.base import AgentAdapter, SessionOptions
from gateway.agent.errors import AgentError, AgentStartupError, AgentUnavailableError
from gateway.observability import AuditLogger
from gateway.session.state import SessionState
from gateway.session.store import SessionStore

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """Coordinates session creation and closing between store and adapter.

    Adapter failures leave this class only as ``AgentUnavailableError`` or
    ``AgentStartupError``.
    """

    def __init__(
        self,
        store: SessionStore,
        adapter: AgentAdapter,
        enabled: bool = True,
        audit_enabled: bool = False,
    ) -> None:
        """Initialize the lifecycle manager.

        Args:
            store: The session store.
            adapter: The agent adapter.
            enabled: When False, session creation is refused.
            audit_enabled: Whether to emit audit events.
        """
        self._store = store
        self._adapter = adapter
        self._enabled = enabled
        self._audit_enabled = audit_enabled

    @property
    def enabled(self) -> bool:
        """Whether new sessions may be created."""
        return self._enabled

    async def create(
        self,
        options: SessionOptions | None = None,
        request_id: str = "-",
    ) -> str:
        """Start an agent conversation and register it as an active session.

        Args:
            options: Model and inactivity timeout; an unset or zero timeout
                falls back to the store default.
            request_id: Correlation id for logs.

        Returns:
            The new session id.

        Raises:
            AgentUnavailableError: If chat is disabled or the agent is not
                available. Checked before anything is launched.
            AgentStartupError: If the adapter fails to start the conversation.
        """
        options = options or SessionOptions()

        if not self._enabled:
            raise AgentUnavailableError("Chat is disabled")
        if not self._adapter.is_available():
            logger.error("Claude Code CLI is not available (request_id=%s)", request_id)
            raise AgentUnavailableError("Claude Code CLI is not available")

        timeout = options.inactivity_timeout_minutes or self._store.timeout_minutes
        try:
            handle = await self._adapter.create_session(
                SessionOptions(model=options.model, inactivity_timeout_minutes=timeout)
            )
        except (AgentUnavailableError, AgentStartupError):
            raise
        except AgentError as e:
            raise AgentStartupError(f"Failed to start agent session: {e}") from e

        session = SessionState(
            session_id=str(uuid.uuid4()),
            agent_handle=handle,
            inactivity_timeout_minutes=timeout,
            model=options.model,
        )
        self._store.put(session)

        logger.info(
            "Created session (session_id=%s, model=%s, timeout=%d min, request_id=%s)",
            session.session_id,
            options.model or "default",
            timeout,
            request_id,
        )
        AuditLogger(request_id, session.session_id, self._audit_enabled).log_session_event(
            "created", model=options.model
        )
        return session.session_id

    async def close(self, session_id: str, request_id: str = "-") -> bool:
        """Close a session and release its agent-side resources.

        Closing an unknown or already closed session is not an error.

        Returns:
            True if this call closed the session, False if there was nothing to close.
        """
        session = self._store.begin_close(session_id)
        if session is None:
            logger.debug("Nothing to close (session_id=%s)", session_id)
            return False

        try:
            await self._adapter.close_session(session.agent_handle)
        except AgentError as e:
            logger.warning("Agent error while closing session %s: %s", session_id, e)
        finally:
            self._store.finish_close(session_id)

        logger.info("Closed session (session_id=%s, request_id=%s)", session_id, request_id)
        AuditLogger(request_id, session_id, self._audit_enabled).log_session_event(
            "closed", reason="client"
        )
        return True

    def status(self, session_id: str) -> bool:
        """Whether the session is active in the store and alive agent-side."""
        session = self._store.get(session_id)
        if session is None or not session.is_active:
            return False
        return self._adapter.is_session_active(session.agent_handle)
