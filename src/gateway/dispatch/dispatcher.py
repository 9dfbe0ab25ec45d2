"""Streaming dispatcher: one client message in, one ordered event stream out.

Validation happens before a stream exists, so an unknown or expired session
is reported to the caller directly. Everything after that is reported inside
the stream, and every stream ends with exactly one terminal event.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator

from gateway.agent.base import AgentAdapter
from gateway.agent.errors import (
    AgentExecutionError,
    AgentStartupError,
    AgentUnavailableError,
)
from gateway.dispatch.channel import DispatchStream, EventChannel
from gateway.dispatch.models import Dispatch, DispatchState, ErrorKind, StreamEvent
from gateway.observability import AuditLogger
from gateway.session.state import SessionState
from gateway.session.store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT_SECONDS = 300.0
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


class DispatchRejectedError(Exception):
    """A dispatch was refused before any stream was opened."""

    kind = ErrorKind.SESSION_NOT_FOUND

    def __init__(self, message: str, session_id: str):
        super().__init__(message)
        self.session_id = session_id


class SessionNotFoundError(DispatchRejectedError):
    """The session id is unknown or the session is not active."""

    kind = ErrorKind.SESSION_NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", session_id)


class SessionExpiredError(DispatchRejectedError):
    """The session existed but timed out on the gateway or agent side."""

    kind = ErrorKind.SESSION_EXPIRED

    def __init__(self, session_id: str):
        super().__init__(f"Session expired: {session_id}", session_id)


class StreamingDispatcher:
    """Sends messages to sessions and streams the agent's output back.

    Each opened stream runs its own producer task, so sessions never wait on
    each other. A stream is bounded by an idle timeout (no chunk for that
    long) and an optional overall duration; hitting either ends the stream
    with a ``stream_timeout`` error but leaves the session untouched.
    """

    def __init__(
        self,
        store: SessionStore,
        adapter: AgentAdapter,
        idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        max_duration_seconds: float | None = None,
        channel_size: int = 64,
        audit_enabled: bool = False,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: The session store.
            adapter: The agent adapter.
            idle_timeout_seconds: Longest wait for the next chunk.
            max_duration_seconds: Longest total stream time; None disables it.
            channel_size: Events buffered between producer and consumer.
            audit_enabled: Whether to emit audit events.
        """
        self._store = store
        self._adapter = adapter
        self._idle_timeout = idle_timeout_seconds
        self._max_duration = max_duration_seconds
        self._channel_size = channel_size
        self._audit_enabled = audit_enabled

    async def open(
        self,
        session_id: str,
        message: str,
        request_id: str = "-",
    ) -> DispatchStream:
        """Validate the session and return a stream for the agent's answer.

        Args:
            session_id: Target session.
            message: Prompt text.
            request_id: Correlation id for logs.

        Returns:
            A DispatchStream; iterate it for events and close it when done.

        Raises:
            SessionNotFoundError: If the session is unknown or not active.
            SessionExpiredError: If the session timed out.
        """
        dispatch = Dispatch(session_id)
        audit = AuditLogger(request_id, session_id, self._audit_enabled)
        dispatch.advance(DispatchState.VALIDATING)

        try:
            session = await self._validate(session_id, request_id)
        except DispatchRejectedError as e:
            dispatch.fail(e.kind)
            audit.log_dispatch_rejected(e.kind.value)
            raise

        channel = EventChannel(self._channel_size)
        return DispatchStream(
            dispatch=dispatch,
            channel=channel,
            producer=self._produce(dispatch, session, message, channel, audit),
            on_abandon=lambda: self._store.release(session_id),
        )

    async def dispatch(
        self,
        session_id: str,
        message: str,
        request_id: str = "-",
    ) -> AsyncGenerator[StreamEvent, None]:
        """Like ``open`` but reports a rejected session as a terminal error event."""
        try:
            stream = await self.open(session_id, message, request_id)
        except DispatchRejectedError as e:
            yield StreamEvent.error(e.kind, str(e))
            return

        async with stream:
            async for event in stream:
                yield event

    async def _validate(self, session_id: str, request_id: str) -> SessionState:
        session = self._store.acquire(session_id)
        if session is None:
            if self._store.was_expired(session_id):
                logger.info(
                    "Rejected message for expired session (session_id=%s, request_id=%s)",
                    session_id,
                    request_id,
                )
                raise SessionExpiredError(session_id)
            logger.info(
                "Rejected message for unknown session (session_id=%s, request_id=%s)",
                session_id,
                request_id,
            )
            raise SessionNotFoundError(session_id)

        if not self._adapter.is_session_active(session.agent_handle):
            logger.warning(
                "Agent no longer has session, expiring it (session_id=%s, handle=%s)",
                session_id,
                session.agent_handle,
            )
            self._store.release(session_id)
            await self._store.expire(session_id)
            raise SessionExpiredError(session_id)

        return session

    def _timeout_for_next_chunk(self, deadline: float | None) -> float:
        timeout = self._idle_timeout
        if deadline is not None:
            timeout = min(timeout, deadline - asyncio.get_running_loop().time())
        return max(timeout, 0.0)

    async def _produce(
        self,
        dispatch: Dispatch,
        session: SessionState,
        message: str,
        channel: EventChannel,
        audit: AuditLogger,
    ) -> None:
        session_id = session.session_id
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._max_duration if self._max_duration else None
        chunks = self._adapter.send_message(session.agent_handle, message)
        outcome = "failed"
        error_message: str | None = None

        dispatch.advance(DispatchState.STREAMING)
        audit.log_dispatch_started(message_length=len(message))
        logger.info(
            "Streaming message to agent (session_id=%s, dispatch_id=%s)",
            session_id,
            dispatch.dispatch_id,
        )

        try:
            while True:
                try:
                    async with asyncio.timeout(self._timeout_for_next_chunk(deadline)):
                        chunk = await anext(chunks)
                except StopAsyncIteration:
                    break
                dispatch.chunk_count += 1
                await channel.send(StreamEvent.message(chunk))

            self._store.touch(session_id)
            dispatch.advance(DispatchState.COMPLETED)
            outcome = "completed"
            await channel.send(StreamEvent.complete())
            logger.info(
                "Chat request completed successfully (session_id=%s, chunks=%d)",
                session_id,
                dispatch.chunk_count,
            )

        except TimeoutError:
            if deadline is not None and loop.time() >= deadline:
                error_message = f"Stream exceeded maximum duration of {self._max_duration:.0f}s"
            else:
                error_message = f"No output from agent for {self._idle_timeout:.0f}s"
            logger.warning("SSE stream timed out (session_id=%s): %s", session_id, error_message)
            dispatch.error_kind = ErrorKind.STREAM_TIMEOUT
            dispatch.advance(DispatchState.TIMED_OUT)
            outcome = "timed_out"
            await channel.send(StreamEvent.error(ErrorKind.STREAM_TIMEOUT, error_message))

        except AgentExecutionError as e:
            logger.error(
                "Claude Code execution failed (session_id=%s, partial_chunks=%d): %s",
                session_id,
                len(e.partial_output),
                e,
            )
            error_message = f"Execution failed: {e}"
            dispatch.fail(ErrorKind.AGENT_EXECUTION)
            await channel.send(StreamEvent.error(ErrorKind.AGENT_EXECUTION, error_message))

        except AgentUnavailableError as e:
            logger.error("Claude Code CLI is not available (session_id=%s): %s", session_id, e)
            error_message = str(e)
            dispatch.fail(ErrorKind.AGENT_UNAVAILABLE)
            await channel.send(StreamEvent.error(ErrorKind.AGENT_UNAVAILABLE, error_message))

        except AgentStartupError as e:
            logger.error("Claude Code CLI failed to start (session_id=%s): %s", session_id, e)
            error_message = f"Execution failed: {e}"
            dispatch.fail(ErrorKind.AGENT_STARTUP)
            await channel.send(StreamEvent.error(ErrorKind.AGENT_STARTUP, error_message))

        except asyncio.CancelledError:
            logger.info(
                "Client went away, cancelling stream (session_id=%s, chunks=%d)",
                session_id,
                dispatch.chunk_count,
            )
            outcome = "cancelled"
            dispatch.fail()
            raise

        except Exception as e:
            logger.exception("Unexpected error during chat streaming (session_id=%s)", session_id)
            error_message = str(e) or type(e).__name__
            dispatch.fail(ErrorKind.INTERNAL)
            await channel.send(StreamEvent.error(ErrorKind.INTERNAL, UNEXPECTED_ERROR_MESSAGE))

        finally:
            try:
                await chunks.aclose()
            finally:
                self._store.release(session_id)
                channel.close()
                audit.log_dispatch_finished(
                    outcome=outcome,
                    chunk_count=dispatch.chunk_count,
                    duration_ms=dispatch.elapsed_ms,
                    error_kind=dispatch.error_kind.value if dispatch.error_kind else None,
                    error_message=error_message,
                )
