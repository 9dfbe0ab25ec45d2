"""Tests for the streaming dispatcher."""

import asyncio
from datetime import timedelta

import pytest

from gateway.agent import AgentExecutionError, AgentStartupError, AgentUnavailableError
from gateway.dispatch import (
    Dispatch,
    DispatchState,
    ErrorKind,
    InvalidTransitionError,
    SessionExpiredError,
    SessionNotFoundError,
    StreamEventType,
    StreamingDispatcher,
)
from gateway.session.state import utcnow


async def collect(dispatcher, session_id, message="hi"):
    return [event async for event in dispatcher.dispatch(session_id, message)]


class TestDispatchHappyPath:
    """Tests for successful dispatches."""

    @pytest.mark.asyncio
    async def test_chunks_then_complete(self, dispatcher, lifecycle, fake_adapter):
        """Test that chunks arrive in order and the stream ends with complete."""
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id, "What is 2+2?")

        assert [e.type for e in events] == [
            StreamEventType.MESSAGE,
            StreamEventType.MESSAGE,
            StreamEventType.COMPLETE,
        ]
        assert [e.data for e in events[:2]] == ["Hello", " world"]
        assert fake_adapter.sent[0][1] == "What is 2+2?"

    @pytest.mark.asyncio
    async def test_empty_answer_is_just_complete(self, dispatcher, lifecycle, fake_adapter):
        """Test that an agent producing nothing still completes."""
        fake_adapter.chunks = []
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert [e.type for e in events] == [StreamEventType.COMPLETE]

    @pytest.mark.asyncio
    async def test_exactly_one_terminal_event(self, dispatcher, lifecycle):
        """Test that only the last event is terminal."""
        session_id = await lifecycle.create()
        events = await collect(dispatcher, session_id)
        assert [e.is_terminal for e in events] == [False, False, True]

    @pytest.mark.asyncio
    async def test_order_kept_under_backpressure(self, store, lifecycle, fake_adapter):
        """Test that a tiny channel still delivers every chunk in order."""
        fake_adapter.chunks = [str(i) for i in range(50)]
        dispatcher = StreamingDispatcher(store, fake_adapter, channel_size=2)
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert [e.data for e in events[:-1]] == [str(i) for i in range(50)]

    @pytest.mark.asyncio
    async def test_updates_last_activity_and_releases_lease(self, dispatcher, lifecycle, store):
        """Test that a dispatch refreshes activity and leaves nothing in flight."""
        session_id = await lifecycle.create()
        session = store.get(session_id)
        session.last_activity = utcnow() - timedelta(minutes=10)
        before = session.last_activity

        await collect(dispatcher, session_id)

        assert session.last_activity > before
        assert session.in_flight == 0
        assert lifecycle.status(session_id) is True

    @pytest.mark.asyncio
    async def test_sessions_stream_concurrently(self, dispatcher, lifecycle, fake_adapter):
        """Test that two sessions can stream at the same time."""
        fake_adapter.chunk_delay = 0.01
        first = await lifecycle.create()
        second = await lifecycle.create()

        results = await asyncio.gather(
            collect(dispatcher, first, "one"),
            collect(dispatcher, second, "two"),
        )

        for events in results:
            assert events[-1].type is StreamEventType.COMPLETE
            assert len(events) == 3


class TestDispatchRejections:
    """Tests for unknown and expired sessions."""

    @pytest.mark.asyncio
    async def test_unknown_session_raises_on_open(self, dispatcher, fake_adapter):
        """Test that open rejects an unknown id before any agent call."""
        with pytest.raises(SessionNotFoundError):
            await dispatcher.open("no-such-session", "hi")
        assert fake_adapter.sent == []

    @pytest.mark.asyncio
    async def test_unknown_session_yields_single_error(self, dispatcher):
        """Test that dispatch reports an unknown id as one terminal error."""
        events = await collect(dispatcher, "no-such-session")

        assert len(events) == 1
        assert events[0].type is StreamEventType.ERROR
        assert events[0].error_kind is ErrorKind.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_closed_session_is_not_found(self, dispatcher, lifecycle):
        """Test that a client-closed session is reported as not found."""
        session_id = await lifecycle.create()
        await lifecycle.close(session_id)

        with pytest.raises(SessionNotFoundError):
            await dispatcher.open(session_id, "hi")

    @pytest.mark.asyncio
    async def test_swept_session_is_expired(self, dispatcher, lifecycle, store, fake_adapter):
        """Test that a session removed by the sweep is reported as expired."""
        session_id = await lifecycle.create()
        store.get(session_id).last_activity = utcnow() - timedelta(minutes=31)
        await store.sweep_expired()

        with pytest.raises(SessionExpiredError):
            await dispatcher.open(session_id, "hi")
        assert fake_adapter.sent == []

    @pytest.mark.asyncio
    async def test_session_reported_expired_while_sweep_closes_it(
        self, dispatcher, lifecycle, store, fake_adapter, monkeypatch
    ):
        """Test that a dispatch racing the sweep's agent close sees session_expired."""
        session_id = await lifecycle.create()
        store.get(session_id).last_activity = utcnow() - timedelta(minutes=31)
        close_session = fake_adapter.close_session
        rejections = []

        async def close_and_dispatch(handle):
            try:
                await dispatcher.open(session_id, "hi")
            except (SessionExpiredError, SessionNotFoundError) as e:
                rejections.append(type(e))
            await close_session(handle)

        monkeypatch.setattr(fake_adapter, "close_session", close_and_dispatch)

        assert await store.sweep_expired() == [session_id]
        assert rejections == [SessionExpiredError]

    @pytest.mark.asyncio
    async def test_agent_side_expiry_is_detected(self, dispatcher, lifecycle, store, fake_adapter):
        """Test that a session the agent forgot is expired and removed."""
        session_id = await lifecycle.create()
        handle = store.get(session_id).agent_handle
        fake_adapter.inactive.add(handle)

        with pytest.raises(SessionExpiredError):
            await dispatcher.open(session_id, "hi")

        assert store.get(session_id) is None
        assert handle in fake_adapter.closed
        assert fake_adapter.sent == []

        # The id stays reported as expired afterwards
        with pytest.raises(SessionExpiredError):
            await dispatcher.open(session_id, "again")


class TestDispatchFailures:
    """Tests for failures after streaming started."""

    @pytest.mark.asyncio
    async def test_execution_error_after_partial_output(self, dispatcher, lifecycle, fake_adapter):
        """Test that partial chunks are kept and followed by one error."""
        fake_adapter.chunks = ["a", "b"]
        fake_adapter.error = AgentExecutionError(
            "Agent exited with code 1", partial_output=["a", "b"], exit_code=1
        )
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert [e.data for e in events[:2]] == ["a", "b"]
        assert events[2].type is StreamEventType.ERROR
        assert events[2].error_kind is ErrorKind.AGENT_EXECUTION
        assert events[2].data.startswith("Execution failed:")
        assert len(events) == 3
        # The session survives a failed message
        assert lifecycle.status(session_id) is True

    @pytest.mark.asyncio
    async def test_unavailable_during_stream(self, dispatcher, lifecycle, fake_adapter):
        """Test that the CLI vanishing mid-session becomes an agent_unavailable error."""
        fake_adapter.chunks = []
        fake_adapter.error = AgentUnavailableError("Claude Code CLI binary 'claude' not found")
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert len(events) == 1
        assert events[0].error_kind is ErrorKind.AGENT_UNAVAILABLE
        assert "not found" in events[0].data

    @pytest.mark.asyncio
    async def test_startup_error_during_stream(self, dispatcher, lifecycle, fake_adapter):
        """Test that a failed launch becomes an agent_startup error."""
        fake_adapter.chunks = []
        fake_adapter.error = AgentStartupError("Failed to launch claude")
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert events[-1].error_kind is ErrorKind.AGENT_STARTUP

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, dispatcher, lifecycle, fake_adapter):
        """Test that unknown exceptions do not leak details."""
        fake_adapter.error = RuntimeError("secret stack detail")
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert events[-1].error_kind is ErrorKind.INTERNAL
        assert events[-1].data == "An unexpected error occurred"

    @pytest.mark.asyncio
    async def test_idle_timeout(self, store, lifecycle, fake_adapter):
        """Test that a silent agent ends the stream with stream_timeout."""
        fake_adapter.chunks = ["partial"]
        fake_adapter.hang = True
        dispatcher = StreamingDispatcher(store, fake_adapter, idle_timeout_seconds=0.05)
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert events[0].data == "partial"
        assert events[-1].error_kind is ErrorKind.STREAM_TIMEOUT
        assert "No output" in events[-1].data
        assert fake_adapter.finished_streams == 1
        # A timed-out stream does not end the session
        assert lifecycle.status(session_id) is True
        assert store.get(session_id).in_flight == 0

    @pytest.mark.asyncio
    async def test_max_duration(self, store, lifecycle, fake_adapter):
        """Test that a chatty agent is cut off after the overall limit."""
        fake_adapter.chunks = ["x"] * 200
        fake_adapter.chunk_delay = 0.01
        dispatcher = StreamingDispatcher(
            store, fake_adapter, idle_timeout_seconds=5.0, max_duration_seconds=0.1
        )
        session_id = await lifecycle.create()

        events = await collect(dispatcher, session_id)

        assert events[-1].error_kind is ErrorKind.STREAM_TIMEOUT
        assert "maximum duration" in events[-1].data
        assert len(events) < 200


class TestDispatchCancellation:
    """Tests for consumers that stop reading."""

    @pytest.mark.asyncio
    async def test_aclose_stops_agent_and_releases(self, dispatcher, lifecycle, store, fake_adapter):
        """Test that closing the stream early ends the agent call."""
        fake_adapter.chunks = ["first"]
        fake_adapter.hang = True
        session_id = await lifecycle.create()

        stream = await dispatcher.open(session_id, "hi")
        event = await anext(stream)
        assert event.data == "first"
        await stream.aclose()

        assert fake_adapter.finished_streams == 1
        assert store.get(session_id).in_flight == 0
        assert stream.dispatch.state is DispatchState.FAILED

    @pytest.mark.asyncio
    async def test_unread_stream_releases_lease(self, dispatcher, lifecycle, store, fake_adapter):
        """Test that a stream closed before iteration never calls the agent."""
        session_id = await lifecycle.create()

        stream = await dispatcher.open(session_id, "hi")
        assert store.get(session_id).in_flight == 1
        await stream.aclose()
        await stream.aclose()

        assert store.get(session_id).in_flight == 0
        assert fake_adapter.sent == []

    @pytest.mark.asyncio
    async def test_close_during_stream_drops_session_after_last_event(
        self, dispatcher, lifecycle, store, fake_adapter
    ):
        """Test that a mid-stream close keeps the entry until the stream ends.

        The stream ends however the adapter ends it; this adapter keeps
        producing after close, so the stream completes.
        """
        fake_adapter.chunks = ["a", "b", "c"]
        fake_adapter.chunk_delay = 0.01
        session_id = await lifecycle.create()

        async with await dispatcher.open(session_id, "hi") as stream:
            first = await anext(stream)
            await lifecycle.close(session_id)
            assert store.get(session_id) is not None
            rest = [event async for event in stream]

        assert first.data == "a"
        assert [(e.type, e.data) for e in rest] == [
            (StreamEventType.MESSAGE, "b"),
            (StreamEventType.MESSAGE, "c"),
            (StreamEventType.COMPLETE, ""),
        ]
        assert store.get(session_id) is None
        assert lifecycle.status(session_id) is False

    @pytest.mark.asyncio
    async def test_session_usable_after_cancelled_stream(
        self, dispatcher, lifecycle, store, fake_adapter
    ):
        """Test that abandoning a stream leaves the session open for the next message."""
        fake_adapter.chunks = ["first"]
        fake_adapter.hang = True
        session_id = await lifecycle.create()

        stream = await dispatcher.open(session_id, "one")
        assert (await anext(stream)).data == "first"
        await stream.aclose()

        fake_adapter.hang = False
        fake_adapter.chunks = ["Hello", " world"]
        events = await collect(dispatcher, session_id, "two")

        assert [(e.type, e.data) for e in events] == [
            (StreamEventType.MESSAGE, "Hello"),
            (StreamEventType.MESSAGE, " world"),
            (StreamEventType.COMPLETE, ""),
        ]
        assert lifecycle.status(session_id) is True
        assert store.get(session_id).in_flight == 0
        assert [text for _, text in fake_adapter.sent] == ["one", "two"]


class TestDispatchStateMachine:
    """Tests for the per-dispatch state machine."""

    def test_happy_path_transitions(self):
        """Test PENDING -> VALIDATING -> STREAMING -> COMPLETED."""
        dispatch = Dispatch("s-1")
        for state in (DispatchState.VALIDATING, DispatchState.STREAMING, DispatchState.COMPLETED):
            dispatch.advance(state)
        assert dispatch.is_terminal

    def test_invalid_transition_raises(self):
        """Test that skipping validation is not allowed."""
        dispatch = Dispatch("s-1")
        with pytest.raises(InvalidTransitionError):
            dispatch.advance(DispatchState.STREAMING)

    def test_fail_after_terminal_is_noop(self):
        """Test that a finished dispatch keeps its outcome."""
        dispatch = Dispatch("s-1")
        dispatch.advance(DispatchState.VALIDATING)
        dispatch.advance(DispatchState.STREAMING)
        dispatch.advance(DispatchState.COMPLETED)
        dispatch.fail(ErrorKind.INTERNAL)
        assert dispatch.state is DispatchState.COMPLETED
        assert dispatch.error_kind is None
