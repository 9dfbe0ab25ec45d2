"""Tests for the event channel and stream events."""

import asyncio

import pytest

from gateway.dispatch import ChannelClosedError, ErrorKind, EventChannel, StreamEvent


class TestEventChannel:
    """Tests for EventChannel."""

    @pytest.mark.asyncio
    async def test_delivers_in_send_order(self):
        """Test FIFO delivery followed by None after close."""
        channel = EventChannel()
        for chunk in ("a", "b", "c"):
            await channel.send(StreamEvent.message(chunk))
        channel.close()

        received = []
        while (event := await channel.receive()) is not None:
            received.append(event.data)

        assert received == ["a", "b", "c"]
        assert await channel.receive() is None

    @pytest.mark.asyncio
    async def test_send_blocks_when_full(self):
        """Test that a full channel holds the producer back."""
        channel = EventChannel(maxsize=1)
        await channel.send(StreamEvent.message("a"))

        pending = asyncio.create_task(channel.send(StreamEvent.message("b")))
        await asyncio.sleep(0.01)
        assert not pending.done()

        assert (await channel.receive()).data == "a"
        await asyncio.wait_for(pending, timeout=1)
        assert (await channel.receive()).data == "b"

    @pytest.mark.asyncio
    async def test_close_does_not_block_when_full(self):
        """Test that close works even with no free slot."""
        channel = EventChannel(maxsize=1)
        await channel.send(StreamEvent.message("a"))
        channel.close()
        channel.close()

        assert channel.closed
        assert (await channel.receive()).data == "a"
        assert await channel.receive() is None

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self):
        """Test that a closed channel refuses events."""
        channel = EventChannel()
        channel.close()
        with pytest.raises(ChannelClosedError):
            await channel.send(StreamEvent.message("late"))


class TestStreamEvent:
    """Tests for StreamEvent rendering."""

    def test_message_to_sse(self):
        """Test that chunks are passed through verbatim."""
        event = StreamEvent.message("line one\nline two")
        assert event.to_sse() == {"event": "message", "data": "line one\nline two"}
        assert not event.is_terminal

    def test_error_to_sse(self):
        """Test that errors carry their reason as data."""
        event = StreamEvent.error(ErrorKind.STREAM_TIMEOUT, "No output from agent for 300s")
        assert event.to_sse() == {"event": "error", "data": "No output from agent for 300s"}
        assert event.is_terminal

    def test_complete_has_no_wire_form(self):
        """Test that complete only ends the stream."""
        event = StreamEvent.complete()
        assert event.to_sse() is None
        assert event.is_terminal
