"""Producer/consumer hand-off between a dispatch and the transport."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from gateway.dispatch.models import Dispatch, StreamEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


class ChannelClosedError(Exception):
    """Raised when sending on a closed channel."""


class EventChannel:
    """Bounded, ordered queue of stream events.

    ``send`` waits while ``maxsize`` events are unread, so a slow client slows
    the agent read instead of buffering without bound. ``close`` never blocks.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._slots = asyncio.Semaphore(maxsize)
        self._closed = False

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise ChannelClosedError("Cannot send on a closed channel")
        await self._slots.acquire()
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def receive(self) -> StreamEvent | None:
        """Next event in send order, or None once the channel is drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any later receive call
            self._queue.put_nowait(_CLOSED)
            return None
        self._slots.release()
        return item

    @property
    def closed(self) -> bool:
        return self._closed


class DispatchStream:
    """Consumer side of a dispatch.

    The producer coroutine is scheduled on first iteration. ``aclose`` cancels
    it, which closes the agent's output and releases the session lease; it is
    safe to call more than once and on a stream that never started.
    """

    def __init__(
        self,
        dispatch: Dispatch,
        channel: EventChannel,
        producer: Coroutine[Any, Any, None],
        on_abandon: Callable[[], None],
    ) -> None:
        self._dispatch = dispatch
        self._channel = channel
        self._producer = producer
        self._on_abandon = on_abandon
        self._task: asyncio.Task[None] | None = None
        self._finished = False
        self._abandoned = False

    @property
    def dispatch(self) -> Dispatch:
        return self._dispatch

    def _ensure_started(self) -> None:
        if self._task is None and not self._finished:
            self._task = asyncio.create_task(
                self._producer, name=f"dispatch-{self._dispatch.dispatch_id}"
            )

    def __aiter__(self) -> "DispatchStream":
        return self

    async def __anext__(self) -> StreamEvent:
        self._ensure_started()
        if self._finished:
            raise StopAsyncIteration
        event = await self._channel.receive()
        if event is None:
            self._finished = True
            raise StopAsyncIteration
        return event

    async def aclose(self) -> None:
        self._finished = True

        if self._task is None:
            # Never iterated: the producer holds nothing yet except the lease
            if not self._abandoned:
                self._abandoned = True
                self._producer.close()
                self._dispatch.fail()
                self._on_abandon()
            return

        if self._task.done():
            return

        logger.debug("Cancelling dispatch producer (dispatch_id=%s)", self._dispatch.dispatch_id)
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    async def __aenter__(self) -> "DispatchStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
