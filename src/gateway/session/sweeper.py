"""Periodic expiry sweep for the session store."""

import asyncio
import contextlib
import logging

from gateway.session.store import SessionStore

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Runs ``SessionStore.sweep_expired`` on a fixed interval.

    Start it once the event loop is running (application startup) and stop it
    at shutdown; the sweep never runs on the request path.
    """

    def __init__(self, store: SessionStore, interval_seconds: float = 60.0) -> None:
        self._store = store
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._sweep_count = 0

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self._task is not None and not self._task.done():
            logger.warning("Session sweeper already started")
            return
        self._task = asyncio.create_task(self._run(), name="session-sweeper")
        logger.info("Session sweeper started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._store.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")
            self._sweep_count += 1

    @property
    def is_running(self) -> bool:
        """Check if the sweep loop is scheduled."""
        return self._task is not None and not self._task.done()

    @property
    def sweep_count(self) -> int:
        """Number of sweeps run so far."""
        return self._sweep_count
