"""File watcher that reports edits to the agent profile.

Watches the parent directory so that atomic replacements (editor swap files,
Kubernetes ConfigMap symlink flips) are seen as well as in-place writes.
"""

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class _ProfileEventHandler(FileSystemEventHandler):
    """Filters filesystem events down to the profile file and debounces them."""

    def __init__(
        self,
        profile_path: Path,
        on_change: Callable[[], object],
        debounce_seconds: float,
    ) -> None:
        super().__init__()
        self._profile_path = profile_path
        self._on_change = on_change
        self._debounce_seconds = debounce_seconds
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._last_fired = 0.0

    def _matches(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path, getattr(event, "dest_path", "") or ""]
        for raw in paths:
            if not raw:
                continue
            candidate = Path(raw)
            if candidate.name == self._profile_path.name:
                return True
            # ConfigMap volumes swap a ..data symlink instead of the file
            if candidate.name.startswith("..") or "..data" in candidate.parts:
                return self._profile_path.exists()
        return False

    def _schedule(self) -> None:
        with self._lock:
            elapsed = time.monotonic() - self._last_fired
            if elapsed >= self._debounce_seconds:
                self._fire_locked()
                return
            if self._timer is None:
                self._timer = threading.Timer(
                    self._debounce_seconds - elapsed, self._fire_delayed
                )
                self._timer.daemon = True
                self._timer.start()

    def _fire_delayed(self) -> None:
        with self._lock:
            self._timer = None
            self._fire_locked()

    def _fire_locked(self) -> None:
        self._last_fired = time.monotonic()
        logger.info("Agent profile change detected: %s", self._profile_path)
        try:
            self._on_change()
        except Exception:
            logger.exception("Error in agent profile change callback")

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            self._schedule()

    def on_created(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            self._schedule()

    def on_moved(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            self._schedule()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class ConfigWatcher:
    """Runs a watchdog observer on the directory holding the agent profile."""

    def __init__(
        self,
        config_path: str | Path,
        on_change: Callable[[], object],
        debounce_seconds: float = 1.0,
    ) -> None:
        """Initialize the watcher.

        Args:
            config_path: Path to the profile file to watch.
            on_change: Callback invoked (from the observer thread) on change.
            debounce_seconds: Minimum time between callback invocations.
        """
        self._config_path = Path(config_path).resolve()
        self._on_change = on_change
        self._debounce_seconds = debounce_seconds
        self._observer: Observer | None = None
        self._handler: _ProfileEventHandler | None = None

    def start(self) -> None:
        """Start the observer; a missing directory disables watching."""
        if self._observer is not None:
            logger.warning("Config watcher already started")
            return

        watch_dir = self._config_path.parent
        if not watch_dir.exists():
            logger.warning("Config directory does not exist, watcher not started: %s", watch_dir)
            return

        self._handler = _ProfileEventHandler(
            self._config_path, self._on_change, self._debounce_seconds
        )
        self._observer = Observer()
        self._observer.schedule(self._handler, str(watch_dir), recursive=True)
        self._observer.start()
        logger.info(
            "Config watcher started, monitoring: %s (debounce: %.1fs)",
            self._config_path,
            self._debounce_seconds,
        )

    def stop(self) -> None:
        """Stop the observer and drop any pending debounced callback."""
        if self._handler is not None:
            self._handler.cancel()
            self._handler = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
            logger.info("Config watcher stopped")

    @property
    def is_running(self) -> bool:
        """Check if the observer thread is alive."""
        return self._observer is not None and self._observer.is_alive()
