"""Hot-reload orchestration for the agent CLI profile."""

import json
import logging
import threading
from typing import TYPE_CHECKING

from gateway.config.agent import ConfigLoadError, load_agent_config
from gateway.config.watcher import ConfigWatcher

if TYPE_CHECKING:
    from gateway.agent.cli import ClaudeCliAdapter

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("gateway.audit")


class ConfigReloader:
    """Reloads the agent profile and hands it to the adapter.

    Running invocations keep the profile they started with; the new profile
    applies to the next process the adapter launches. Concurrent reloads are
    skipped rather than queued.
    """

    def __init__(
        self,
        adapter: "ClaudeCliAdapter",
        config_path: str,
        debounce_seconds: float = 1.0,
    ) -> None:
        self._adapter = adapter
        self._config_path = config_path
        self._debounce_seconds = debounce_seconds
        self._watcher: ConfigWatcher | None = None
        self._reload_lock = threading.Lock()
        self._reload_count = 0

    def start(self) -> None:
        """Start watching the profile file."""
        if self._watcher is not None:
            logger.warning("Config reloader already started")
            return
        self._watcher = ConfigWatcher(
            config_path=self._config_path,
            on_change=self.reload,
            debounce_seconds=self._debounce_seconds,
        )
        self._watcher.start()
        logger.info("Config hot-reload enabled")

    def stop(self) -> None:
        """Stop watching the profile file."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
            logger.info("Config hot-reload disabled")

    def reload(self) -> bool:
        """Load the profile again and apply it.

        Returns:
            True if the new profile was applied, False otherwise.
        """
        if not self._reload_lock.acquire(blocking=False):
            logger.info("Config reload already in progress, skipping")
            return False

        try:
            try:
                new_config = load_agent_config(self._config_path)
            except ConfigLoadError as e:
                logger.error("Failed to load new agent profile: %s", e)
                audit_logger.error(
                    json.dumps({"event": "config_reload_failed", "error": str(e)[:200]})
                )
                return False

            self._adapter.update_config(new_config)
            self._reload_count += 1
            logger.info(
                "Agent profile reloaded (reload #%d): binary=%s model=%s",
                self._reload_count,
                new_config.binary,
                new_config.model or "default",
            )
            audit_logger.info(
                json.dumps(
                    {"event": "config_reload_success", "reload_count": self._reload_count}
                )
            )
            return True
        finally:
            self._reload_lock.release()

    @property
    def reload_count(self) -> int:
        """Get the number of successful reloads."""
        return self._reload_count

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._watcher is not None and self._watcher.is_running
