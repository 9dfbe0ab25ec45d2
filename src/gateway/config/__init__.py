"""Configuration module for the gateway."""

from gateway.config.agent import AgentConfig, ConfigLoadError, load_agent_config
from gateway.config.reloader import ConfigReloader
from gateway.config.settings import LogLevel, Settings, get_settings
from gateway.config.watcher import ConfigWatcher

__all__ = [
    "AgentConfig",
    "ConfigLoadError",
    "ConfigReloader",
    "ConfigWatcher",
    "LogLevel",
    "Settings",
    "get_settings",
    "load_agent_config",
]
