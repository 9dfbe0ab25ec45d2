"""Agent CLI profile loader and Pydantic models."""

import logging
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, field_validator

from gateway.config.settings import get_settings

logger = logging.getLogger(__name__)


class AgentConfig(BaseModel):
    """How to launch and talk to the command-line agent."""

    binary: Annotated[str, Field(min_length=1, max_length=500)] = "claude"
    model: Annotated[str | None, Field(max_length=100)] = None
    output_format: str = "text"
    skip_permissions: bool = True
    require_api_key: bool = True
    args: Annotated[
        list[Annotated[str, Field(max_length=500)]],
        Field(default_factory=list, max_length=50),
    ]
    env: dict[str, str] = Field(default_factory=dict)
    working_directory: str | None = None
    execution_timeout_seconds: float = Field(default=240.0, gt=0)
    version_timeout_seconds: float = Field(default=10.0, gt=0)
    terminate_grace_seconds: float = Field(default=3.0, ge=0)

    @field_validator("output_format")
    @classmethod
    def output_format_streams_lines(cls, v: str) -> str:
        """Only line-oriented output formats can be streamed chunk by chunk."""
        if v not in ("text", "stream-json"):
            raise ValueError(f"output_format must be 'text' or 'stream-json', got '{v}'")
        return v


class ConfigLoadError(Exception):
    """Raised when configuration loading fails."""

    pass


def _validate_config_path(path: Path, allowed_dirs: list[str]) -> Path:
    """Validate and canonicalize config path to prevent path traversal.

    Args:
        path: The path to validate.
        allowed_dirs: List of allowed directory prefixes.

    Returns:
        Canonicalized (resolved) path.

    Raises:
        ConfigLoadError: If path is outside allowed directories.
    """
    resolved = path.resolve()

    for allowed_dir in allowed_dirs:
        allowed_resolved = Path(allowed_dir).resolve()
        try:
            resolved.relative_to(allowed_resolved)
            return resolved
        except ValueError:
            continue

    raise ConfigLoadError(
        f"Configuration path '{resolved}' is outside allowed directories: {allowed_dirs}"
    )


# /tmp is allowed for tests; deployments mount the profile under /config
ALLOWED_CONFIG_DIRS = ["/config", "/app/config", "/tmp", "config", "."]


def load_agent_config(
    config_path: str | Path | None = None,
    missing_ok: bool = True,
) -> AgentConfig:
    """Load and validate the agent profile from a YAML file.

    A missing file yields the built-in defaults unless ``missing_ok`` is False,
    so the gateway can run with nothing but ``ANTHROPIC_API_KEY`` set.

    Args:
        config_path: Path to the YAML file. If None, uses settings.
        missing_ok: Return defaults instead of failing when the file is absent.

    Returns:
        Validated AgentConfig instance.

    Raises:
        ConfigLoadError: If the file cannot be read or fails validation.
    """
    if config_path is None:
        config_path = get_settings().config_path

    path = _validate_config_path(Path(config_path), ALLOWED_CONFIG_DIRS)

    if not path.exists():
        if missing_ok:
            logger.info("Agent profile not found at %s, using defaults", path)
            return AgentConfig()
        raise ConfigLoadError(f"Configuration file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigLoadError(f"Failed to read {path}: {e}") from e

    if raw_config is None:
        return AgentConfig()

    # Profiles may be written flat or nested under an ``agent:`` key
    if isinstance(raw_config, dict) and isinstance(raw_config.get("agent"), dict):
        raw_config = raw_config["agent"]

    try:
        return AgentConfig.model_validate(raw_config)
    except ValueError as e:
        raise ConfigLoadError(f"Configuration validation failed: {e}") from e
