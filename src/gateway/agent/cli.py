"""Agent adapter that drives the ``claude`` command-line tool.

Every message runs one ``claude --print`` process with the prompt on stdin.
The adapter's session handle doubles as the CLI's conversation id: the first
message creates it with ``--session-id`` and later ones continue it with
``--resume``, so conversation state lives with the CLI while the adapter only
tracks liveness and running processes.
"""

import asyncio
import contextlib
import logging
import os
import shutil
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from gateway.agent.base import SessionOptions
from gateway.agent.errors import (
    AgentExecutionError,
    AgentStartupError,
    AgentUnavailableError,
)
from gateway.config.agent import AgentConfig

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_TIMEOUT_MINUTES = 30

# Upper bound for a single line of agent output (1 MB)
MAX_LINE_BYTES = 1_048_576


@dataclass
class _AgentSession:
    """Agent-side bookkeeping for one conversation."""

    handle: str
    model: str | None
    inactivity_timeout: timedelta
    started: bool = False
    closed: bool = False
    last_used: datetime = field(default_factory=lambda: datetime.now(UTC))
    processes: set[asyncio.subprocess.Process] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def is_idle(self, now: datetime) -> bool:
        return not self.processes and now - self.last_used > self.inactivity_timeout


class ClaudeCliAdapter:
    """Runs the Claude Code CLI as a subprocess per message.

    The adapter is constructed once at startup and passed to the lifecycle
    manager, the dispatcher and the session store. It is not thread-safe and
    must be used from the event loop that owns it.
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        api_key: str | None = None,
        default_timeout_minutes: int = DEFAULT_INACTIVITY_TIMEOUT_MINUTES,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Agent CLI profile. Defaults to ``AgentConfig()``.
            api_key: Anthropic API key passed to the CLI environment.
            default_timeout_minutes: Agent-side inactivity limit for sessions
                created without an override.
        """
        self._config = config or AgentConfig()
        self._api_key = api_key
        self._default_timeout_minutes = default_timeout_minutes
        self._sessions: dict[str, _AgentSession] = {}
        self._version: str | None = None

    @property
    def config(self) -> AgentConfig:
        """The profile used for the next launched process."""
        return self._config

    def update_config(self, config: AgentConfig) -> None:
        """Swap the agent profile; running processes are left alone."""
        self._config = config
        self._version = None

    @property
    def is_configured(self) -> bool:
        """Whether credentials are present (or not required by the profile)."""
        return bool(self._api_key) or not self._config.require_api_key

    def _resolve_binary(self) -> str | None:
        return shutil.which(self._config.binary)

    def is_available(self) -> bool:
        """Check that the CLI is configured and on PATH. Launches nothing."""
        return self.is_configured and self._resolve_binary() is not None

    def _require_binary(self) -> str:
        if not self.is_configured:
            raise AgentUnavailableError(
                "Claude Code CLI is not configured. Please ensure ANTHROPIC_API_KEY "
                "environment variable is set."
            )
        binary = self._resolve_binary()
        if binary is None:
            raise AgentUnavailableError(
                f"Claude Code CLI binary '{self._config.binary}' not found"
            )
        return binary

    def _build_env(self, config: AgentConfig) -> dict[str, str]:
        env = dict(os.environ)
        env.update(config.env)
        if self._api_key:
            env["ANTHROPIC_API_KEY"] = self._api_key
        return env

    def _build_args(self, binary: str, session: _AgentSession, config: AgentConfig) -> list[str]:
        args = [binary, "--print", "--output-format", config.output_format]
        if config.output_format == "stream-json":
            args.append("--verbose")
        if session.started:
            args.extend(["--resume", session.handle])
        else:
            args.extend(["--session-id", session.handle])
        if session.model:
            args.extend(["--model", session.model])
        if config.skip_permissions:
            args.append("--dangerously-skip-permissions")
        args.extend(config.args)
        return args

    async def version(self) -> str:
        """Return the CLI version string, cached until the profile changes.

        Raises:
            AgentUnavailableError: If the CLI is not configured or not found.
            AgentStartupError: If ``--version`` cannot be launched.
            AgentExecutionError: If it fails or does not answer in time.
        """
        if self._version is not None:
            return self._version

        binary = self._require_binary()
        config = self._config
        try:
            proc = await asyncio.create_subprocess_exec(
                binary,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(config),
            )
        except OSError as e:
            raise AgentStartupError(f"Failed to launch {binary}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=config.version_timeout_seconds
            )
        except TimeoutError as e:
            await self._terminate(proc)
            raise AgentExecutionError("Timed out reading agent version") from e

        if proc.returncode != 0:
            raise AgentExecutionError(
                f"'{binary} --version' exited with code {proc.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()[:200]}",
                exit_code=proc.returncode,
            )

        self._version = stdout.decode("utf-8", errors="replace").strip() or "unknown"
        return self._version

    async def create_session(self, options: SessionOptions) -> str:
        """Register a new conversation and return its handle.

        The CLI process is only launched on the first message.

        Raises:
            AgentUnavailableError: If the CLI is not configured or not found.
            AgentStartupError: If the configured working directory is missing.
        """
        self._require_binary()

        workdir = self._config.working_directory
        if workdir and not Path(workdir).is_dir():
            raise AgentStartupError(f"Agent working directory does not exist: {workdir}")

        minutes = options.inactivity_timeout_minutes or self._default_timeout_minutes
        handle = str(uuid.uuid4())
        self._sessions[handle] = _AgentSession(
            handle=handle,
            model=options.model or self._config.model,
            inactivity_timeout=timedelta(minutes=minutes),
        )
        logger.info(
            "Created agent session (handle=%s, model=%s, timeout=%d min)",
            handle,
            options.model or self._config.model or "default",
            minutes,
        )
        return handle

    async def send_message(self, handle: str, text: str) -> AsyncGenerator[str, None]:
        """Send one prompt and yield the agent's output line by line.

        Closing the generator early terminates the process.

        Yields:
            str: One line of output, without its trailing newline.

        Raises:
            AgentUnavailableError: If the CLI disappeared since creation.
            AgentStartupError: If the process cannot be launched.
            AgentExecutionError: If the handle is not active, the process exits
                non-zero or it exceeds the execution timeout.
        """
        session = self._sessions.get(handle)
        if session is None or session.closed:
            raise AgentExecutionError(f"Agent session {handle} is not active", handle=handle)

        # One CLI process per conversation at a time
        async with session.lock:
            if session.closed:
                raise AgentExecutionError(f"Agent session {handle} is not active", handle=handle)
            async with contextlib.aclosing(self._run(session, text)) as lines:
                async for line in lines:
                    yield line

    async def _run(self, session: _AgentSession, text: str) -> AsyncGenerator[str, None]:
        handle = session.handle
        binary = self._require_binary()
        config = self._config
        args = self._build_args(binary, session, config)

        logger.debug("Launching agent process (handle=%s, resume=%s)", handle, session.started)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(config),
                cwd=config.working_directory,
                start_new_session=True,
                limit=MAX_LINE_BYTES,
            )
        except OSError as e:
            raise AgentStartupError(f"Failed to launch {binary}: {e}", handle=handle) from e

        session.processes.add(proc)
        session.last_used = datetime.now(UTC)
        stderr_task = asyncio.create_task(proc.stderr.read())
        emitted: list[str] = []
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.execution_timeout_seconds

        try:
            try:
                proc.stdin.write(text.encode("utf-8"))
                await proc.stdin.drain()
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                # The exit code below reports why the process went away
                logger.debug("Agent process closed stdin early (handle=%s)", handle)

            while True:
                async with asyncio.timeout_at(deadline):
                    try:
                        raw = await proc.stdout.readline()
                    except ValueError as e:
                        raise AgentExecutionError(
                            f"Agent output line exceeded {MAX_LINE_BYTES} bytes",
                            handle=handle,
                            partial_output=emitted,
                        ) from e
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                emitted.append(line)
                # Output means the CLI has created the conversation
                session.started = True
                session.last_used = datetime.now(UTC)
                yield line

            async with asyncio.timeout_at(deadline):
                returncode = await proc.wait()
                stderr = await stderr_task

            if returncode != 0:
                detail = stderr.decode("utf-8", errors="replace").strip()[:500]
                raise AgentExecutionError(
                    f"Agent exited with code {returncode}: {detail or 'no error output'}",
                    handle=handle,
                    partial_output=emitted,
                    exit_code=returncode,
                )
            session.started = True
            session.last_used = datetime.now(UTC)
        except TimeoutError as e:
            raise AgentExecutionError(
                f"Agent did not finish within {config.execution_timeout_seconds:.0f}s",
                handle=handle,
                partial_output=emitted,
            ) from e
        finally:
            session.processes.discard(proc)
            if proc.returncode is None:
                await self._terminate(proc)
            if not stderr_task.done():
                stderr_task.cancel()

    async def close_session(self, handle: str) -> None:
        """Forget a handle and stop its running processes. Idempotent."""
        session = self._sessions.pop(handle, None)
        if session is None:
            return
        session.closed = True
        for proc in list(session.processes):
            if proc.returncode is None:
                await self._terminate(proc)
        logger.info("Closed agent session (handle=%s)", handle)

    def is_session_active(self, handle: str) -> bool:
        """Liveness probe; expires idle handles as a side effect."""
        session = self._sessions.get(handle)
        if session is None or session.closed:
            return False
        if session.is_idle(datetime.now(UTC)):
            logger.info("Agent session idle beyond its timeout (handle=%s)", handle)
            session.closed = True
            self._sessions.pop(handle, None)
            return False
        return True

    async def aclose(self) -> None:
        """Close every session, terminating running processes."""
        for handle in list(self._sessions):
            await self.close_session(handle)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, wait for the grace period, then SIGKILL."""
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._config.terminate_grace_seconds)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
