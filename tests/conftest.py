"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from gateway.agent import AgentUnavailableError, SessionOptions
from gateway.config.settings import Settings, get_settings
from gateway.dispatch import StreamingDispatcher
from gateway.session import SessionLifecycleManager, SessionStore


class FakeAgentAdapter:
    """Scripted in-memory agent.

    Every message yields ``chunks`` in order, optionally pausing
    ``chunk_delay`` seconds before each, then raises ``error`` if set or hangs
    forever if ``hang`` is set.
    """

    def __init__(self, chunks: list[str] | None = None) -> None:
        self.chunks = list(chunks if chunks is not None else ["Hello", " world"])
        self.chunk_delay = 0.0
        self.error: Exception | None = None
        self.hang = False
        self.configured = True
        self.available = True
        self.version_string = "1.0.42 (Claude Code)"
        self.version_error: Exception | None = None
        self.create_error: Exception | None = None
        self.close_error: Exception | None = None
        self.sessions: dict[str, SessionOptions] = {}
        self.inactive: set[str] = set()
        self.sent: list[tuple[str, str]] = []
        self.closed: list[str] = []
        self.finished_streams = 0
        self.aclosed = False
        self._counter = 0

    @property
    def is_configured(self) -> bool:
        return self.configured

    def is_available(self) -> bool:
        return self.configured and self.available

    async def version(self) -> str:
        if self.version_error is not None:
            raise self.version_error
        return self.version_string

    async def create_session(self, options: SessionOptions) -> str:
        if not self.is_available():
            raise AgentUnavailableError("Claude Code CLI is not available")
        if self.create_error is not None:
            raise self.create_error
        self._counter += 1
        handle = f"handle-{self._counter}"
        self.sessions[handle] = options
        return handle

    async def send_message(self, handle: str, text: str) -> AsyncGenerator[str, None]:
        self.sent.append((handle, text))
        try:
            for chunk in self.chunks:
                if self.chunk_delay:
                    await asyncio.sleep(self.chunk_delay)
                yield chunk
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.finished_streams += 1

    async def close_session(self, handle: str) -> None:
        self.closed.append(handle)
        self.sessions.pop(handle, None)
        if self.close_error is not None:
            raise self.close_error

    def is_session_active(self, handle: str) -> bool:
        return handle in self.sessions and handle not in self.inactive

    async def aclose(self) -> None:
        self.aclosed = True
        for handle in list(self.sessions):
            await self.close_session(handle)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Make every test read settings fresh."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette 2.x keeps its exit event on a class attribute bound to one loop."""
    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None:
        app_status.should_exit_event = None
    yield
    if app_status is not None:
        app_status.should_exit_event = None


@pytest.fixture
def fake_adapter():
    """A scripted agent adapter."""
    return FakeAgentAdapter()


@pytest.fixture
def store(fake_adapter):
    """Session store wired to the fake adapter."""
    return SessionStore(adapter=fake_adapter, timeout_minutes=30)


@pytest.fixture
def lifecycle(store, fake_adapter):
    """Lifecycle manager wired to the fake adapter."""
    return SessionLifecycleManager(store=store, adapter=fake_adapter)


@pytest.fixture
def dispatcher(store, fake_adapter):
    """Dispatcher with short timeouts."""
    return StreamingDispatcher(
        store=store,
        adapter=fake_adapter,
        idle_timeout_seconds=5.0,
        max_duration_seconds=10.0,
    )


@pytest.fixture
def test_settings():
    """Settings for an app that never touches the file system or a real CLI."""
    return Settings(
        anthropic_api_key="test-key",
        config_path="/tmp/agent-chat-gateway-missing.yaml",
        audit_enabled=False,
        hot_reload_enabled=False,
        stream_idle_timeout_seconds=5.0,
        stream_max_duration_seconds=10.0,
    )


@pytest.fixture
def app(test_settings, fake_adapter):
    """Gateway app using the fake adapter."""
    from gateway.main import create_app

    return create_app(settings=test_settings, adapter=fake_adapter)


@pytest.fixture
async def client(app):
    """Async test client with the app lifespan running."""
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
