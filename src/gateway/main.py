"""FastAPI application entry point for the agent chat gateway."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from gateway import __version__
from gateway.agent import AgentAdapter, ClaudeCliAdapter
from gateway.api.endpoint import chat_router, health_router
from gateway.config import (
    AgentConfig,
    ConfigLoadError,
    ConfigReloader,
    Settings,
    get_settings,
    load_agent_config,
)
from gateway.dispatch import StreamingDispatcher
from gateway.observability import configure_audit_logging
from gateway.session import SessionLifecycleManager, SessionStore, SessionSweeper

logger = logging.getLogger(__name__)


def _build_adapter(settings: Settings) -> ClaudeCliAdapter:
    try:
        agent_config = load_agent_config(settings.config_path)
    except ConfigLoadError as e:
        logger.error("Failed to load agent profile, using defaults: %s", e)
        agent_config = AgentConfig()

    logger.info(
        "Agent profile: binary=%s model=%s skip_permissions=%s",
        agent_config.binary,
        agent_config.model or "default",
        agent_config.skip_permissions,
    )
    return ClaudeCliAdapter(
        config=agent_config,
        api_key=settings.anthropic_api_key,
        default_timeout_minutes=settings.session_timeout_min,
    )


def create_app(
    settings: Settings | None = None,
    adapter: AgentAdapter | None = None,
) -> FastAPI:
    """Build the gateway application.

    All components are created in the lifespan handler and wired explicitly:
    one adapter instance is shared by the session store, the lifecycle manager
    and the dispatcher.

    Args:
        settings: Application settings; defaults to ``get_settings()``.
        adapter: Agent adapter to use instead of the Claude CLI adapter.

    Returns:
        The FastAPI application.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup and shutdown events."""
        logger.info("Starting agent-chat-gateway v%s", __version__)

        if settings.audit_enabled:
            configure_audit_logging(settings.audit_log_level)

        app.state.config_reloader = None
        agent_adapter = adapter
        if agent_adapter is None:
            agent_adapter = _build_adapter(settings)
            if settings.hot_reload_enabled:
                config_reloader = ConfigReloader(
                    adapter=agent_adapter,
                    config_path=settings.config_path,
                    debounce_seconds=settings.hot_reload_debounce_seconds,
                )
                config_reloader.start()
                app.state.config_reloader = config_reloader
            else:
                logger.info("Config hot-reload disabled")

        if not agent_adapter.is_configured:
            logger.warning("Claude Code CLI is not configured (ANTHROPIC_API_KEY missing)")
        elif not agent_adapter.is_available():
            logger.warning("Claude Code CLI binary not found")

        session_store = SessionStore(
            adapter=agent_adapter,
            timeout_minutes=settings.session_timeout_min,
            audit_enabled=settings.audit_enabled,
        )
        app.state.agent_adapter = agent_adapter
        app.state.session_store = session_store
        app.state.lifecycle = SessionLifecycleManager(
            store=session_store,
            adapter=agent_adapter,
            enabled=settings.chat_enabled,
            audit_enabled=settings.audit_enabled,
        )
        app.state.dispatcher = StreamingDispatcher(
            store=session_store,
            adapter=agent_adapter,
            idle_timeout_seconds=settings.stream_idle_timeout_seconds,
            max_duration_seconds=settings.stream_max_duration_seconds,
            channel_size=settings.stream_channel_size,
            audit_enabled=settings.audit_enabled,
        )
        logger.info(
            "Session store initialized (timeout=%d minutes)",
            settings.session_timeout_min,
        )

        sweeper = SessionSweeper(session_store, interval_seconds=settings.sweep_interval_seconds)
        sweeper.start()
        app.state.session_sweeper = sweeper

        yield

        await sweeper.stop()
        if app.state.config_reloader is not None:
            app.state.config_reloader.stop()
        await agent_adapter.aclose()
        session_store.clear()
        logger.info("Shutting down agent-chat-gateway")

    app = FastAPI(
        title="Agent Chat Gateway",
        description=(
            "Session-oriented gateway that streams answers from a command-line "
            "agent to clients over Server-Sent Events"
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(health_router)
    if settings.chat_enabled:
        app.include_router(chat_router)
    else:
        logger.info("Chat endpoints disabled")

    @app.get("/", response_class=JSONResponse)
    async def root() -> dict:
        """API metadata endpoint."""
        return {
            "name": "agent-chat-gateway",
            "version": __version__,
            "description": "Streaming chat gateway for command-line agents",
        }

    @app.get("/health/live", response_class=JSONResponse)
    async def liveness() -> dict:
        """Kubernetes liveness probe endpoint."""
        return {"status": "ok"}

    @app.get("/health/ready", response_class=JSONResponse)
    async def readiness() -> JSONResponse:
        """Kubernetes readiness probe endpoint."""
        if not settings.chat_enabled:
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "reason": "chat disabled"},
            )
        agent_adapter = getattr(app.state, "agent_adapter", None)
        if agent_adapter is None or not agent_adapter.is_available():
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "reason": "agent CLI unavailable"},
            )
        return JSONResponse(content={"status": "ok"})

    @app.post("/admin/reload-config", response_class=JSONResponse)
    async def reload_config() -> JSONResponse:
        """Reload the agent profile without waiting for file system events."""
        config_reloader = getattr(app.state, "config_reloader", None)
        if config_reloader is None:
            agent_adapter = getattr(app.state, "agent_adapter", None)
            if not isinstance(agent_adapter, ClaudeCliAdapter):
                return JSONResponse(
                    status_code=409,
                    content={
                        "status": "error",
                        "message": "The active agent adapter has no profile to reload",
                    },
                )
            config_reloader = ConfigReloader(
                adapter=agent_adapter,
                config_path=settings.config_path,
            )

        if config_reloader.reload():
            return JSONResponse(
                content={
                    "status": "ok",
                    "message": "Agent profile reloaded successfully",
                    "reload_count": config_reloader.reload_count,
                }
            )
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": "Failed to reload agent profile. Check logs for details.",
            },
        )

    return app


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.value),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app(settings)


def run() -> None:
    """Run the gateway with uvicorn."""
    import uvicorn

    uvicorn.run(
        "gateway.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    run()
