"""Chat API routers.

Sessions are created, messaged, probed and closed under ``/api/chat``.
Message responses are Server-Sent Events: ``message`` events carry raw agent
output, an ``error`` event ends a failed stream, and a successful stream simply
ends.
"""

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse
from starlette.background import BackgroundTask

from gateway.agent import AgentAdapter, AgentError, AgentStartupError, AgentUnavailableError
from gateway.agent.base import SessionOptions
from gateway.api.models import (
    CloseSessionResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    HealthResponse,
    PromptRequest,
    SendMessageRequest,
    SessionStatusResponse,
)
from gateway.config.settings import Settings, get_settings
from gateway.dispatch import DispatchRejectedError, StreamEvent, StreamingDispatcher
from gateway.dispatch.models import ErrorKind
from gateway.session import SessionLifecycleManager

logger = logging.getLogger(__name__)

chat_router = APIRouter(prefix="/api/chat", tags=["Chat Sessions"])
health_router = APIRouter(prefix="/api/chat", tags=["Chat Health"])

NOT_CONFIGURED_MESSAGE = (
    "Claude Code CLI is not configured. Please ensure ANTHROPIC_API_KEY "
    "environment variable is set."
)


def get_app_settings(request: Request) -> Settings:
    """Get the settings the app was built with."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_agent_adapter(request: Request) -> AgentAdapter | None:
    """Get the agent adapter from app state, or None if not wired."""
    return getattr(request.app.state, "agent_adapter", None)


def get_lifecycle_manager(request: Request) -> SessionLifecycleManager:
    """Get the lifecycle manager from app state.

    Raises:
        HTTPException: If the gateway has not finished starting.
    """
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is None:
        raise HTTPException(status_code=503, detail="Session manager not initialized")
    return lifecycle


def get_dispatcher(request: Request) -> StreamingDispatcher:
    """Get the streaming dispatcher from app state.

    Raises:
        HTTPException: If the gateway has not finished starting.
    """
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Dispatcher not initialized")
    return dispatcher


def _sse_response(
    events: AsyncGenerator[dict[str, str], None],
    settings: Settings,
    request_id: str,
    background: BackgroundTask | None = None,
) -> EventSourceResponse:
    return EventSourceResponse(
        events,
        background=background,
        media_type="text/event-stream",
        headers={"X-Request-ID": request_id, "Cache-Control": "no-cache"},
        ping=settings.stream_ping_seconds,
        sep="\n",
    )


@chat_router.post("/sessions", response_model=CreateSessionResponse)
async def create_session(
    request: Request,
    body: CreateSessionRequest | None = None,
    x_request_id: Annotated[str | None, Header(alias="X-Request-ID")] = None,
) -> CreateSessionResponse | JSONResponse:
    """Create a conversation session.

    Returns 503 with ``success: false`` when the agent is unavailable.
    """
    request_id = x_request_id or str(uuid.uuid4())
    lifecycle = get_lifecycle_manager(request)
    body = body or CreateSessionRequest()

    options = SessionOptions(
        model=body.model,
        inactivity_timeout_minutes=body.inactivity_timeout_minutes or None,
    )
    try:
        session_id = await lifecycle.create(options, request_id=request_id)
    except AgentUnavailableError as e:
        return JSONResponse(
            status_code=503,
            content=CreateSessionResponse(success=False, message=str(e)).model_dump(by_alias=True),
        )
    except AgentStartupError as e:
        logger.error("Failed to create session (request_id=%s): %s", request_id, e)
        return JSONResponse(
            status_code=500,
            content=CreateSessionResponse(success=False, message=str(e)).model_dump(by_alias=True),
        )

    return CreateSessionResponse(
        session_id=session_id,
        success=True,
        message="Session created successfully",
    )


@chat_router.post("/sessions/{session_id}/messages", response_model=None)
async def send_message(
    request: Request,
    session_id: str,
    body: SendMessageRequest,
    x_request_id: Annotated[str | None, Header(alias="X-Request-ID")] = None,
) -> EventSourceResponse | JSONResponse:
    """Send a message to a session and stream the agent's answer.

    Unknown or expired sessions get a 404 before any stream is opened.
    """
    request_id = x_request_id or str(uuid.uuid4())
    dispatcher = get_dispatcher(request)
    settings = get_app_settings(request)

    logger.info(
        "Received chat message (session_id=%s, request_id=%s, length=%d)",
        session_id,
        request_id,
        len(body.message),
    )

    try:
        stream = await dispatcher.open(session_id, body.message, request_id=request_id)
    except DispatchRejectedError as e:
        return JSONResponse(
            status_code=404,
            content={"detail": str(e), "error": e.kind.value},
        )

    async def event_generator() -> AsyncGenerator[dict[str, str], None]:
        async with stream:
            async for event in stream:
                sse = event.to_sse()
                if sse is None:
                    break
                yield sse

    # The background task releases the session lease if the response ends
    # before the generator ever runs
    return _sse_response(
        event_generator(), settings, request_id, background=BackgroundTask(stream.aclose)
    )


@chat_router.delete("/sessions/{session_id}", response_model=CloseSessionResponse)
async def close_session(
    request: Request,
    session_id: str,
    x_request_id: Annotated[str | None, Header(alias="X-Request-ID")] = None,
) -> CloseSessionResponse:
    """Close a session. Always succeeds, even for unknown ids."""
    request_id = x_request_id or str(uuid.uuid4())
    lifecycle = get_lifecycle_manager(request)
    closed = await lifecycle.close(session_id, request_id=request_id)
    return CloseSessionResponse(
        success=True,
        message="Session closed successfully" if closed else "Session not found or already closed",
    )


@chat_router.get("/sessions/{session_id}/status", response_model=SessionStatusResponse)
async def session_status(request: Request, session_id: str) -> SessionStatusResponse:
    """Report whether a session can still take messages."""
    lifecycle = get_lifecycle_manager(request)
    return SessionStatusResponse(session_id=session_id, active=lifecycle.status(session_id))


@chat_router.post("/stream", response_model=None)
async def stream_prompt(
    request: Request,
    body: PromptRequest,
    x_request_id: Annotated[str | None, Header(alias="X-Request-ID")] = None,
) -> EventSourceResponse:
    """One-shot chat: a throwaway session for a single prompt.

    Agent unavailability is reported as an ``error`` event rather than an HTTP
    status, since the stream is already open by then.
    """
    request_id = x_request_id or str(uuid.uuid4())
    lifecycle = get_lifecycle_manager(request)
    dispatcher = get_dispatcher(request)
    settings = get_app_settings(request)

    logger.info("Received one-shot chat request (request_id=%s)", request_id)

    async def event_generator() -> AsyncGenerator[dict[str, str], None]:
        try:
            session_id = await lifecycle.create(SessionOptions(), request_id=request_id)
        except AgentUnavailableError as e:
            yield StreamEvent.error(ErrorKind.AGENT_UNAVAILABLE, str(e)).to_sse()
            return
        except AgentStartupError as e:
            yield StreamEvent.error(ErrorKind.AGENT_STARTUP, f"Execution failed: {e}").to_sse()
            return

        try:
            async with contextlib.aclosing(
                dispatcher.dispatch(session_id, body.prompt, request_id=request_id)
            ) as events:
                async for event in events:
                    sse = event.to_sse()
                    if sse is None:
                        break
                    yield sse
        finally:
            await asyncio.shield(lifecycle.close(session_id, request_id=request_id))

    return _sse_response(event_generator(), settings, request_id)


@health_router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Report whether the agent CLI can be used and which version it is."""
    adapter = get_agent_adapter(request)
    if adapter is None or not adapter.is_configured:
        return HealthResponse(available=False, version="not configured", message=NOT_CONFIGURED_MESSAGE)

    if not adapter.is_available():
        return HealthResponse(
            available=False,
            version="unavailable",
            message="Claude Code CLI binary not found",
        )

    try:
        version = await adapter.version()
    except AgentError as e:
        logger.warning("Claude Code CLI version check failed: %s", e)
        return HealthResponse(
            available=False,
            version="unavailable",
            message=f"Claude Code CLI did not report a version: {e}",
        )

    return HealthResponse(available=True, version=version, message="Claude Code CLI is ready")
