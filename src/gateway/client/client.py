"""Async HTTP client for the chat gateway.

Wraps the session endpoints and turns a message's SSE response back into the
agent's output chunks.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from gateway.client.parser import EventStreamParser, ServerEvent

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TIMEOUT = 300.0  # seconds
API_PREFIX = "/api/chat"
SESSION_GONE_KINDS = frozenset({"session_not_found", "session_expired"})


class GatewayClientError(Exception):
    """Exception raised when a gateway call fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        kind: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.kind = kind


class SessionGoneError(GatewayClientError):
    """The session is unknown to the gateway or has expired."""


class GatewayClient:
    """Client for one conversation with the gateway.

    ``chat`` keeps track of the current session: it creates one on first use
    and, if the gateway reports the session gone before any output arrived,
    creates a new one and sends the same message again, once.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        timeout: float = DEFAULT_TIMEOUT,
        model: str | None = None,
        inactivity_timeout_minutes: int | None = None,
    ):
        """Initialize the client.

        Args:
            http_client: Async HTTP client whose base URL points at the gateway.
            timeout: Request timeout in seconds.
            model: Model requested for sessions created by ``chat``.
            inactivity_timeout_minutes: Timeout requested for those sessions.
        """
        self._http_client = http_client
        self._timeout = timeout
        self._model = model
        self._inactivity_timeout_minutes = inactivity_timeout_minutes
        self.session_id: str | None = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http_client.request(
                method, f"{API_PREFIX}{path}", timeout=self._timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            logger.error("Gateway request timed out: %s", e)
            raise GatewayClientError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            logger.error("Gateway request failed: %s", e)
            raise GatewayClientError(f"Request failed: {e}") from e

    async def health(self) -> dict[str, Any]:
        """Fetch the agent health report."""
        response = await self._request("GET", "/health")
        response.raise_for_status()
        return response.json()

    async def create_session(
        self,
        model: str | None = None,
        inactivity_timeout_minutes: int | None = None,
    ) -> str:
        """Create a session and return its id.

        Raises:
            GatewayClientError: If the gateway could not create a session.
        """
        body: dict[str, Any] = {}
        if model is not None:
            body["model"] = model
        if inactivity_timeout_minutes is not None:
            body["inactivityTimeoutMinutes"] = inactivity_timeout_minutes

        response = await self._request("POST", "/sessions", json=body)
        payload = response.json()
        if response.status_code >= 400 or not payload.get("success"):
            raise GatewayClientError(
                payload.get("message") or f"Gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return payload["sessionId"]

    async def send_message(
        self,
        session_id: str,
        message: str,
        headers: dict[str, str] | None = None,
    ) -> AsyncGenerator[str, None]:
        """Send a message and stream the agent's output.

        Args:
            session_id: Target session.
            message: Prompt text.
            headers: Optional extra headers such as X-Request-ID.

        Yields:
            str: Output chunks in the order the agent produced them.

        Raises:
            SessionGoneError: If the session is unknown or expired.
            GatewayClientError: On transport failures or an ``error`` event.
        """
        request_headers = {"Accept": "text/event-stream"}
        if headers:
            request_headers.update(headers)

        try:
            async with self._http_client.stream(
                "POST",
                f"{API_PREFIX}/sessions/{session_id}/messages",
                json={"message": message},
                headers=request_headers,
                timeout=self._timeout,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._error_from_response(response)

                parser = EventStreamParser()
                async for text in response.aiter_text():
                    for event in parser.feed(text):
                        yield self._chunk_from_event(event)
                for event in parser.flush():
                    yield self._chunk_from_event(event)

        except httpx.TimeoutException as e:
            logger.error("Gateway stream timed out: %s", e)
            raise GatewayClientError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            logger.error("Gateway stream failed: %s", e)
            raise GatewayClientError(f"Request failed: {e}") from e

    async def close_session(self, session_id: str) -> bool:
        """Close a session. Returns whether it was open."""
        response = await self._request("DELETE", f"/sessions/{session_id}")
        response.raise_for_status()
        return response.json().get("message") == "Session closed successfully"

    async def session_status(self, session_id: str) -> bool:
        """Whether the session can still take messages."""
        response = await self._request("GET", f"/sessions/{session_id}/status")
        response.raise_for_status()
        return bool(response.json().get("active"))

    async def chat(self, message: str) -> AsyncGenerator[str, None]:
        """Send a message on the current session, creating one if needed.

        Yields:
            str: Output chunks of the agent's answer.
        """
        if self.session_id is None:
            self.session_id = await self._new_session()

        received = False
        try:
            async for chunk in self.send_message(self.session_id, message):
                received = True
                yield chunk
            return
        except SessionGoneError as e:
            if received:
                raise
            logger.info("Session %s is gone (%s), starting a new one", self.session_id, e)

        self.session_id = await self._new_session()
        async for chunk in self.send_message(self.session_id, message):
            yield chunk

    async def _new_session(self) -> str:
        return await self.create_session(
            model=self._model,
            inactivity_timeout_minutes=self._inactivity_timeout_minutes,
        )

    @staticmethod
    def _chunk_from_event(event: ServerEvent) -> str:
        if event.event == "error":
            raise GatewayClientError(event.data)
        return event.data

    @staticmethod
    def _error_from_response(response: httpx.Response) -> GatewayClientError:
        try:
            payload = response.json()
        except ValueError:
            payload = {"detail": response.text[:200]}

        message = payload.get("detail") or f"Gateway returned HTTP {response.status_code}"
        kind = payload.get("error")
        if response.status_code == 404 or kind in SESSION_GONE_KINDS:
            return SessionGoneError(message, status_code=response.status_code, kind=kind)
        return GatewayClientError(message, status_code=response.status_code, kind=kind)
