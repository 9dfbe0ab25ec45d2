"""Tests for health, readiness and admin endpoints."""

import pytest

from gateway import __version__
from gateway.agent import AgentExecutionError


class TestAgentHealth:
    """Tests for GET /api/chat/health."""

    @pytest.mark.asyncio
    async def test_available(self, client):
        """Test that a working CLI reports its version."""
        response = await client.get("/api/chat/health")

        assert response.status_code == 200
        assert response.json() == {
            "available": True,
            "version": "1.0.42 (Claude Code)",
            "message": "Claude Code CLI is ready",
        }

    @pytest.mark.asyncio
    async def test_not_configured(self, client, fake_adapter):
        """Test the missing API key case."""
        fake_adapter.configured = False

        data = (await client.get("/api/chat/health")).json()

        assert data["available"] is False
        assert data["version"] == "not configured"
        assert "ANTHROPIC_API_KEY" in data["message"]

    @pytest.mark.asyncio
    async def test_binary_missing(self, client, fake_adapter):
        """Test the binary not on PATH case."""
        fake_adapter.available = False

        data = (await client.get("/api/chat/health")).json()

        assert data["available"] is False
        assert data["version"] == "unavailable"

    @pytest.mark.asyncio
    async def test_version_probe_fails(self, client, fake_adapter):
        """Test that a failing --version is reported as unavailable."""
        fake_adapter.version_error = AgentExecutionError("exited with code 1")

        data = (await client.get("/api/chat/health")).json()

        assert data["available"] is False
        assert data["version"] == "unavailable"
        assert "exited with code 1" in data["message"]


class TestAppEndpoints:
    """Tests for app-level endpoints."""

    @pytest.mark.asyncio
    async def test_root(self, client):
        """Test the metadata endpoint."""
        data = (await client.get("/")).json()
        assert data["name"] == "agent-chat-gateway"
        assert data["version"] == __version__

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        """Test the liveness probe."""
        response = await client.get("/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_readiness(self, client):
        """Test the readiness probe with a usable agent."""
        response = await client.get("/health/ready")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_readiness_agent_unavailable(self, client, fake_adapter):
        """Test that readiness fails when the CLI is missing."""
        fake_adapter.available = False
        response = await client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["reason"] == "agent CLI unavailable"

    @pytest.mark.asyncio
    async def test_reload_without_profile(self, client):
        """Test that reload is refused for adapters without a profile."""
        response = await client.post("/admin/reload-config")
        assert response.status_code == 409


class TestShutdown:
    """Tests for lifespan shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_closes_agent_and_sweeper(self, app, fake_adapter):
        """Test that leaving the lifespan releases every agent session."""
        async with app.router.lifespan_context(app):
            await app.state.lifecycle.create()
            sweeper = app.state.session_sweeper
            assert sweeper.is_running

        assert fake_adapter.aclosed
        assert fake_adapter.sessions == {}
        assert not sweeper.is_running
        assert app.state.session_store.count() == 0
