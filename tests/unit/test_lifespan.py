"""Unit tests for the application factory and lifespan lifecycle.

Covers:
  create_app(): importable, independent instances, ready=False before startup
  /health: 503 before ready, 200 with relay settings after startup
  /proxy: 503 before ready (require_ready dependency)
  /: service discovery body
  Lifespan: shared upstream client created on startup, closed on shutdown
"""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient

from framerelay import __version__
from framerelay.config import Config, RelayConfig
from framerelay.main import create_app, lifespan


def _stub_config() -> Config:
    """Return a default Config for testing (no file I/O)."""
    return Config.defaults()


# ─── create_app() ─────────────────────────────────────────────────────────────


class TestCreateAppFactory:
    def test_returns_fastapi_instance(self) -> None:
        assert isinstance(create_app(_stub_config()), FastAPI)

    def test_independent_instances(self) -> None:
        assert create_app(_stub_config()) is not create_app(_stub_config())

    def test_ready_false_before_lifespan(self) -> None:
        application = create_app(_stub_config())
        assert application.state.ready is False

    def test_injected_config_stored(self) -> None:
        config = _stub_config()
        assert create_app(config).state.config is config

    def test_loads_config_when_omitted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        stub = Config(relay=RelayConfig(timeout_ms=1234))
        monkeypatch.setattr("framerelay.main.load_config", lambda: stub)
        assert create_app().state.config is stub


# ─── Before startup ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestBeforeReady:
    """ASGITransport sends requests without running the ASGI lifespan."""

    async def test_health_503(self) -> None:
        application = create_app(_stub_config())
        transport = ASGITransport(app=application)  # type: ignore[arg-type]
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["status"] == "starting"
        assert error["relay"] == "initializing"

    async def test_proxy_503(self) -> None:
        application = create_app(_stub_config())
        transport = ASGITransport(app=application)  # type: ignore[arg-type]
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/proxy", params={"url": "https://example.com"})

        assert response.status_code == 503
        assert response.json()["error"]["status"] == "starting"

    async def test_root_available(self) -> None:
        application = create_app(_stub_config())
        transport = ASGITransport(app=application)  # type: ignore[arg-type]
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["service"] == "FrameRelay"
        assert body["version"] == __version__
        assert body["relay"].startswith("/proxy?url=")
        assert body["health"] == "/health"


# ─── After startup ────────────────────────────────────────────────────────────


class TestAfterReady:
    def test_health_200(self) -> None:
        application = create_app(_stub_config())
        with TestClient(application) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "relay": "running",
            "open_relay": True,
            "timeout_ms": 15_000,
            "max_redirects": 20,
        }

    def test_health_reflects_config(self) -> None:
        config = Config(relay=RelayConfig(timeout_ms=500, max_redirects=0))
        with TestClient(create_app(config)) as client:
            body = client.get("/health").json()
        assert body["timeout_ms"] == 500
        assert body["max_redirects"] == 0

    def test_health_transitions_from_503_to_200(self) -> None:
        application = create_app(_stub_config())
        assert TestClient(application).get("/health").status_code == 503
        with TestClient(application) as client:
            assert client.get("/health").status_code == 200


# ─── Lifespan ─────────────────────────────────────────────────────────────────


class TestLifespanSequence:
    def test_ready_and_client_during_lifespan(self) -> None:
        application = create_app(_stub_config())
        with TestClient(application):
            assert application.state.ready is True
            assert isinstance(application.state.http_client, httpx.AsyncClient)
            assert application.state.http_client.follow_redirects is False

    def test_shutdown_resets_ready_and_closes_client(self) -> None:
        application = create_app(_stub_config())
        with TestClient(application):
            http_client = application.state.http_client

        assert application.state.ready is False
        assert http_client.is_closed

    @pytest.mark.asyncio
    async def test_lifespan_direct(self) -> None:
        application = create_app(Config(relay=RelayConfig(timeout_ms=2000)))
        async with lifespan(application):
            assert application.state.ready is True
            assert application.state.http_client.timeout.read == 2.0
        assert application.state.ready is False
