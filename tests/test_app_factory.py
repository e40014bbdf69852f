"""
Tests for the application factory and the entry point.
"""
import asyncio
import logging
from unittest.mock import patch

import pytest
import uvicorn
from fastapi.testclient import TestClient

from tinytask.__main__ import TinyTaskServer, main, run_http
from tinytask.app.factory import build_transport, create_app
from tinytask.config import Settings
from tinytask.transports import SSETransport, StreamableHTTPTransport
from tinytask.transports.common import SESSION_HEADER
from tinytask.transports.sse import KEEPALIVE_EVENT


class TestBuildTransport:
    """Transport selection from settings."""

    def test_unified_endpoint_by_default(self, services):
        registry, factory, transport = build_transport(Settings(mode="http"), services)

        assert isinstance(transport, StreamableHTTPTransport)
        assert transport.registry is registry
        assert transport.factory is factory
        assert registry.transport_kind == "streamable-http"

    def test_sse_when_enabled(self, services):
        settings = Settings(mode="http", enable_sse=True, sse_keepalive_seconds=5)
        registry, _, transport = build_transport(settings, services)

        assert isinstance(transport, SSETransport)
        assert transport.keepalive_seconds == 5
        assert registry.transport_kind == "sse"


class TestCreateApp:
    """App wiring and lifecycle."""

    def test_state_is_populated(self, services, tmp_path):
        settings = Settings(mode="http", db_path=str(tmp_path / "x.db"))
        app = create_app(settings, services=services, run_stdio=False, enable_tracing=False)

        assert app.state.settings is settings
        assert app.state.services is services
        assert app.state.transport.registry is app.state.registry

    def test_builds_services_from_settings(self, tmp_path):
        db_path = tmp_path / "built.db"
        app = create_app(
            Settings(mode="http", db_path=str(db_path)), run_stdio=False, enable_tracing=False
        )

        assert app.state.services.db.db_path == str(db_path)
        assert db_path.exists()

    def test_shutdown_closes_sessions(self, services, tmp_path):
        settings = Settings(mode="http", db_path=str(tmp_path / "x.db"))
        app = create_app(settings, services=services, run_stdio=False, enable_tracing=False)

        with TestClient(app) as client:
            response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
            handler = app.state.registry.get(response.headers[SESSION_HEADER]).handler

        assert app.state.registry.count() == 0
        assert handler.closed is True


class TestMain:
    """Entry point."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_invalid_configuration_exits_nonzero(self, monkeypatch):
        monkeypatch.setenv("TINYTASK_MODE", "carrier-pigeon")
        assert main() == 1

    @patch("tinytask.__main__.run_http")
    def test_http_mode_runs_server(self, mock_run_http, monkeypatch, tmp_path):
        monkeypatch.setenv("TINYTASK_MODE", "http")
        monkeypatch.setenv("TINYTASK_DB_PATH", str(tmp_path / "main.db"))

        assert main() == 0
        settings = mock_run_http.call_args[0][0]
        assert settings.mode == "http"

    @patch("tinytask.__main__.run_stdio")
    def test_stdio_mode_runs_stdio(self, mock_run_stdio, monkeypatch):
        monkeypatch.setenv("TINYTASK_MODE", "stdio")

        assert main() == 0
        mock_run_stdio.assert_called_once()


class TestServerShutdown:
    """Open event streams end before uvicorn waits on connections."""

    async def test_shutdown_closes_event_streams_first(self, services, tmp_path):
        settings = Settings(mode="http", enable_sse=True, db_path=str(tmp_path / "x.db"))
        app = create_app(settings, services=services, run_stdio=False, enable_tracing=False)
        transport = app.state.transport
        connection = transport.open_session()
        stream = transport.event_stream(connection)
        await asyncio.wait_for(stream.__anext__(), 2.0)
        open_at_drain = []

        async def drain_connections(self, sockets=None):
            open_at_drain.append(app.state.registry.count())

        server = TinyTaskServer(uvicorn.Config(app), transport)
        with patch.object(uvicorn.Server, "shutdown", drain_connections):
            await server.shutdown()

        async def remaining():
            return [chunk async for chunk in stream]

        assert open_at_drain == [0]
        assert connection.closed is True
        assert all(chunk == KEEPALIVE_EVENT for chunk in await asyncio.wait_for(remaining(), 2.0))

    @patch("tinytask.__main__.TinyTaskServer")
    def test_run_http_uses_session_aware_server(self, mock_server, tmp_path):
        settings = Settings(mode="http", db_path=str(tmp_path / "x.db"))

        def build(s):
            return create_app(s, run_stdio=False, enable_tracing=False)

        with patch("tinytask.__main__.create_app", side_effect=build):
            run_http(settings)

        config, transport = mock_server.call_args[0]
        assert config.timeout_graceful_shutdown == 5
        assert isinstance(transport, StreamableHTTPTransport)
        mock_server.return_value.run.assert_called_once()
