"""
TinyTask MCP service entry point (``python -m tinytask`` or ``tinytask``).

Selects stdio, HTTP, or both from the environment. All HTTP initialization
is in app/factory.py.
"""
import sys
import asyncio
import logging

import uvicorn

from tinytask.app.factory import create_app
from tinytask.config import Settings, load_settings
from tinytask.dependencies.services import ServiceContainer
from tinytask.exceptions import ConfigurationError
from tinytask.mcp.handler import ProtocolHandlerFactory
from tinytask.middleware.logging_setup import setup_logging
from tinytask.transports.stdio import StdioTransport

logger = logging.getLogger(__name__)

# TINYTASK_LOG_LEVEL -> uvicorn log level
_UVICORN_LEVELS = {"warn": "warning"}


def run_stdio(settings: Settings) -> None:
    """Serve a single client over stdin/stdout."""
    services = ServiceContainer.from_settings(settings)
    transport = StdioTransport(ProtocolHandlerFactory(services))
    asyncio.run(transport.serve())


class TinyTaskServer(uvicorn.Server):
    """uvicorn server that ends open MCP sessions as soon as shutdown begins.

    SSE streams never finish on their own, so they are closed before uvicorn
    waits on open connections rather than after, in the lifespan.
    """

    def __init__(self, config: uvicorn.Config, transport):
        super().__init__(config)
        self.transport = transport

    async def shutdown(self, sockets=None) -> None:
        logger.info(f"Closing {self.transport.kind} sessions before connection drain")
        self.transport.close_all(reason="shutdown")
        await super().shutdown(sockets=sockets)


def run_http(settings: Settings) -> None:
    """Serve HTTP (and stdio too in 'both' mode) under uvicorn."""
    app = create_app(settings)
    logger.info(f"TinyTask MCP server running on {settings.transport_kind}")
    logger.info(f"URL: http://{settings.host}:{settings.port}/mcp")
    logger.info(f"Health: http://{settings.host}:{settings.port}/health")
    logger.info(f"Database: {settings.db_path}")

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=_UVICORN_LEVELS.get(settings.log_level, settings.log_level),
        # Keep uvicorn on the root (stderr) handlers; stdout may carry stdio
        log_config=None,
        access_log=True,
        timeout_keep_alive=65,
        timeout_graceful_shutdown=5,
    )
    server = TinyTaskServer(config, app.state.transport)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    finally:
        logger.info("Service stopped")


def main() -> int:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging("error")
        logger.error(f"Failed to start server: {e.message}")
        return 1

    setup_logging(settings.log_level)
    logger.info(f"Starting TinyTask MCP server in {settings.mode} mode")

    if settings.http_enabled:
        run_http(settings)
    else:
        try:
            run_stdio(settings)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt, shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
