"""
Application factory - creates and configures the FastAPI application.
This isolates all initialization logic from the entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from tinytask import __version__
from tinytask.config import Settings
from tinytask.dependencies.services import ServiceContainer
from tinytask.exceptions.handlers import setup_exception_handlers
from tinytask.mcp.handler import ProtocolHandlerFactory
from tinytask.mcp.sessions import SessionRegistry
from tinytask.middleware.setup import setup_middleware
from tinytask.tracing import setup_tracing, instrument_database, instrument_fastapi
from tinytask.transports import SSETransport, StreamableHTTPTransport, StdioTransport
from tinytask.api.routes.health import router as health_router
from tinytask.api.routes.mcp import router as mcp_router

logger = logging.getLogger(__name__)


def build_transport(settings: Settings, services: ServiceContainer):
    """Create the session registry and the one HTTP transport selected by settings."""
    registry = SessionRegistry(transport_kind=settings.transport_kind)
    factory = ProtocolHandlerFactory(services)
    if settings.enable_sse:
        transport = SSETransport(
            factory,
            registry,
            endpoint_path="/mcp",
            keepalive_seconds=settings.sse_keepalive_seconds,
        )
    else:
        transport = StreamableHTTPTransport(
            factory,
            registry,
            idle_timeout=settings.session_idle_timeout,
        )
    return registry, factory, transport


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan with graceful shutdown."""
    settings: Settings = app.state.settings
    transport = app.state.transport
    logger.info(f"Application starting up (mode={settings.mode}, transport={transport.kind})")

    if app.state.enable_tracing:
        try:
            setup_tracing()
            instrument_database()
            logger.info("Distributed tracing enabled")
        except Exception:
            logger.warning("Failed to initialize tracing, continuing without it", exc_info=True)

    sweeper = None
    if isinstance(transport, StreamableHTTPTransport) and transport.idle_timeout > 0:
        sweeper = asyncio.create_task(transport.run_sweeper())

    stdio_task = None
    if settings.stdio_enabled and app.state.run_stdio:
        stdio = StdioTransport(app.state.handler_factory)
        stdio_task = asyncio.create_task(stdio.serve())
        logger.info("stdio transport running alongside HTTP")

    yield

    logger.info("Application shutting down...")
    await _cancel(sweeper)
    await _cancel(stdio_task)
    transport.close_all(reason="shutdown")
    logger.info("Shutdown complete")


def create_app(
    settings: Settings,
    services: Optional[ServiceContainer] = None,
    run_stdio: bool = True,
    enable_tracing: bool = True
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Startup configuration
        services: Service container; built from settings when omitted
        run_stdio: Start the stdio transport in the background when the
            mode includes stdio
        enable_tracing: Set up OpenTelemetry on startup

    Returns:
        Configured FastAPI app instance ready to run.
    """
    if services is None:
        services = ServiceContainer.from_settings(settings)
    registry, factory, transport = build_transport(settings, services)

    app = FastAPI(
        title="TinyTask MCP",
        description="Task tracking for autonomous LLM agents over the Model Context Protocol",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.services = services
    app.state.registry = registry
    app.state.handler_factory = factory
    app.state.transport = transport
    app.state.run_stdio = run_stdio
    app.state.enable_tracing = enable_tracing

    setup_middleware(app)
    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(mcp_router)

    if enable_tracing:
        instrument_fastapi(app)

    return app
