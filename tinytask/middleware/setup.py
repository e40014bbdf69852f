"""
Middleware setup and configuration.
"""
from fastapi.middleware.cors import CORSMiddleware

from tinytask.monitoring import MetricsMiddleware
from tinytask.transports.common import SESSION_HEADER


def setup_middleware(app):
    """Set up all middleware for the FastAPI application."""
    # Add monitoring middleware (must be added before routes)
    app.add_middleware(MetricsMiddleware)

    # Outermost: browser-based MCP clients need the session header exposed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", SESSION_HEADER],
        expose_headers=[SESSION_HEADER],
    )
