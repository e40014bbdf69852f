"""
Logging configuration and setup.
"""
import sys
import logging
from typing import Optional, TextIO

from tinytask.monitoring import get_request_id

# Below DEBUG; used for raw request bodies and tool arguments
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] - %(message)s'


class RequestIDFilter(logging.Filter):
    """Logging filter to add request ID to log records."""

    def filter(self, record):
        """Add request_id to log record if available."""
        if not getattr(record, 'request_id', None):
            record.request_id = get_request_id() or '-'
        return True


class SafeFormatter(logging.Formatter):
    """Safe formatter that handles missing request_id gracefully."""

    def format(self, record):
        """Format log record, handling missing request_id."""
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return super().format(record)


def setup_logging(level: str = "info", stream: Optional[TextIO] = None) -> None:
    """
    Configure root logging for the service.

    Logs go to stderr by default because stdout carries the stdio transport.

    Args:
        level: One of error, warn, info, debug, trace
        stream: Output stream (defaults to sys.stderr)
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(RequestIDFilter())
    handler.setFormatter(SafeFormatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    logging.basicConfig(
        level=LOG_LEVELS.get(level.lower(), logging.INFO),
        handlers=[handler],
        force=True
    )
