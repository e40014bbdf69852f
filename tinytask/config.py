"""
Environment configuration for the TinyTask service.

Settings are read once at startup and passed by reference into the app
factory, transports and services.
"""
import os
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from tinytask.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

VALID_MODES = ("stdio", "http", "both")
VALID_LOG_LEVELS = ("error", "warn", "info", "debug", "trace")

# sqlite must wait at least this long for a competing writer before failing
MIN_BUSY_TIMEOUT_MS = 10000


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, selected once at startup."""
    mode: str = "both"
    enable_sse: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    db_path: str = "./data/tinytask.db"
    log_level: str = "info"
    sse_keepalive_seconds: float = 15.0
    session_idle_timeout: float = 3600.0
    db_busy_timeout_ms: int = 30000

    @property
    def http_enabled(self) -> bool:
        return self.mode in ("http", "both")

    @property
    def stdio_enabled(self) -> bool:
        return self.mode in ("stdio", "both")

    @property
    def transport_kind(self) -> str:
        """Name of the active HTTP transport variant."""
        return "sse" if self.enable_sse else "streamable-http"


def _get_bool(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "false").strip().lower() in ("1", "true", "yes", "on")


def _get_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid {name}: {raw}. Must be a number")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If mode, port or log level is invalid
    """
    if environ is None:
        environ = os.environ

    mode = environ.get("TINYTASK_MODE", "both").strip().lower()
    enable_sse = _get_bool(environ, "TINYTASK_ENABLE_SSE")

    # Legacy 'sse' mode maps onto http with the dual-channel transport
    if mode == "sse":
        logger.warning(
            "TINYTASK_MODE=sse is deprecated. Use TINYTASK_MODE=http with TINYTASK_ENABLE_SSE=true"
        )
        mode = "http"
        if "TINYTASK_ENABLE_SSE" not in environ:
            enable_sse = True

    if mode not in VALID_MODES:
        raise ConfigurationError(f"Invalid mode: {mode}. Must be stdio, http, or both")

    raw_port = environ.get("TINYTASK_PORT", "3000")
    try:
        port = int(raw_port)
    except ValueError:
        raise ConfigurationError(f"Invalid port: {raw_port}. Must be between 1 and 65535")
    if mode in ("http", "both") and not 1 <= port <= 65535:
        raise ConfigurationError(f"Invalid port: {port}. Must be between 1 and 65535")

    log_level = environ.get("TINYTASK_LOG_LEVEL", "info").strip().lower()
    if log_level == "warning":
        log_level = "warn"
    if log_level not in VALID_LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid log level: {log_level}. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    busy_timeout = int(_get_float(environ, "TINYTASK_DB_BUSY_TIMEOUT_MS", 30000))
    if busy_timeout < MIN_BUSY_TIMEOUT_MS:
        logger.warning(
            f"TINYTASK_DB_BUSY_TIMEOUT_MS={busy_timeout} is below {MIN_BUSY_TIMEOUT_MS}, using {MIN_BUSY_TIMEOUT_MS}"
        )
        busy_timeout = MIN_BUSY_TIMEOUT_MS

    keepalive = _get_float(environ, "TINYTASK_SSE_KEEPALIVE_SECONDS", 15.0)
    if keepalive <= 0:
        raise ConfigurationError("TINYTASK_SSE_KEEPALIVE_SECONDS must be positive")

    return Settings(
        mode=mode,
        enable_sse=enable_sse,
        host=environ.get("TINYTASK_HOST", "0.0.0.0"),
        port=port,
        db_path=environ.get("TINYTASK_DB_PATH", "./data/tinytask.db"),
        log_level=log_level,
        sse_keepalive_seconds=keepalive,
        session_idle_timeout=max(0.0, _get_float(environ, "TINYTASK_SESSION_IDLE_TIMEOUT", 3600.0)),
        db_busy_timeout_ms=busy_timeout,
    )
