"""
Monitoring and observability utilities for the TinyTask service.

Provides:
- Prometheus metrics (requests, latencies, errors, sessions, tool calls)
- Request tracing (unique request IDs)
- Health information for liveness checks
"""
import re
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Any, Optional
from contextvars import ContextVar

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

# Request context variable for tracing
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

# Prometheus metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint', 'status_code'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors',
    ['method', 'endpoint', 'status_code', 'error_type']
)

service_uptime_seconds = Gauge(
    'service_uptime_seconds',
    'Service uptime in seconds'
)

mcp_active_sessions = Gauge(
    'mcp_active_sessions',
    'Number of open protocol sessions',
    ['transport']
)

mcp_tool_calls_total = Counter(
    'mcp_tool_calls_total',
    'Total number of tool invocations',
    ['tool', 'outcome']
)

service_start_time = time.time()

METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)


def get_request_id() -> str:
    """Get the current request ID from context."""
    return request_id_var.get('')


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    request_id_var.set(request_id)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for collecting Prometheus metrics and request tracing."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())[:8]
        set_request_id(request_id)

        endpoint = self._get_endpoint_path(request.url.path)
        start_time = time.time()
        service_uptime_seconds.set(time.time() - service_start_time)

        logger.debug(
            "Request started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "Request failed with exception",
                exc_info=True,
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_seconds": duration,
                    "exception_type": type(e).__name__,
                }
            )
            http_errors_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                error_type="exception"
            ).inc()
            raise

        status_code = response.status_code
        # For event streams this measures time to first byte, not stream lifetime
        duration = time.time() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=status_code
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=status_code
        ).observe(duration)

        if status_code >= 400:
            error_type = "client_error" if status_code < 500 else "server_error"
            http_errors_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
                error_type=error_type
            ).inc()
            logger.warning(
                f"Request error: {request.method} {request.url.path} -> {status_code}",
                extra={"request_id": request_id, "duration_seconds": duration}
            )
        else:
            logger.debug(
                f"Request completed: {request.method} {request.url.path} -> {status_code}",
                extra={"request_id": request_id, "duration_seconds": duration}
            )

        response.headers["X-Request-ID"] = request_id
        return response

    @staticmethod
    def _get_endpoint_path(path: str) -> str:
        """Normalize endpoint path for metrics (remove IDs, etc.)."""
        path = re.sub(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '{id}', path, flags=re.IGNORECASE)
        path = re.sub(r'/\d+', '/{id}', path)
        if len(path) > 100:
            path = path[:100]
        return path


def get_metrics() -> str:
    """Get Prometheus metrics in text format."""
    return generate_latest().decode('utf-8')


def check_database_health(db) -> Dict[str, Any]:
    """
    Check database connectivity.

    Args:
        db: Database instance

    Returns:
        Dictionary with database health status
    """
    start_time = time.time()
    try:
        db.query_one("SELECT 1 AS ok")
        return {
            "status": "healthy",
            "connectivity": "connected",
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception as e:
        response_time_ms = round((time.time() - start_time) * 1000, 2)
        logger.warning(
            "Database health check failed",
            extra={
                "error_type": type(e).__name__,
                "error_message": str(e),
                "response_time_ms": response_time_ms
            }
        )
        return {
            "status": "unhealthy",
            "connectivity": "disconnected",
            "response_time_ms": response_time_ms,
            "error": str(e),
        }


def get_health_info(
    db=None,
    transport: str = "streamable-http",
    session_count: Optional[int] = None
) -> Dict[str, Any]:
    """
    Build the fixed-shape health document.

    Args:
        db: Optional database instance for the connectivity probe
        transport: Name of the active HTTP transport variant
        session_count: Number of open sessions, if known

    Returns:
        Dictionary with status, transport, timestamp, uptime and component details
    """
    uptime = time.time() - service_start_time
    overall_status = "healthy"
    database = "unknown"

    if db is not None:
        db_health = check_database_health(db)
        database = db_health["connectivity"]
        if db_health["status"] == "unhealthy":
            overall_status = "unhealthy"

    info = {
        "status": overall_status,
        "transport": transport,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": uptime,
        "uptime_formatted": _format_uptime(uptime),
        "database": database,
    }
    if session_count is not None:
        info["sessionCount"] = session_count
    return info


def _format_uptime(seconds: float) -> str:
    """Format uptime in human-readable format."""
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if days > 0:
        return f"{days}d {hours}h {minutes}m {secs}s"
    elif hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    elif minutes > 0:
        return f"{minutes}m {secs}s"
    else:
        return f"{secs}s"
