"""
Health and metrics API routes.
"""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response

from tinytask.monitoring import get_health_info, get_metrics, METRICS_CONTENT_TYPE

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(request: Request):
    """Liveness check: service status, active transport, uptime and database connectivity."""
    state = request.app.state
    health_info = get_health_info(
        state.services.db,
        transport=state.settings.transport_kind,
        session_count=state.registry.count(),
    )

    if health_info.get("status") == "unhealthy":
        return JSONResponse(
            content=health_info,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )
    return health_info


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics(), media_type=METRICS_CONTENT_TYPE)
