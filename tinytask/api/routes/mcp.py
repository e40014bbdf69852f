"""
MCP endpoint routes.

All three methods on /mcp are delegated to the transport selected at startup
(unified endpoint or dual-channel SSE), found on app.state.transport.
"""
from fastapi import APIRouter, Request

router = APIRouter(tags=["mcp"])


@router.post("/mcp")
async def mcp_post(request: Request):
    """Unified endpoint: one JSON-RPC exchange. SSE: side-channel message submission."""
    return await request.app.state.transport.handle_post(request)


@router.get("/mcp")
async def mcp_get(request: Request):
    """SSE: open the event stream. Unified endpoint: 405."""
    return await request.app.state.transport.handle_get(request)


@router.delete("/mcp")
async def mcp_delete(request: Request):
    """Close a session explicitly."""
    return await request.app.state.transport.handle_delete(request)
