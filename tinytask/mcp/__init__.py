"""MCP protocol layer: operation catalog, per-session handlers, session registry."""
from tinytask.mcp.catalog import MCP_FUNCTIONS, TOOL_DEFINITIONS
from tinytask.mcp.handler import OperationResult, ProtocolHandler, ProtocolHandlerFactory
from tinytask.mcp.sessions import SessionEntry, SessionRegistry

__all__ = [
    "MCP_FUNCTIONS",
    "TOOL_DEFINITIONS",
    "OperationResult",
    "ProtocolHandler",
    "ProtocolHandlerFactory",
    "SessionEntry",
    "SessionRegistry",
]
