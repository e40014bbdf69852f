"""Client transports: unified HTTP endpoint, dual-channel SSE, stdio."""
from tinytask.transports.streamable_http import StreamableHTTPTransport
from tinytask.transports.sse import SSETransport
from tinytask.transports.stdio import StdioTransport

__all__ = ["StreamableHTTPTransport", "SSETransport", "StdioTransport"]
