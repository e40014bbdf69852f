"""
Dual-channel (SSE) transport.

GET /mcp opens a long-lived event stream and creates the session. The first
event names the side channel:

    event: endpoint
    data: /mcp?sessionId=<id>

Clients POST JSON-RPC messages to that URL. The POST is only acknowledged
(202); the JSON-RPC response is written onto the stream as an
``event: message``. Messages of one session are processed in arrival order by
a per-session worker. A keep-alive comment is written whenever the stream has
been quiet for keepalive_seconds.
"""
import json
import asyncio
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import Request
from fastapi.responses import Response, StreamingResponse

from tinytask.exceptions import SessionNotFoundError
from tinytask.mcp.handler import (
    ProtocolHandler,
    ProtocolHandlerFactory,
    jsonrpc_error,
    INVALID_REQUEST,
    INTERNAL_ERROR,
)
from tinytask.mcp.sessions import SessionRegistry
from tinytask.transports.common import (
    DeliveredResponse,
    SESSION_QUERY_PARAM,
    error_response,
    exception_response,
    is_json_content,
    message_id,
    new_session_id,
    read_json_body,
    request_session_id,
    session_headers,
)

KEEPALIVE_EVENT = ": keep-alive\n\n"

# Queued on the outbound queue to end a stream
_CLOSE = object()


def format_event(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


class SSEConnection:
    """Per-session channel state: inbound messages and outbound events."""

    def __init__(self, session_id: str, handler: ProtocolHandler):
        self.session_id = session_id
        self.handler = handler
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.outbound: asyncio.Queue = asyncio.Queue()
        self.worker: Optional[asyncio.Task] = None
        self.closed = False
        self.events_written = 0
        self.bytes_written = 0


class SSETransport:
    """Long-lived stream plus side-channel transport."""

    kind = "sse"

    def __init__(
        self,
        factory: ProtocolHandlerFactory,
        registry: SessionRegistry,
        endpoint_path: str = "/mcp",
        keepalive_seconds: float = 15.0,
        logger: Optional[logging.Logger] = None
    ):
        self.factory = factory
        self.registry = registry
        self.endpoint_path = endpoint_path
        self.keepalive_seconds = keepalive_seconds
        self.logger = logger or logging.getLogger(__name__)

    def open_session(self) -> SSEConnection:
        """Create and register a session and start its message worker."""
        session_id = new_session_id()
        handler = self.factory.create(session_id)
        connection = SSEConnection(session_id, handler)
        self.registry.create(session_id, connection, handler)
        connection.worker = asyncio.create_task(self._process_messages(connection))
        return connection

    def close_session(self, session_id: str, reason: str = "closed") -> bool:
        """
        Tear a session down: unregister it, close its handler, stop its worker
        and end its stream. Safe to call more than once.
        """
        entry = self.registry.remove(session_id)
        if entry is None:
            return False
        connection: SSEConnection = entry.transport
        connection.closed = True
        entry.handler.close()
        if connection.worker is not None and not connection.worker.done():
            connection.worker.cancel()
        connection.outbound.put_nowait(_CLOSE)
        self.logger.info(
            f"SSE session {session_id} closed ({reason})",
            extra={"events_written": connection.events_written, "bytes_written": connection.bytes_written}
        )
        return True

    def close_all(self, reason: str = "shutdown") -> None:
        self.registry.for_each(lambda entry: self.close_session(entry.session_id, reason))

    def endpoint_url(self, session_id: str) -> str:
        return f"{self.endpoint_path}?{SESSION_QUERY_PARAM}={session_id}"

    async def _process_messages(self, connection: SSEConnection) -> None:
        """Run inbound messages through the handler one at a time."""
        while True:
            message = await connection.inbound.get()
            try:
                response = await connection.handler.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                self.logger.error(
                    f"Unhandled error processing message for SSE session {connection.session_id}",
                    exc_info=True
                )
                response = jsonrpc_error(message_id(message), INTERNAL_ERROR, "Internal error")
            if response is not None:
                connection.outbound.put_nowait(response)

    def submit(self, session_id: str, message: Any) -> None:
        """
        Queue a message for a session.

        Raises:
            SessionNotFoundError: If the session is not registered
        """
        entry = self.registry.require(session_id)
        connection: SSEConnection = entry.transport
        if connection.closed:
            raise SessionNotFoundError(session_id)
        entry.touch()
        connection.inbound.put_nowait(message)

    async def event_stream(
        self,
        connection: SSEConnection,
        request: Optional[Request] = None
    ) -> AsyncIterator[str]:
        """
        Yield the session's events: the endpoint event, then responses and
        keep-alives until the session closes or the client disconnects.
        """
        try:
            yield self._written(connection, format_event("endpoint", self.endpoint_url(connection.session_id)))
            while True:
                try:
                    item = await asyncio.wait_for(connection.outbound.get(), timeout=self.keepalive_seconds)
                except asyncio.TimeoutError:
                    if request is not None and await request.is_disconnected():
                        self.logger.debug(f"SSE client disconnected: {connection.session_id}")
                        break
                    yield self._written(connection, KEEPALIVE_EVENT, keepalive=True)
                    continue
                if item is _CLOSE:
                    break
                yield self._written(connection, format_event("message", json.dumps(item, default=str)))
        finally:
            self.close_session(connection.session_id, reason="stream ended")

    def _written(self, connection: SSEConnection, chunk: str, keepalive: bool = False) -> str:
        size = len(chunk.encode("utf-8"))
        connection.bytes_written += size
        if not keepalive:
            connection.events_written += 1
        if size == 0:
            self.logger.error(f"Undelivered SSE event for session {connection.session_id}: 0 bytes")
        else:
            self.logger.debug(
                f"SSE {'keep-alive' if keepalive else 'event'} written: {size} bytes",
                extra={"session_id": connection.session_id}
            )
        return chunk

    async def handle_get(self, request: Request) -> Response:
        """Open the event stream for a new session."""
        connection = self.open_session()
        headers = dict(session_headers(connection.session_id))
        headers.update({
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        })
        return StreamingResponse(
            self.event_stream(connection, request),
            media_type="text/event-stream",
            headers=headers,
        )

    async def handle_post(self, request: Request) -> Response:
        """Side channel: accept one message for a session and acknowledge it."""
        session_id = request_session_id(request, allow_query=True)
        if not session_id:
            return error_response(
                400, INVALID_REQUEST, "Missing sessionId",
                context="sse-missing-session", log=self.logger
            )
        if session_id not in self.registry:
            self.logger.warning(f"Message for unknown SSE session {session_id}")
            return exception_response(
                404, SessionNotFoundError(session_id), context="sse-session-not-found", log=self.logger
            )
        if not is_json_content(request):
            return error_response(
                415, INVALID_REQUEST, "Unsupported Media Type: Content-Type must be application/json",
                context="sse-unsupported-media-type", log=self.logger
            )

        message, parse_error = await read_json_body(request)
        if parse_error is not None:
            return parse_error
        if isinstance(message, list):
            return error_response(
                400, INVALID_REQUEST, "Invalid Request: batch requests are not supported",
                context="sse-batch", log=self.logger
            )

        try:
            self.submit(session_id, message)
        except SessionNotFoundError as e:
            return exception_response(404, e, context="sse-session-not-found", log=self.logger)

        return DeliveredResponse(
            {"status": "accepted", "sessionId": session_id},
            status_code=202,
            context="sse-ack",
            log=self.logger,
        )

    async def handle_delete(self, request: Request) -> Response:
        """Close a dual-channel session from the side channel."""
        session_id = request_session_id(request, allow_query=True)
        if not session_id:
            return error_response(400, INVALID_REQUEST, "Missing sessionId", context="sse-delete", log=self.logger)
        if not self.close_session(session_id, reason="client request"):
            return exception_response(404, SessionNotFoundError(session_id), context="sse-delete", log=self.logger)
        return DeliveredResponse(None, status_code=204, media_type=None, context="sse-delete", log=self.logger)
