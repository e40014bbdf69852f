"""
Unified-endpoint (streamable HTTP) transport.

Every JSON-RPC exchange is one POST to /mcp and its result is the body of
that same HTTP response. Sessions are negotiated with the Mcp-Session-Id
header:

- no header: a new session (and handler) is created and its id is returned
  in the response header
- a known id: the request goes to that session's handler
- an unknown id: 404 with a session-not-found error; no session is minted

DELETE /mcp closes a session explicitly; idle sessions expire after
idle_timeout seconds.
"""
import time
import asyncio
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import Response

from tinytask.exceptions import SessionNotFoundError
from tinytask.mcp.handler import (
    ProtocolHandlerFactory,
    INVALID_REQUEST,
    INTERNAL_ERROR,
)
from tinytask.mcp.sessions import SessionEntry, SessionRegistry
from tinytask.transports.common import (
    DeliveredResponse,
    error_response,
    exception_response,
    is_json_content,
    message_id,
    new_session_id,
    read_json_body,
    request_session_id,
    session_headers,
)


class StreamableHTTPTransport:
    """Single-endpoint request/response transport."""

    kind = "streamable-http"

    def __init__(
        self,
        factory: ProtocolHandlerFactory,
        registry: SessionRegistry,
        idle_timeout: float = 3600.0,
        logger: Optional[logging.Logger] = None
    ):
        self.factory = factory
        self.registry = registry
        self.idle_timeout = idle_timeout
        self.logger = logger or logging.getLogger(__name__)

    def open_session(self) -> SessionEntry:
        """Mint a session id and bind a fresh handler to it."""
        session_id = new_session_id()
        handler = self.factory.create(session_id)
        return self.registry.create(session_id, self, handler)

    def close_session(self, session_id: str, reason: str = "closed") -> bool:
        """Remove a session and close its handler; False if it was not registered."""
        entry = self.registry.remove(session_id)
        if entry is None:
            return False
        entry.handler.close()
        self.logger.info(f"Session {session_id} closed ({reason})")
        return True

    def close_all(self, reason: str = "shutdown") -> None:
        self.registry.for_each(lambda entry: self.close_session(entry.session_id, reason))

    async def handle_post(self, request: Request) -> Response:
        """Handle one JSON-RPC message; the result is this response's body."""
        if not is_json_content(request):
            return error_response(
                415, INVALID_REQUEST, "Unsupported Media Type: Content-Type must be application/json",
                context="unsupported-media-type", log=self.logger
            )

        session_id = request_session_id(request)
        entry = None
        if session_id:
            try:
                entry = self.registry.require(session_id)
            except SessionNotFoundError as e:
                self.logger.warning(f"Request for unknown session {session_id}")
                return exception_response(404, e, context="session-not-found", log=self.logger)

        message, parse_error = await read_json_body(request)
        if parse_error is not None:
            return parse_error
        if isinstance(message, list):
            return error_response(
                400, INVALID_REQUEST, "Invalid Request: batch requests are not supported",
                context="batch", log=self.logger
            )

        if entry is None:
            entry = self.open_session()
        entry.touch()
        headers = session_headers(entry.session_id)

        start_time = time.time()
        try:
            response = await entry.handler.handle_message(message)
        except Exception:
            self.logger.error(f"Unhandled error processing message for session {entry.session_id}", exc_info=True)
            return error_response(
                500, INTERNAL_ERROR, "Internal error", request_id=message_id(message),
                headers=headers, context="internal-error", log=self.logger
            )
        entry.touch()

        method = message.get("method") if isinstance(message, dict) else None
        if response is None:
            return DeliveredResponse(
                None, status_code=202, headers=headers, media_type=None,
                context=f"{method} accepted", log=self.logger
            )

        self.logger.debug(
            f"{method} handled in {time.time() - start_time:.4f}s",
            extra={"session_id": entry.session_id}
        )
        return DeliveredResponse(response, headers=headers, context=str(method), log=self.logger)

    async def handle_get(self, request: Request) -> Response:
        """Server-initiated streams are not offered on this transport."""
        return DeliveredResponse(
            {"jsonrpc": "2.0", "id": None, "error": {"code": INVALID_REQUEST, "message": "Method Not Allowed"}},
            status_code=405,
            headers={"Allow": "POST, DELETE"},
            context="get-not-allowed",
            log=self.logger,
        )

    async def handle_delete(self, request: Request) -> Response:
        """Explicitly close the session named by the Mcp-Session-Id header."""
        session_id = request_session_id(request)
        if not session_id:
            return error_response(
                400, INVALID_REQUEST, "Missing Mcp-Session-Id header",
                context="delete-missing-session", log=self.logger
            )
        if not self.close_session(session_id, reason="client request"):
            return exception_response(
                404, SessionNotFoundError(session_id), context="delete-session-not-found", log=self.logger
            )
        return DeliveredResponse(None, status_code=204, media_type=None, context="delete", log=self.logger)

    def sweep_idle(self, now: Optional[float] = None) -> int:
        """Close sessions idle for longer than idle_timeout; returns how many were closed."""
        if self.idle_timeout <= 0:
            return 0
        expired = self.registry.idle_sessions(self.idle_timeout, now=now)
        for entry in expired:
            self.close_session(entry.session_id, reason="idle timeout")
        return len(expired)

    async def run_sweeper(self, interval: Optional[float] = None) -> None:
        """Background loop closing idle sessions until cancelled."""
        if interval is None:
            interval = max(1.0, min(60.0, self.idle_timeout / 2))
        while True:
            await asyncio.sleep(interval)
            closed = self.sweep_idle()
            if closed:
                self.logger.info(f"Expired {closed} idle session(s)")
