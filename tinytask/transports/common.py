"""
Helpers shared by the HTTP transports.
"""
import json
import uuid
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi import Request
from fastapi.responses import Response

from tinytask.exceptions import TinyTaskError
from tinytask.mcp.handler import jsonrpc_error, PARSE_ERROR
from tinytask.middleware.logging_setup import TRACE

SESSION_HEADER = "Mcp-Session-Id"
ALT_SESSION_HEADER = "X-Session-Id"
SESSION_QUERY_PARAM = "sessionId"

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return str(uuid.uuid4())


class DeliveredResponse(Response):
    """
    Response that logs how many body bytes it actually wrote.

    A response expected to carry a body that goes out empty, or whose write
    fails, is logged at ERROR as undelivered.
    """

    def __init__(
        self,
        content: Any = None,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        media_type: Optional[str] = "application/json",
        context: str = "",
        log: Optional[logging.Logger] = None,
    ):
        if content is not None and not isinstance(content, (bytes, str)):
            content = json.dumps(content, default=str)
        super().__init__(content=content, status_code=status_code, headers=headers, media_type=media_type)
        self.expects_body = content is not None
        self.context = context
        self.bytes_written = 0
        self.log = log or logger

    async def __call__(self, scope, receive, send) -> None:
        try:
            await send({
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            })
            await send({"type": "http.response.body", "body": self.body})
        except Exception:
            self.log.error(
                f"Undelivered response ({self.context}): write failed, status={self.status_code}",
                exc_info=True
            )
            raise
        self.bytes_written = len(self.body)

        if self.expects_body and self.bytes_written == 0:
            self.log.error(f"Undelivered response ({self.context}): 0 bytes written, status={self.status_code}")
        else:
            self.log.debug(
                f"Response written ({self.context}): {self.bytes_written} bytes, status={self.status_code}",
                extra={"bytes_written": self.bytes_written, "status_code": self.status_code}
            )
        if self.background is not None:
            await self.background()


def error_response(
    status_code: int,
    code: int,
    message: str,
    request_id: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    context: str = "",
    log: Optional[logging.Logger] = None,
) -> DeliveredResponse:
    """HTTP error response whose body is a JSON-RPC error object."""
    return DeliveredResponse(
        jsonrpc_error(request_id, code, message),
        status_code=status_code,
        headers=headers,
        context=context or "error",
        log=log,
    )


def exception_response(
    status_code: int,
    exc: TinyTaskError,
    request_id: Any = None,
    context: str = "",
    log: Optional[logging.Logger] = None,
) -> DeliveredResponse:
    """Error response carrying the exception's own JSON-RPC code and message."""
    return error_response(status_code, exc.code, exc.message, request_id=request_id, context=context, log=log)


async def read_json_body(request: Request) -> Tuple[Any, Optional[DeliveredResponse]]:
    """
    Parse the request body as JSON.

    Returns:
        (message, None) on success or (None, 400 parse-error response)
    """
    raw = await request.body()
    logger.log(TRACE, f"Request body: {raw[:2000]!r}")
    try:
        return json.loads(raw), None
    except (ValueError, UnicodeDecodeError) as e:
        return None, error_response(400, PARSE_ERROR, f"Parse error: {e}", context="parse")


def is_json_content(request: Request) -> bool:
    """True when the request has no content type or a JSON one."""
    content_type = request.headers.get("content-type")
    return not content_type or "json" in content_type.lower()


def request_session_id(request: Request, allow_query: bool = False) -> Optional[str]:
    """Session id from the session header (or, if allowed, the query string)."""
    if allow_query:
        value = request.query_params.get(SESSION_QUERY_PARAM)
        if value:
            return value
    for header in (SESSION_HEADER, ALT_SESSION_HEADER) if allow_query else (SESSION_HEADER,):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return None


def message_id(message: Any) -> Any:
    return message.get("id") if isinstance(message, dict) else None


def session_headers(session_id: str) -> Dict[str, str]:
    return {SESSION_HEADER: session_id}
