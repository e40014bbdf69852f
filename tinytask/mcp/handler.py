"""
Protocol handler: JSON-RPC 2.0 dispatch for the MCP method surface.

One ProtocolHandler is created per client session. It owns that session's
protocol state (initialization, client info, request bookkeeping) and shares
the stateless domain services with every other handler.
"""
import json
import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from tinytask import __version__
from tinytask.dependencies.services import ServiceContainer
from tinytask.exceptions import TinyTaskError, ValidationError, StorageError, SessionNotFoundError
from tinytask.mcp.catalog import OPERATION_MODELS, TOOL_DEFINITIONS
from tinytask.middleware.logging_setup import TRACE
from tinytask.monitoring import mcp_tool_calls_total
from tinytask.tracing import trace_span

SERVER_NAME = "tinytask-mcp"
LATEST_PROTOCOL_VERSION = "2025-03-26"
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = ValidationError.code
INTERNAL_ERROR = -32603
SESSION_NOT_FOUND = SessionNotFoundError.code
NOT_INITIALIZED = -32002

# Methods allowed before initialize
_PRE_INIT_METHODS = ("initialize", "ping")


def jsonrpc_error(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    """Build a JSON-RPC error response."""
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def jsonrpc_result(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


@dataclass
class OperationResult:
    """Outcome of a tool invocation, success or failure."""
    payload: Any
    is_error: bool = False

    @property
    def text(self) -> str:
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, indent=2, default=str)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": [{"type": "text", "text": self.text}],
            "isError": self.is_error,
        }


def _signup(services: ServiceContainer, params) -> Dict[str, Any]:
    task = services.task_service.claim_next_task(params.agent_name)
    if task is None:
        return {
            "agent": params.agent_name,
            "task": None,
            "message": f"No idle tasks available in queue for agent: {params.agent_name}",
        }
    return {"message": f"Task #{task['id']} claimed and set to working status", "task": task}


def _move(services: ServiceContainer, params) -> Dict[str, Any]:
    task = services.task_service.move_task(
        params.task_id, params.current_agent, params.new_agent, params.comment
    )
    return {
        "message": f"Task #{params.task_id} transferred from {params.current_agent} to {params.new_agent}",
        "task": task,
    }


def _deleted(entity: str, entity_id: int) -> Dict[str, Any]:
    return {"success": True, "message": f"{entity} {entity_id} deleted successfully"}


def _delete_task(services: ServiceContainer, params) -> Dict[str, Any]:
    services.task_service.delete_task(params.id)
    return _deleted("Task", params.id)


def _delete_comment(services: ServiceContainer, params) -> Dict[str, Any]:
    services.comment_service.delete_comment(params.id)
    return _deleted("Comment", params.id)


def _delete_link(services: ServiceContainer, params) -> Dict[str, Any]:
    services.link_service.delete_link(params.id)
    return _deleted("Link", params.id)


def _list_tasks(services: ServiceContainer, params) -> Dict[str, Any]:
    tasks = services.task_service.list_tasks(params)
    return {"count": len(tasks), "tasks": tasks}


def _queue(services: ServiceContainer, params) -> Dict[str, Any]:
    tasks = services.task_service.get_queue(params.agent_name)
    return {"agent": params.agent_name, "count": len(tasks), "tasks": tasks}


def _list_comments(services: ServiceContainer, params) -> Dict[str, Any]:
    comments = services.comment_service.list_comments(params.task_id)
    return {"task_id": params.task_id, "count": len(comments), "comments": comments}


def _list_links(services: ServiceContainer, params) -> Dict[str, Any]:
    links = services.link_service.list_links(params.task_id)
    return {"task_id": params.task_id, "count": len(links), "links": links}


# Tool name -> callable(services, validated params) returning the result payload
OPERATIONS: Dict[str, Callable[[ServiceContainer, Any], Any]] = {
    "create_task": lambda s, p: s.task_service.create_task(p),
    "update_task": lambda s, p: s.task_service.update_task(p),
    "get_task": lambda s, p: s.task_service.get_task(p.id, include_relations=True),
    "delete_task": _delete_task,
    "archive_task": lambda s, p: s.task_service.archive_task(p.id),
    "list_tasks": _list_tasks,
    "get_my_queue": _queue,
    "signup_for_task": _signup,
    "move_task": _move,
    "add_comment": lambda s, p: s.comment_service.add_comment(p),
    "update_comment": lambda s, p: s.comment_service.update_comment(p),
    "delete_comment": _delete_comment,
    "list_comments": _list_comments,
    "add_link": lambda s, p: s.link_service.add_link(p),
    "update_link": lambda s, p: s.link_service.update_link(p),
    "delete_link": _delete_link,
    "list_links": _list_links,
}


class ProtocolHandler:
    """Per-session MCP protocol handler."""

    def __init__(
        self,
        services: ServiceContainer,
        session_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.services = services
        self.session_id = session_id
        self.logger = logger or logging.getLogger(__name__)
        self.initialized = False
        self.client_ready = False
        self.client_info: Optional[Dict[str, Any]] = None
        self.protocol_version: Optional[str] = None
        self.request_count = 0
        self.last_request_id: Any = None
        self.closed = False
        self._lock = asyncio.Lock()

    def list_operations(self) -> List[Dict[str, Any]]:
        """Static metadata for every tool."""
        return list(TOOL_DEFINITIONS)

    def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> OperationResult:
        """
        Validate arguments and run the named tool.

        Domain, storage and validation errors come back as an error
        OperationResult; they never escape this method.
        """
        start_time = time.time()
        arguments = arguments if arguments is not None else {}
        self.logger.debug(f"Tool call received: {name}", extra={"session_id": self.session_id})
        self.logger.log(TRACE, f"Tool call arguments: {name} {arguments}")

        operation = OPERATIONS.get(name)
        if operation is None:
            self.logger.warning(f"Unknown tool requested: {name}")
            mcp_tool_calls_total.labels(tool="unknown", outcome="error").inc()
            return OperationResult(f"Unknown tool: {name}", is_error=True)

        try:
            with trace_span("mcp.tools.call", {"mcp.tool": name, "mcp.session_id": self.session_id}):
                if not isinstance(arguments, dict):
                    raise ValidationError(
                        f"Invalid arguments for {name}: expected an object", fields=["(arguments)"]
                    )
                try:
                    params = OPERATION_MODELS[name].model_validate(arguments)
                except PydanticValidationError as e:
                    raise ValidationError.from_pydantic(name, e)
                payload = operation(self.services, params)
        except TinyTaskError as e:
            duration = time.time() - start_time
            level = logging.ERROR if isinstance(e, StorageError) else logging.WARNING
            self.logger.log(
                level,
                f"Tool execution failed: {name}: {e.message}",
                extra={"error_type": type(e).__name__, "duration_seconds": duration}
            )
            mcp_tool_calls_total.labels(tool=name, outcome="error").inc()
            return OperationResult(f"Error calling tool {name}: {e.message}", is_error=True)
        except Exception as e:
            self.logger.error(f"Unexpected error in tool {name}", exc_info=True)
            mcp_tool_calls_total.labels(tool=name, outcome="error").inc()
            return OperationResult(f"Error calling tool {name}: {e}", is_error=True)

        duration = time.time() - start_time
        self.logger.debug(f"Tool execution completed: {name}", extra={"duration_seconds": duration})
        mcp_tool_calls_total.labels(tool=name, outcome="success").inc()
        return OperationResult(payload)

    async def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        """
        Process one JSON-RPC message.

        Messages are handled one at a time per handler, in arrival order.

        Returns:
            The response object, or None for notifications and client responses
        """
        async with self._lock:
            return await self._dispatch(message)

    async def _dispatch(self, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, dict):
            return jsonrpc_error(None, INVALID_REQUEST, "Invalid Request: expected a JSON object")

        request_id = message.get("id")
        method = message.get("method")
        is_notification = "id" not in message

        if method is None and not is_notification and ("result" in message or "error" in message):
            self.logger.debug(f"Ignoring client response for id {request_id}")
            return None
        if message.get("jsonrpc") != "2.0" or not isinstance(method, str):
            if is_notification:
                self.logger.warning("Dropping malformed notification")
                return None
            return jsonrpc_error(request_id, INVALID_REQUEST, "Invalid Request")

        if self.closed:
            if is_notification:
                return None
            return jsonrpc_error(request_id, INTERNAL_ERROR, "Session is closed")

        params = message.get("params") or {}

        if is_notification:
            self._handle_notification(method, params)
            return None

        self.request_count += 1
        self.last_request_id = request_id

        if not self.initialized and method not in _PRE_INIT_METHODS:
            return jsonrpc_error(request_id, NOT_INITIALIZED, "Server not initialized")
        if not isinstance(params, dict):
            return jsonrpc_error(request_id, INVALID_PARAMS, "Invalid params: expected an object")

        if method == "initialize":
            return jsonrpc_result(request_id, self._initialize(params))
        elif method == "ping":
            return jsonrpc_result(request_id, {})
        elif method == "tools/list":
            return jsonrpc_result(request_id, {"tools": self.list_operations()})
        elif method == "prompts/list":
            return jsonrpc_result(request_id, {"prompts": []})
        elif method == "resources/list":
            return jsonrpc_result(request_id, {"resources": []})
        elif method == "tools/call":
            tool_name = params.get("name")
            if not isinstance(tool_name, str) or not tool_name:
                return jsonrpc_error(request_id, INVALID_PARAMS, "Invalid params: tool name is required")
            result = await run_in_threadpool(self.invoke, tool_name, params.get("arguments"))
            return jsonrpc_result(request_id, result.to_dict())
        else:
            return jsonrpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        self.protocol_version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        self.client_info = params.get("clientInfo")
        self.initialized = True
        self.logger.info(
            f"Session initialized (protocol {self.protocol_version})",
            extra={"session_id": self.session_id, "client_info": self.client_info}
        )
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    def _handle_notification(self, method: str, params: Any) -> None:
        if method == "notifications/initialized":
            self.client_ready = True
        elif method == "notifications/cancelled":
            self.logger.debug(f"Client cancelled request {params.get('requestId') if isinstance(params, dict) else None}")
        else:
            self.logger.debug(f"Ignoring notification: {method}")

    def close(self) -> None:
        """Mark the handler closed; later requests are refused."""
        if not self.closed:
            self.closed = True
            self.logger.debug(
                f"Protocol handler closed after {self.request_count} requests",
                extra={"session_id": self.session_id}
            )


class ProtocolHandlerFactory:
    """Builds a fresh ProtocolHandler for each session, all sharing one ServiceContainer."""

    def __init__(self, services: ServiceContainer, logger: Optional[logging.Logger] = None):
        self.services = services
        self.logger = logger

    def create(self, session_id: Optional[str] = None) -> ProtocolHandler:
        return ProtocolHandler(self.services, session_id=session_id, logger=self.logger)
