"""
Error taxonomy for the TinyTask service.

Domain and storage errors are raised by services and the storage engine and
converted into error results at the protocol handler boundary. Transport
errors (missing/unknown session) are rejected by the transports with a
client-error status and never reach the services.
"""
from typing import Any, Dict, List, Optional


class TinyTaskError(Exception):
    """Base class for all TinyTask errors."""

    # JSON-RPC error code used when the error has to cross the protocol boundary
    code: int = -32603

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "code": self.code,
        }


class ConfigurationError(TinyTaskError):
    """Invalid startup configuration (mode, port, log level)."""


class ValidationError(TinyTaskError):
    """Malformed or missing operation arguments."""

    code = -32602

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])

    @classmethod
    def from_pydantic(cls, operation: str, exc) -> "ValidationError":
        """Build from a pydantic ValidationError, listing every offending field."""
        fields = []
        details = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error.get("loc", ())) or "(arguments)"
            fields.append(field)
            details.append(f"{field}: {error.get('msg', 'invalid value')}")
        message = f"Invalid arguments for {operation}: " + "; ".join(details)
        return cls(message, fields=fields)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


class NotFoundError(TinyTaskError):
    """Referenced task, comment or link does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class OwnershipError(TinyTaskError):
    """Hand-off attempted by an agent that does not own the task."""

    def __init__(self, task_id: int, expected: str, actual: Optional[str]):
        owner = actual if actual else "no one"
        super().__init__(
            f"Task {task_id} is not assigned to {expected} (currently assigned to {owner})"
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual


class InvalidStateError(TinyTaskError):
    """Operation attempted against a task whose state forbids it."""


class StorageError(TinyTaskError):
    """Base class for storage-layer failures."""


class QueryError(StorageError):
    """A read query failed (malformed SQL, constraint mismatch, I/O)."""


class ExecuteError(StorageError):
    """A write statement failed; wraps the driver message."""


class SessionNotFoundError(TinyTaskError):
    """A request presented a session id that is not registered."""

    code = -32001

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
