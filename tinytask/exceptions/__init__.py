"""
Exceptions and HTTP exception handlers.
"""
from .errors import (
    TinyTaskError,
    ConfigurationError,
    ValidationError,
    NotFoundError,
    OwnershipError,
    InvalidStateError,
    StorageError,
    QueryError,
    ExecuteError,
    SessionNotFoundError,
)

__all__ = [
    "TinyTaskError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "OwnershipError",
    "InvalidStateError",
    "StorageError",
    "QueryError",
    "ExecuteError",
    "SessionNotFoundError",
]
