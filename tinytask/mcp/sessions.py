"""
Session registry: session id -> (transport adapter, protocol handler).

The registry only stores and hands out entries. Transports create the
handler, register it, and close it again when they remove the session.
"""
import time
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from tinytask.exceptions import SessionNotFoundError
from tinytask.mcp.handler import ProtocolHandler
from tinytask.monitoring import mcp_active_sessions

logger = logging.getLogger(__name__)


@dataclass
class SessionEntry:
    """One live session."""
    session_id: str
    transport: Any
    handler: ProtocolHandler
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.last_seen = time.time()

    def idle_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.last_seen


class SessionRegistry:
    """Thread-safe session map shared by a transport and the app lifecycle."""

    def __init__(self, transport_kind: str = "streamable-http"):
        self.transport_kind = transport_kind
        self._sessions: Dict[str, SessionEntry] = {}
        self._lock = threading.Lock()

    def _update_gauge(self) -> None:
        mcp_active_sessions.labels(transport=self.transport_kind).set(len(self._sessions))

    def create(self, session_id: str, transport: Any, handler: ProtocolHandler) -> SessionEntry:
        """
        Register a new session.

        Raises:
            ValueError: If the session id is already registered
        """
        entry = SessionEntry(session_id=session_id, transport=transport, handler=handler)
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session already registered: {session_id}")
            self._sessions[session_id] = entry
            self._update_gauge()
        logger.info(
            f"Session created: {session_id}",
            extra={"session_id": session_id, "transport": self.transport_kind}
        )
        return entry

    def get(self, session_id: str) -> Optional[SessionEntry]:
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: str) -> SessionEntry:
        """
        Look up a session.

        Raises:
            SessionNotFoundError: If the id is not registered
        """
        entry = self.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry

    def remove(self, session_id: str) -> Optional[SessionEntry]:
        """Drop a session; returns the removed entry, or None if it was not registered."""
        with self._lock:
            entry = self._sessions.pop(session_id, None)
            self._update_gauge()
        if entry is not None:
            logger.info(
                f"Session removed: {session_id}",
                extra={"session_id": session_id, "lifetime_seconds": time.time() - entry.created_at}
            )
        return entry

    def for_each(self, visitor: Callable[[SessionEntry], Any]) -> None:
        """Visit a snapshot of all entries; the visitor may remove sessions."""
        with self._lock:
            entries = list(self._sessions.values())
        for entry in entries:
            visitor(entry)

    def idle_sessions(self, idle_timeout: float, now: Optional[float] = None) -> List[SessionEntry]:
        """Entries not seen for longer than idle_timeout seconds."""
        now = now if now is not None else time.time()
        with self._lock:
            return [e for e in self._sessions.values() if e.idle_seconds(now) > idle_timeout]

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
