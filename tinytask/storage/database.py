"""
Storage engine for the TinyTask service.

Wraps an SQLite database file and exposes parameterized query/execute
primitives plus an all-or-nothing transaction primitive. Each call outside a
transaction uses its own short-lived connection; a transaction pins one
connection to the calling thread until it commits or rolls back.
"""
import os
import time
import sqlite3
import logging
import threading
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, TypeVar

from tinytask.exceptions import QueryError, ExecuteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Queries slower than this (seconds) are logged at WARNING
QUERY_SLOW_THRESHOLD = float(os.getenv("DB_QUERY_SLOW_THRESHOLD", "0.1"))

# Millisecond-precision UTC timestamp, used for every server-assigned time
NOW_SQL = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"

SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'idle'
            CHECK(status IN ('idle', 'working', 'complete')),
        assigned_to TEXT,
        created_by TEXT,
        priority INTEGER NOT NULL DEFAULT 0,
        tags TEXT,
        created_at TEXT NOT NULL DEFAULT {NOW_SQL},
        updated_at TEXT NOT NULL DEFAULT {NOW_SQL},
        archived_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS comments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id INTEGER NOT NULL,
        content TEXT NOT NULL,
        created_by TEXT,
        created_at TEXT NOT NULL DEFAULT {NOW_SQL},
        updated_at TEXT NOT NULL DEFAULT {NOW_SQL},
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS links (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id INTEGER NOT NULL,
        url TEXT NOT NULL,
        description TEXT,
        created_by TEXT,
        created_at TEXT NOT NULL DEFAULT {NOW_SQL},
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
    )
    """,
    # Queue lookups: assignee + status, ordered by priority then age
    """
    CREATE INDEX IF NOT EXISTS idx_tasks_queue
        ON tasks(assigned_to, status, archived_at, priority DESC, created_at)
    """,
    "CREATE INDEX IF NOT EXISTS idx_comments_task ON comments(task_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_links_task ON links(task_id, created_at)",
]


class ExecuteResult(NamedTuple):
    """Outcome of a write statement."""
    rowcount: int
    lastrowid: Optional[int]


class TaskDatabase:
    """SQLite storage engine with a thread-bound transaction primitive."""

    def __init__(self, db_path: str, busy_timeout_ms: int = 30000):
        """
        Open (and if needed create) the database file and its schema.

        Args:
            db_path: Path to the SQLite database file
            busy_timeout_ms: How long a writer waits for a competing lock
                before failing; values under 10 seconds are raised to 10 seconds
        """
        self.db_path = db_path
        self.busy_timeout_ms = max(int(busy_timeout_ms), 10000)
        self._local = threading.local()
        self._ensure_db_directory()
        self._init_schema()

    def _ensure_db_directory(self):
        """Ensure the database directory exists."""
        db_dir = os.path.dirname(os.path.abspath(self.db_path))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Open a configured connection in autocommit mode."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _init_schema(self):
        """Enable WAL mode and create tables if they do not exist."""
        conn = self._get_connection()
        try:
            mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
            if str(mode).lower() != "wal":
                logger.warning(f"Could not enable WAL mode, journal_mode={mode}")
            conn.execute("PRAGMA wal_autocheckpoint = 1000")
            for statement in SCHEMA:
                conn.execute(statement)
            logger.info(f"Database initialized at {self.db_path}")
        finally:
            conn.close()

    def _current_connection(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "conn", None)

    @property
    def in_transaction(self) -> bool:
        """True when the calling thread is inside transaction()."""
        return self._current_connection() is not None

    def _run(self, sql: str, params: Sequence[Any], fetch: Optional[str]):
        """Run one statement on the pinned or a fresh connection."""
        conn = self._current_connection()
        owned = conn is None
        if owned:
            conn = self._get_connection()
        start_time = time.time()
        try:
            cursor = conn.execute(sql, tuple(params))
            if fetch == "all":
                result = [dict(row) for row in cursor.fetchall()]
            elif fetch == "one":
                row = cursor.fetchone()
                result = dict(row) if row is not None else None
            else:
                result = ExecuteResult(cursor.rowcount, cursor.lastrowid)
        finally:
            if owned:
                conn.close()

        duration = time.time() - start_time
        if duration >= QUERY_SLOW_THRESHOLD:
            logger.warning(
                f"Slow query: {duration:.4f}s - {' '.join(sql.split())[:200]}",
                extra={"duration": duration, "params_count": len(params)}
            )
        return result

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """
        Run a read query and return every row.

        Raises:
            QueryError: On malformed SQL or a driver failure
        """
        try:
            return self._run(sql, params, "all")
        except sqlite3.Error as e:
            raise QueryError(f"Query failed: {e}") from e

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        """
        Run a read query and return the first row, or None when nothing matches.

        Raises:
            QueryError: On malformed SQL or a driver failure
        """
        try:
            return self._run(sql, params, "one")
        except sqlite3.Error as e:
            raise QueryError(f"QueryOne failed: {e}") from e

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """
        Run an INSERT/UPDATE/DELETE statement.

        Raises:
            ExecuteError: Wrapping the driver message (constraint violations, I/O)
        """
        try:
            return self._run(sql, params, None)
        except sqlite3.Error as e:
            raise ExecuteError(f"Execute failed: {e}") from e

    def transaction(self, body: Callable[[], T]) -> T:
        """
        Run body atomically.

        The write lock is taken up front (BEGIN IMMEDIATE) so two concurrent
        read-then-write bodies are serialized: the second one waits up to the
        busy timeout and then sees the first one's committed writes. Any
        exception raised by body rolls the transaction back and propagates.
        A transaction() call made inside body joins the enclosing transaction.

        Args:
            body: Zero-argument callable issuing query/execute calls

        Returns:
            Whatever body returns
        """
        if self._current_connection() is not None:
            return body()

        conn = self._get_connection()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise ExecuteError(f"Could not begin transaction: {e}") from e

            self._local.conn = conn
            try:
                result = body()
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
                raise
            finally:
                self._local.conn = None

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise ExecuteError(f"Commit failed: {e}") from e
            return result
        finally:
            conn.close()
