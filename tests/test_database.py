"""
Tests for the SQLite storage engine.
"""
import re

import pytest

from tinytask.exceptions import ExecuteError, QueryError
from tinytask.storage import TaskDatabase

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}$")


def _insert_task(db, title="Task"):
    return db.execute("INSERT INTO tasks (title) VALUES (?)", (title,)).lastrowid


class TestDatabaseSetup:
    """Schema and connection configuration."""

    def test_creates_schema(self, temp_db):
        rows = temp_db.query("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
        names = {row["name"] for row in rows}
        assert {"tasks", "comments", "links"} <= names

    def test_creates_missing_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "tasks.db"
        TaskDatabase(str(path))
        assert path.exists()

    def test_wal_mode_enabled(self, temp_db):
        row = temp_db.query_one("PRAGMA journal_mode")
        assert row["journal_mode"] == "wal"

    def test_foreign_keys_enabled(self, temp_db):
        row = temp_db.query_one("PRAGMA foreign_keys")
        assert row["foreign_keys"] == 1

    def test_busy_timeout_applied(self, tmp_path):
        db = TaskDatabase(str(tmp_path / "t.db"), busy_timeout_ms=45000)
        row = db.query_one("PRAGMA busy_timeout")
        assert row["timeout"] == 45000

    def test_busy_timeout_has_floor(self, tmp_path):
        db = TaskDatabase(str(tmp_path / "t.db"), busy_timeout_ms=500)
        assert db.busy_timeout_ms == 10000

    def test_reopen_keeps_data(self, tmp_path):
        path = str(tmp_path / "t.db")
        first = TaskDatabase(path)
        _insert_task(first, "persisted")
        second = TaskDatabase(path)
        assert second.query_one("SELECT title FROM tasks")["title"] == "persisted"


class TestQueryPrimitives:
    """query, query_one and execute."""

    def test_execute_returns_rowcount_and_lastrowid(self, temp_db):
        result = temp_db.execute("INSERT INTO tasks (title) VALUES (?)", ("A",))
        assert result.rowcount == 1
        assert result.lastrowid is not None

    def test_query_returns_dicts(self, temp_db):
        _insert_task(temp_db, "A")
        _insert_task(temp_db, "B")
        rows = temp_db.query("SELECT title FROM tasks ORDER BY id")
        assert rows == [{"title": "A"}, {"title": "B"}]

    def test_query_one_no_match_returns_none(self, temp_db):
        assert temp_db.query_one("SELECT * FROM tasks WHERE id = ?", (999,)) is None

    def test_malformed_query_raises_query_error(self, temp_db):
        with pytest.raises(QueryError):
            temp_db.query("SELEC nonsense")

    def test_malformed_query_one_raises_query_error(self, temp_db):
        with pytest.raises(QueryError):
            temp_db.query_one("SELECT * FROM no_such_table")

    def test_constraint_violation_raises_execute_error(self, temp_db):
        with pytest.raises(ExecuteError) as exc_info:
            temp_db.execute("INSERT INTO tasks (title, status) VALUES (?, ?)", ("A", "bogus"))
        assert "CHECK" in exc_info.value.message

    def test_foreign_key_violation_raises_execute_error(self, temp_db):
        with pytest.raises(ExecuteError):
            temp_db.execute("INSERT INTO comments (task_id, content) VALUES (?, ?)", (999, "orphan"))

    def test_timestamps_have_millisecond_precision(self, temp_db):
        task_id = _insert_task(temp_db)
        row = temp_db.query_one("SELECT created_at, updated_at FROM tasks WHERE id = ?", (task_id,))
        assert TIMESTAMP_RE.match(row["created_at"])
        assert TIMESTAMP_RE.match(row["updated_at"])

    def test_delete_cascades_to_comments_and_links(self, temp_db):
        task_id = _insert_task(temp_db)
        temp_db.execute("INSERT INTO comments (task_id, content) VALUES (?, ?)", (task_id, "c"))
        temp_db.execute("INSERT INTO links (task_id, url) VALUES (?, ?)", (task_id, "http://x"))

        temp_db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))

        assert temp_db.query("SELECT * FROM comments") == []
        assert temp_db.query("SELECT * FROM links") == []


class TestTransactions:
    """All-or-nothing transaction primitive."""

    def test_commit_returns_body_result(self, temp_db):
        result = temp_db.transaction(lambda: _insert_task(temp_db, "in tx"))
        assert temp_db.query_one("SELECT title FROM tasks WHERE id = ?", (result,))["title"] == "in tx"

    def test_exception_rolls_back_all_writes(self, temp_db):
        def body():
            _insert_task(temp_db, "first")
            _insert_task(temp_db, "second")
            raise ValueError("boom")

        with pytest.raises(ValueError):
            temp_db.transaction(body)

        assert temp_db.query("SELECT * FROM tasks") == []

    def test_storage_error_inside_body_rolls_back(self, temp_db):
        def body():
            _insert_task(temp_db, "kept?")
            temp_db.execute("INSERT INTO comments (task_id, content) VALUES (?, ?)", (999, "orphan"))

        with pytest.raises(ExecuteError):
            temp_db.transaction(body)

        assert temp_db.query("SELECT * FROM tasks") == []

    def test_in_transaction_flag(self, temp_db):
        seen = []
        assert temp_db.in_transaction is False
        temp_db.transaction(lambda: seen.append(temp_db.in_transaction))
        assert seen == [True]
        assert temp_db.in_transaction is False

    def test_nested_transaction_joins_outer(self, temp_db):
        def inner():
            _insert_task(temp_db, "inner")

        def outer():
            _insert_task(temp_db, "outer")
            temp_db.transaction(inner)
            raise RuntimeError("abort outer")

        with pytest.raises(RuntimeError):
            temp_db.transaction(outer)

        # The inner write belonged to the outer transaction and was rolled back with it
        assert temp_db.query("SELECT * FROM tasks") == []

    def test_reads_inside_transaction_see_own_writes(self, temp_db):
        def body():
            task_id = _insert_task(temp_db, "visible")
            return temp_db.query_one("SELECT title FROM tasks WHERE id = ?", (task_id,))

        assert temp_db.transaction(body) == {"title": "visible"}
