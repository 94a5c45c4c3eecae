"""Tests for Statement handles, error normalization and busy detection."""

import sqlite3
import threading
import time
from pathlib import Path

import pytest

from sqlite_containers.storage.statement import (
    BUSY_RETRY_DELAY_MS,
    SQLiteContainerError,
    Statement,
    is_busy_error,
    normalize_error,
)


@pytest.fixture
def conn():
    """Create an autocommit in-memory connection with a small table."""
    connection = sqlite3.connect(":memory:", isolation_level=None)
    connection.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL UNIQUE)")
    yield connection
    connection.close()


class TestBindAndExecute:
    """Tests for binding parameters and running statements."""

    def test_execute_returns_rowcount(self, conn: sqlite3.Connection):
        """Test that execute reports changed rows."""
        stmt = Statement(conn, "INSERT INTO items (name) VALUES (?)")
        stmt.bind(1, "a")
        assert stmt.execute() == 1

    def test_bind_all(self, conn: sqlite3.Connection):
        """Test binding several parameters in order."""
        stmt = Statement(conn, "INSERT INTO items (id, name) VALUES (?, ?)")
        stmt.bind_all(7, "seven")
        stmt.execute()
        assert conn.execute("SELECT name FROM items WHERE id = 7").fetchone() == ("seven",)

    def test_bind_index_out_of_range(self, conn: sqlite3.Connection):
        """Test that bind indices are 1-based and bounded."""
        stmt = Statement(conn, "SELECT ? + ?")
        with pytest.raises(SQLiteContainerError):
            stmt.bind(0, 1)
        with pytest.raises(SQLiteContainerError):
            stmt.bind(3, 1)

    def test_bind_unsupported_value(self, conn: sqlite3.Connection):
        """Test that unbindable values raise TypeError."""
        stmt = Statement(conn, "SELECT ?")
        with pytest.raises(TypeError):
            stmt.bind(1, object())

    def test_constraint_violation_normalized(self, conn: sqlite3.Connection):
        """Test that engine errors surface as SQLiteContainerError with a code."""
        stmt = Statement(conn, "INSERT INTO items (name) VALUES (?)")
        stmt.bind(1, "dup")
        stmt.execute()
        with pytest.raises(SQLiteContainerError) as exc_info:
            stmt.execute()
        assert exc_info.value.error_code != -1
        assert "Error code" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)

    def test_clear_bindings(self, conn: sqlite3.Connection):
        """Test that cleared bindings are NULL."""
        stmt = Statement(conn, "SELECT ?")
        stmt.bind(1, "x")
        stmt.clear_bindings()
        assert stmt.fetch_one() == (None,)


class TestStepAndFetch:
    """Tests for row iteration."""

    @pytest.fixture
    def filled(self, conn: sqlite3.Connection) -> sqlite3.Connection:
        conn.executemany("INSERT INTO items (name) VALUES (?)", [("a",), ("b",), ("c",)])
        return conn

    def test_step_and_extract(self, filled: sqlite3.Connection):
        """Test stepping through rows and reading columns."""
        stmt = Statement(filled, "SELECT id, name FROM items ORDER BY id")
        names = []
        while stmt.step() is not None:
            names.append(stmt.extract(1))
        assert names == ["a", "b", "c"]
        stmt.reset()

    def test_extract_without_row(self, filled: sqlite3.Connection):
        """Test that extract needs a current row."""
        stmt = Statement(filled, "SELECT name FROM items")
        with pytest.raises(SQLiteContainerError):
            stmt.extract(0)

    def test_reset_restarts(self, filled: sqlite3.Connection):
        """Test that reset makes the next step start over."""
        stmt = Statement(filled, "SELECT name FROM items ORDER BY id")
        assert stmt.step() == ("a",)
        stmt.reset()
        assert stmt.step() == ("a",)
        stmt.reset()

    def test_fetch_one_and_all(self, filled: sqlite3.Connection):
        """Test single and full reads leave the statement reusable."""
        stmt = Statement(filled, "SELECT name FROM items ORDER BY id")
        assert stmt.fetch_one() == ("a",)
        assert stmt.fetch_all() == [("a",), ("b",), ("c",)]
        assert stmt.fetch_one() == ("a",)

    def test_fetch_one_no_rows(self, conn: sqlite3.Connection):
        """Test that an empty result gives None."""
        assert Statement(conn, "SELECT name FROM items").fetch_one() is None


class TestErrors:
    """Tests for error helpers."""

    def test_normalize_passthrough(self):
        """Test that container errors are returned unchanged."""
        error = SQLiteContainerError("x", 5)
        assert normalize_error(error, "fallback") is error

    def test_normalize_generic_exception(self):
        """Test that other exceptions keep their message."""
        error = normalize_error(RuntimeError("boom"), "fallback")
        assert str(error) == "boom"
        assert error.error_code == -1

    def test_normalize_empty_message(self):
        """Test that a message-less exception gets the fallback text."""
        assert str(normalize_error(RuntimeError(), "fallback")) == "fallback"

    def test_is_busy_error(self):
        """Test busy detection by message."""
        assert is_busy_error(sqlite3.OperationalError("database is locked"))
        assert not is_busy_error(sqlite3.OperationalError("no such table: x"))
        assert not is_busy_error(ValueError("database is locked"))


class TestBusyRetry:
    """Tests for retrying on SQLITE_BUSY."""

    def test_retries_until_lock_released(self, tmp_path: Path):
        """Test that a statement blocked by another connection eventually runs."""
        db_path = tmp_path / "busy.db"
        holder = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        holder.execute("CREATE TABLE t (x INTEGER)")
        waiter = sqlite3.connect(db_path, isolation_level=None, timeout=0)

        holder.execute("BEGIN EXCLUSIVE")
        release_after = 4 * BUSY_RETRY_DELAY_MS / 1000

        def release():
            time.sleep(release_after)
            holder.execute("COMMIT")

        thread = threading.Thread(target=release)
        thread.start()
        try:
            started = time.monotonic()
            stmt = Statement(waiter, "INSERT INTO t (x) VALUES (?)")
            stmt.bind(1, 1)
            assert stmt.execute() == 1
            assert time.monotonic() - started >= release_after * 0.5
        finally:
            thread.join()
            waiter.close()
            holder.close()
