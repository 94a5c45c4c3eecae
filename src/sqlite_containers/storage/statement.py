"""Single-statement handles with busy-retry.

A Statement owns one SQL text, its bound parameters and the cursor of its
current execution. It mirrors the prepare/bind/step/reset life cycle of the
SQLite C API on top of the sqlite3 module (which caches the prepared form).

When the engine reports SQLITE_BUSY the statement sleeps BUSY_RETRY_DELAY_MS
and runs again instead of failing. That retry is local to one statement and
independent of any transaction rollback around it.
"""

import logging
import sqlite3
import time
from typing import Any, Optional

from sqlite_containers.codecs import encode

logger = logging.getLogger(__name__)

BUSY_RETRY_DELAY_MS = 50

_SQLITE_BUSY = 5


class SQLiteContainerError(Exception):
    """Custom exception for all sqlite_containers storage errors.

    Attributes:
        error_code: Native SQLite result code, -1 when not raised by the engine
    """

    def __init__(self, message: str, error_code: int = -1):
        super().__init__(message)
        self.error_code = error_code


def is_busy_error(exc: BaseException) -> bool:
    """Check whether an exception is transient lock contention."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None:
        return code & 0xFF == _SQLITE_BUSY
    return "database is locked" in str(exc)


def normalize_error(exc: BaseException, fallback_message: str) -> SQLiteContainerError:
    """Convert any exception into a SQLiteContainerError.

    Args:
        exc: The exception that was caught
        fallback_message: Message used when exc carries none

    Returns:
        exc itself if already a SQLiteContainerError, otherwise a new error
        carrying the engine code where one exists
    """
    if isinstance(exc, SQLiteContainerError):
        return exc
    if isinstance(exc, sqlite3.Error):
        code = getattr(exc, "sqlite_errorcode", -1)
        return SQLiteContainerError(f"SQLite error: {exc}. Error code: {code}", code)
    return SQLiteContainerError(str(exc) or fallback_message)


class Statement:
    """One SQL statement with positional parameters.

    Args:
        conn: Open sqlite3 connection the statement runs on
        sql: SQL text with `?` placeholders

    Example:
        >>> stmt = Statement(conn, "SELECT id FROM tags_keys WHERE key = ?")
        >>> stmt.bind(1, "red")
        >>> row = stmt.step()
        >>> tag_id = stmt.extract(0) if row else None
        >>> stmt.reset()
        >>> stmt.clear_bindings()
    """

    def __init__(self, conn: sqlite3.Connection, sql: str):
        self.sql = sql
        self._conn = conn
        self._params: list[Any] = [None] * sql.count("?")
        self._cursor: Optional[sqlite3.Cursor] = None
        self._row: Optional[tuple] = None

    def bind(self, index: int, value: Any) -> None:
        """Bind a value to the 1-based parameter `index`.

        Raises:
            SQLiteContainerError: If index is out of range
            TypeError: If the value cannot be stored
        """
        if index < 1 or index > len(self._params):
            raise SQLiteContainerError(
                f"Bind index {index} out of range for statement: {self.sql}"
            )
        self._params[index - 1] = encode(value)

    def bind_all(self, *values: Any) -> None:
        """Bind every parameter in order."""
        for index, value in enumerate(values, start=1):
            self.bind(index, value)

    def _run(self) -> sqlite3.Cursor:
        while True:
            try:
                return self._conn.execute(self.sql, self._params)
            except sqlite3.OperationalError as e:
                if not is_busy_error(e):
                    raise normalize_error(e, "SQLite error.") from e
                logger.debug(f"Database busy, retrying in {BUSY_RETRY_DELAY_MS}ms: {self.sql}")
                time.sleep(BUSY_RETRY_DELAY_MS / 1000)
            except sqlite3.Error as e:
                raise normalize_error(e, "SQLite error.") from e

    def execute(self) -> int:
        """Run the statement to completion.

        Returns:
            Number of rows changed (-1 for statements that change none)
        """
        cursor = self._run()
        try:
            cursor.fetchall()
            return cursor.rowcount
        except sqlite3.Error as e:
            raise normalize_error(e, "SQLite error.") from e
        finally:
            cursor.close()

    def step(self) -> Optional[tuple]:
        """Advance to the next result row.

        The first call executes the statement. Returns None once the
        statement is done; call reset() before running it again.
        """
        try:
            if self._cursor is None:
                self._cursor = self._run()
            self._row = self._cursor.fetchone()
        except sqlite3.Error as e:
            raise normalize_error(e, "SQLite error.") from e
        return self._row

    def extract(self, index: int) -> Any:
        """Get column `index` (0-based) of the current row."""
        if self._row is None:
            raise SQLiteContainerError(f"No current row for statement: {self.sql}")
        return self._row[index]

    def fetch_one(self) -> Optional[tuple]:
        """Execute and return the first row (or None), leaving the statement reset."""
        try:
            return self.step()
        finally:
            self.reset()

    def fetch_all(self) -> list[tuple]:
        """Execute and return every row, leaving the statement reset.

        A busy error while reading restarts the whole read.
        """
        while True:
            try:
                cursor = self._run()
                try:
                    return cursor.fetchall()
                finally:
                    cursor.close()
            except sqlite3.OperationalError as e:
                if not is_busy_error(e):
                    raise normalize_error(e, "SQLite error.") from e
                time.sleep(BUSY_RETRY_DELAY_MS / 1000)
            except sqlite3.Error as e:
                raise normalize_error(e, "SQLite error.") from e

    def reset(self) -> None:
        """Discard the current execution; bindings are kept."""
        if self._cursor is not None:
            self._cursor.close()
        self._cursor = None
        self._row = None

    def clear_bindings(self) -> None:
        """Set every parameter back to NULL."""
        self._params = [None] * len(self._params)

    def __repr__(self) -> str:
        return f"Statement({self.sql!r})"


def run_once(stmt: Statement, *params: Any) -> int:
    """Bind, execute and reset a write statement; return the changed row count."""
    stmt.bind_all(*params)
    try:
        return stmt.execute()
    finally:
        stmt.reset()
        stmt.clear_bindings()
