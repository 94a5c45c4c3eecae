"""Transaction control for multi-statement operations.

The controller prepares one BEGIN statement per TransactionMode plus COMMIT
and ROLLBACK, and wraps an operation in begin -> operation -> commit. Any
exception from the operation (or from COMMIT) rolls the transaction back and
is re-raised as a SQLiteContainerError, so a failed operation never leaves
partial writes behind.
"""

import logging
import sqlite3
from typing import Callable, TypeVar

from sqlite_containers.storage.statement import Statement, normalize_error
from sqlite_containers.types import TransactionMode

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionController:
    """BEGIN/COMMIT/ROLLBACK for one connection.

    The connection must be in autocommit mode (isolation_level=None) so the
    sqlite3 module does not open transactions of its own.

    Args:
        conn: Open sqlite3 connection
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._begin = {
            mode: Statement(conn, f"BEGIN {mode.value} TRANSACTION")
            for mode in TransactionMode
        }
        self._commit = Statement(conn, "COMMIT")
        self._rollback = Statement(conn, "ROLLBACK")

    @property
    def in_transaction(self) -> bool:
        """Whether a transaction is currently open on the connection."""
        return self._conn.in_transaction

    def begin(self, mode: TransactionMode = TransactionMode.DEFERRED) -> None:
        """Begin a transaction in the given mode."""
        self._begin[TransactionMode(mode)].execute()

    def commit(self) -> None:
        """Commit the current transaction."""
        self._commit.execute()

    def rollback(self) -> None:
        """Roll back the current transaction; no-op when none is open."""
        if not self._conn.in_transaction:
            return
        self._rollback.execute()

    def run(self, operation: Callable[[], T], mode: TransactionMode = TransactionMode.DEFERRED) -> T:
        """Run `operation` inside one transaction.

        Args:
            operation: Zero-argument callable performing the work
            mode: Lock-acquisition strategy for BEGIN

        Returns:
            Whatever `operation` returns

        Raises:
            SQLiteContainerError: If the operation or the commit fails; the
                transaction has been rolled back by then
        """
        self.begin(mode)
        try:
            result = operation()
            self.commit()
            return result
        except Exception as e:
            try:
                self.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback failed after error ({e}): {rollback_error}")
            error = normalize_error(e, "Unknown error occurred during transaction.")
            if error is e:
                raise
            raise error from e
