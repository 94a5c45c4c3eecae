"""Connection management shared by every store variant.

The ConnectionManager owns the sqlite3 connection and the instance mutex.
Each store hands it a schema-provisioning callback instead of subclassing it:
the callback runs on every (re)connect, after engine tuning, and is where a
store creates its tables and prepares its statements.

All logical operations on one store are serialized through the manager's
lock because statements are stateful handles shared across calls.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from sqlite_containers.config import StoreSettings
from sqlite_containers.storage.statement import (
    SQLiteContainerError,
    Statement,
    normalize_error,
)
from sqlite_containers.storage.transaction import TransactionController
from sqlite_containers.types import TransactionMode

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionManager:
    """Owns one SQLite connection, its tuning, schema and lock.

    Args:
        settings: Connection settings
        provision_schema: Called with this manager after every connect to
            create tables and prepare statements
        process: Optional background task, started on its own thread when
            settings.use_async is set; it should return once
            stop_requested is set
        on_close: Optional callback run before the connection closes

    Attributes:
        lock: Mutex serializing all operations issued through this manager
    """

    def __init__(
        self,
        settings: StoreSettings,
        provision_schema: Callable[["ConnectionManager"], None],
        process: Optional[Callable[["ConnectionManager"], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self.lock = threading.Lock()
        self._settings = settings
        self._provision_schema = provision_schema
        self._process = process
        self._on_close = on_close
        self._conn: Optional[sqlite3.Connection] = None
        self._transactions: Optional[TransactionController] = None
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._worker_error: Optional[BaseException] = None

    @property
    def settings(self) -> StoreSettings:
        """The settings of the current connection."""
        return self._settings

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        """The open sqlite3 connection.

        Raises:
            SQLiteContainerError: If not connected
        """
        if self._conn is None:
            raise SQLiteContainerError("Database is not connected.")
        return self._conn

    @property
    def stop_requested(self) -> threading.Event:
        """Event set when the background task should stop."""
        return self._stop_event

    def statement(self, sql: str) -> Statement:
        """Create a Statement bound to the open connection."""
        return Statement(self.connection, sql)

    def connect(self) -> None:
        """Open the database, apply tuning and provision the schema.

        Does nothing if already connected.

        Raises:
            SQLiteContainerError: If opening or provisioning fails; the
                connection is closed again in that case
        """
        with self.lock:
            if self._conn is not None:
                return
            self._open()
        self._start_worker()

    def reconnect(self, settings: StoreSettings) -> None:
        """Close the current connection and connect with new settings."""
        self.disconnect()
        self._settings = settings
        self.connect()

    def disconnect(self) -> None:
        """Stop the background task and close the connection.

        Raises:
            SQLiteContainerError: If the background task failed
        """
        self._stop_worker()
        with self.lock:
            if self._conn is None:
                return
            if self._on_close is not None:
                self._on_close()
            self._close_connection()
            logger.info(f"Closed SQLite database {self._settings.database_target()}")

        if self._worker_error is not None:
            cause, self._worker_error = self._worker_error, None
            error = normalize_error(
                cause, "An unspecified error occurred in the background task."
            )
            if error is cause:
                raise error
            raise error from cause

    def run_in_transaction(
        self,
        operation: Callable[[], T],
        mode: Optional[TransactionMode] = None,
    ) -> T:
        """Run `operation` under the lock inside one transaction.

        Args:
            operation: Zero-argument callable performing the work
            mode: Transaction mode (default: settings.default_txn_mode)
        """
        with self.lock:
            transactions = self._require_transactions()
            return transactions.run(operation, mode or self._settings.default_txn_mode)

    @contextmanager
    def locked(self) -> Iterator[sqlite3.Connection]:
        """Hold the lock for a single-statement operation."""
        with self.lock:
            yield self.connection

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_transactions(self) -> TransactionController:
        if self._transactions is None:
            raise SQLiteContainerError("Database is not connected.")
        return self._transactions

    def _open(self) -> None:
        settings = self._settings
        target = settings.database_target()
        try:
            path = settings.resolved_db_path()
            if path is not None and not settings.use_uri:
                path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                target,
                timeout=settings.busy_timeout / 1000,
                isolation_level=None,
                check_same_thread=False,
                uri=settings.opens_as_uri(),
            )
            self._apply_pragmas()
            self._transactions = TransactionController(self._conn)
            self._provision_schema(self)
        except Exception as e:
            self._close_connection()
            error = normalize_error(e, "An unspecified error occurred while connecting.")
            if error is e:
                raise
            raise error from e
        logger.info(f"Connected to SQLite database {target}")

    def _apply_pragmas(self) -> None:
        settings = self._settings
        conn = self.connection
        pragmas = [
            f"PRAGMA busy_timeout = {settings.busy_timeout}",
            f"PRAGMA page_size = {settings.page_size}",
            f"PRAGMA cache_size = {settings.cache_size}",
            f"PRAGMA analysis_limit = {settings.analysis_limit}",
            f"PRAGMA wal_autocheckpoint = {settings.wal_autocheckpoint}",
            f"PRAGMA journal_mode = {settings.journal_mode.value}",
            f"PRAGMA synchronous = {settings.synchronous.value}",
            f"PRAGMA locking_mode = {settings.locking_mode.value}",
            f"PRAGMA auto_vacuum = {settings.auto_vacuum.value}",
            f"PRAGMA temp_store = {settings.temp_store.value}",
            # Off by default in SQLite; cascades silently do nothing without it
            "PRAGMA foreign_keys = ON",
        ]
        if settings.user_version > 0 and not settings.read_only:
            pragmas.append(f"PRAGMA user_version = {settings.user_version}")
        for pragma in pragmas:
            Statement(conn, pragma).execute()
            logger.debug(f"Applied {pragma}")

    def _close_connection(self) -> None:
        self._transactions = None
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _start_worker(self) -> None:
        if not self._settings.use_async or self._process is None:
            return
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker_error = None
        self._worker = threading.Thread(
            target=self._run_worker,
            name="sqlite-containers-process",
            daemon=True,
        )
        self._worker.start()

    def _run_worker(self) -> None:
        try:
            self._process(self)
        except Exception as e:
            logger.error(f"Background task failed: {e}", exc_info=True)
            self._worker_error = e

    def _stop_worker(self) -> None:
        if self._worker is None:
            return
        self._stop_event.set()
        self._worker.join()
        self._worker = None

    def __enter__(self) -> "ConnectionManager":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
        return False
