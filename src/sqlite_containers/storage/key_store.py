"""SQLite-backed persistent set (keys without values).

KeyStore keeps a set of keys in one table T(key PRIMARY KEY NOT NULL).
reconcile() makes the table equal an iterable of keys by staging them in a
temporary table and deleting every other row with an anti-join, all inside
one transaction.
"""

import logging
from collections.abc import Iterable
from typing import Any, Callable, Optional

from sqlite_containers.codecs import coerce, column_declaration, decode
from sqlite_containers.config import StoreSettings
from sqlite_containers.storage.connection import ConnectionManager
from sqlite_containers.storage.statement import (
    SQLiteContainerError,
    Statement,
    normalize_error,
    run_once,
)
from sqlite_containers.types import TransactionMode

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "key_store"


class _KeyStatements:
    """Table DDL and prepared statements of one key table."""

    def __init__(self, manager: ConnectionManager, table: str, key_type: Optional[type]):
        self.table = table
        self.temp_keys = f"{table}_temp_keys"
        key_decl = column_declaration("key", key_type, "PRIMARY KEY NOT NULL")

        conn = manager.connection
        cursor = conn.cursor()
        try:
            cursor.execute(f"CREATE TABLE IF NOT EXISTS {table} ({key_decl})")
            cursor.execute(f"CREATE TEMPORARY TABLE IF NOT EXISTS {self.temp_keys} ({key_decl})")
        finally:
            cursor.close()
        logger.debug(f"Provisioned key table {table}")

        self.load = Statement(conn, f"SELECT key FROM {table} ORDER BY rowid")
        self.insert = Statement(
            conn, f"INSERT INTO {table} (key) VALUES (?) ON CONFLICT(key) DO NOTHING"
        )
        self.exists = Statement(conn, f"SELECT EXISTS(SELECT 1 FROM {table} WHERE key = ?)")
        self.remove = Statement(conn, f"DELETE FROM {table} WHERE key = ?")
        self.clear = Statement(conn, f"DELETE FROM {table}")
        self.count = Statement(conn, f"SELECT COUNT(*) FROM {table}")
        self.stage_key = Statement(
            conn, f"INSERT OR IGNORE INTO {self.temp_keys} (key) VALUES (?)"
        )
        self.clear_staging = Statement(conn, f"DELETE FROM {self.temp_keys}")
        self.purge = Statement(
            conn,
            f"DELETE FROM {table} WHERE key NOT IN (SELECT key FROM {self.temp_keys})",
        )

    def writes(self) -> list[Statement]:
        return [self.insert, self.stage_key, self.clear_staging, self.purge, self.clear]


class KeyStore:
    """Persistent set backed by one SQLite table.

    Args:
        settings: Connection settings (default: StoreSettings from environment);
            settings.table_name overrides the "key_store" table name
        key_type: Declared key type; drives column affinity and decoding
        process: Optional background task run when settings.use_async is set

    Example:
        >>> with KeyStore(StoreSettings(in_memory=True), key_type=str) as keys:
        ...     keys.reconcile(["a", "b"])
        ...     "a" in keys
        True
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        key_type: Optional[type] = None,
        process: Optional[Callable[[ConnectionManager], None]] = None,
    ):
        self.key_type = key_type
        self._stmts: Optional[_KeyStatements] = None
        self._manager = ConnectionManager(
            settings or StoreSettings(),
            provision_schema=self._provision,
            process=process,
            on_close=self._release_statements,
        )
        self._manager.connect()

    @property
    def manager(self) -> ConnectionManager:
        """The underlying connection manager."""
        return self._manager

    @property
    def settings(self) -> StoreSettings:
        return self._manager.settings

    @property
    def table(self) -> str:
        return self._require_statements().table

    def _provision(self, manager: ConnectionManager) -> None:
        table = manager.settings.table_name or DEFAULT_TABLE_NAME
        self._stmts = _KeyStatements(manager, table, self.key_type)

    def _release_statements(self) -> None:
        self._stmts = None

    def _require_statements(self) -> _KeyStatements:
        if self._stmts is None:
            raise SQLiteContainerError("Database is not connected.")
        return self._stmts

    def _coerced(self, keys: Iterable[Any]) -> list[Any]:
        try:
            return [coerce(key, self.key_type) for key in keys]
        except Exception as e:
            error = normalize_error(e, "Unknown error occurred while reading keys.")
            if error is e:
                raise
            raise error from e

    def reconnect(self, settings: StoreSettings) -> None:
        """Reconnect with new settings, re-provisioning the table."""
        self._manager.reconnect(settings)

    def close(self) -> None:
        """Close the database connection."""
        self._manager.disconnect()

    def __enter__(self) -> "KeyStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def reconcile(self, keys: Iterable[Any], mode: Optional[TransactionMode] = None) -> None:
        """Make the table hold exactly `keys`.

        Missing keys are inserted and every other stored key is deleted.
        Duplicates in `keys` are stored once.

        Raises:
            SQLiteContainerError: If the operation fails; nothing changes then
        """
        items = self._coerced(keys)

        def _reconcile() -> None:
            stmts = self._require_statements()
            try:
                run_once(stmts.clear_staging)
                for key in items:
                    run_once(stmts.insert, key)
                    run_once(stmts.stage_key, key)
                purged = run_once(stmts.purge)
                run_once(stmts.clear_staging)
                logger.debug(f"Reconciled {len(items)} keys into {stmts.table}, purged {purged}")
            except Exception as e:
                self._reset(stmts.writes())
                error = normalize_error(e, "Unknown error occurred while reconciling keys.")
                if error is e:
                    raise
                raise error from e

        self._manager.run_in_transaction(_reconcile, mode)

    def update(self, keys: Iterable[Any], mode: Optional[TransactionMode] = None) -> None:
        """Add every key of `keys`, keeping the stored ones."""
        items = self._coerced(keys)

        def _update() -> None:
            stmts = self._require_statements()
            try:
                for key in items:
                    run_once(stmts.insert, key)
            except Exception:
                self._reset([stmts.insert])
                raise

        self._manager.run_in_transaction(_update, mode)

    def insert(self, key: Any) -> None:
        """Add one key; no-op when already stored."""
        self.update([key])

    def __contains__(self, key: object) -> bool:
        with self._manager.locked():
            stmt = self._require_statements().exists
            stmt.bind(1, key)
            try:
                row = stmt.fetch_one()
            finally:
                stmt.clear_bindings()
        return bool(row and row[0])

    def remove(self, key: Any) -> None:
        """Delete a key; no-op when absent."""
        with self._manager.locked():
            run_once(self._require_statements().remove, key)

    def clear(self, mode: Optional[TransactionMode] = None) -> None:
        """Delete every key."""
        self._manager.run_in_transaction(
            lambda: run_once(self._require_statements().clear), mode
        )

    def load(self, mode: Optional[TransactionMode] = None) -> set[Any]:
        """Read the whole table into a set."""
        def _load() -> set[Any]:
            rows = self._require_statements().load.fetch_all()
            return {decode(row[0], self.key_type) for row in rows}

        return self._manager.run_in_transaction(_load, mode)

    def __len__(self) -> int:
        with self._manager.locked():
            row = self._require_statements().count.fetch_one()
        return row[0] if row else 0

    @staticmethod
    def _reset(statements: list[Statement]) -> None:
        for stmt in statements:
            stmt.reset()
            stmt.clear_bindings()
