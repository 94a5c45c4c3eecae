"""SQLite-backed key-value store (one value per key).

KeyValueStore persists a plain mapping in a single table
T(key PRIMARY KEY, value). Writes use REPLACE so storing an existing key
overwrites its value. reconcile() makes the table equal a mapping by staging
the mapping's keys in a temporary table and deleting every other key with an
anti-join, inside one transaction.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Callable, Optional, Union

from sqlite_containers.adapters import pairs_from_mapping
from sqlite_containers.codecs import column_declaration, decode
from sqlite_containers.config import StoreSettings
from sqlite_containers.storage.connection import ConnectionManager
from sqlite_containers.storage.statement import SQLiteContainerError, Statement, run_once
from sqlite_containers.types import TransactionMode

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "kv_store"

PairsOrMapping = Union[Mapping[Any, Any], Iterable[tuple[Any, Any]]]


def _as_pairs(items: PairsOrMapping) -> list[tuple[Any, Any]]:
    if isinstance(items, Mapping):
        return list(pairs_from_mapping(items))
    return list(items)


class _KeyValueStatements:
    """Table DDL and prepared statements of one key-value table."""

    def __init__(
        self,
        manager: ConnectionManager,
        table: str,
        key_type: Optional[type],
        value_type: Optional[type],
    ):
        self.table = table
        self.temp_keys = f"{table}_temp_keys"
        key_decl = column_declaration("key", key_type, "PRIMARY KEY NOT NULL")
        value_decl = column_declaration("value", value_type, "NOT NULL")

        conn = manager.connection
        cursor = conn.cursor()
        try:
            cursor.execute(f"CREATE TABLE IF NOT EXISTS {table} ({key_decl}, {value_decl})")
            cursor.execute(f"CREATE TEMPORARY TABLE IF NOT EXISTS {self.temp_keys} ({key_decl})")
        finally:
            cursor.close()
        logger.debug(f"Provisioned key-value table {table}")

        self.load = Statement(conn, f"SELECT key, value FROM {table} ORDER BY rowid")
        self.replace = Statement(conn, f"REPLACE INTO {table} (key, value) VALUES (?, ?)")
        self.get_value = Statement(conn, f"SELECT value FROM {table} WHERE key = ?")
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
        return [self.replace, self.stage_key, self.clear_staging, self.purge, self.clear]


class KeyValueStore:
    """Persistent dictionary backed by one SQLite table.

    Args:
        settings: Connection settings (default: StoreSettings from environment);
            settings.table_name overrides the "kv_store" table name
        key_type: Declared key type; drives column affinity and decoding
        value_type: Declared value type; drives column affinity and decoding
        process: Optional background task run when settings.use_async is set

    Example:
        >>> with KeyValueStore(StoreSettings(in_memory=True), key_type=str, value_type=int) as kv:
        ...     kv.reconcile({"a": 1, "b": 2})
        ...     kv.get("a")
        1
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        key_type: Optional[type] = None,
        value_type: Optional[type] = None,
        process: Optional[Callable[[ConnectionManager], None]] = None,
    ):
        self.key_type = key_type
        self.value_type = value_type
        self._stmts: Optional[_KeyValueStatements] = None
        self._manager = ConnectionManager(
            settings or StoreSettings(),
            provision_schema=self._provision,
            process=process,
            on_close=self._release_statements,
        )
        self._manager.connect()

    @property
    def settings(self) -> StoreSettings:
        return self._manager.settings

    @property
    def table(self) -> str:
        return self._require_statements().table

    def _provision(self, manager: ConnectionManager) -> None:
        table = manager.settings.table_name or DEFAULT_TABLE_NAME
        self._stmts = _KeyValueStatements(manager, table, self.key_type, self.value_type)

    def _release_statements(self) -> None:
        self._stmts = None

    def _require_statements(self) -> _KeyValueStatements:
        if self._stmts is None:
            raise SQLiteContainerError("Database is not connected.")
        return self._stmts

    def reconnect(self, settings: StoreSettings) -> None:
        """Reconnect with new settings, re-provisioning the table."""
        self._manager.reconnect(settings)

    def close(self) -> None:
        """Close the database connection."""
        self._manager.disconnect()

    def __enter__(self) -> "KeyValueStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def reconcile(self, items: PairsOrMapping, mode: Optional[TransactionMode] = None) -> None:
        """Make the table equal a mapping.

        Every key of `items` is written with its value; every other stored
        key is deleted. When `items` is a pair sequence the last value of a
        repeated key wins.

        Raises:
            SQLiteContainerError: If the operation fails; nothing changes then
        """
        pairs = _as_pairs(items)

        def _reconcile() -> None:
            stmts = self._require_statements()
            try:
                run_once(stmts.clear_staging)
                for key, value in pairs:
                    run_once(stmts.replace, key, value)
                    run_once(stmts.stage_key, key)
                purged = run_once(stmts.purge)
                run_once(stmts.clear_staging)
                logger.debug(f"Reconciled {len(pairs)} pairs into {stmts.table}, purged {purged}")
            except Exception:
                self._reset(stmts.writes())
                raise

        self._manager.run_in_transaction(_reconcile, mode)

    def update(self, items: PairsOrMapping, mode: Optional[TransactionMode] = None) -> None:
        """Write every pair of `items`, keeping other stored keys."""
        pairs = _as_pairs(items)

        def _update() -> None:
            stmts = self._require_statements()
            try:
                for key, value in pairs:
                    run_once(stmts.replace, key, value)
            except Exception:
                self._reset([stmts.replace])
                raise

        self._manager.run_in_transaction(_update, mode)

    def insert(self, key: Any, value: Any) -> None:
        """Store one pair, replacing any existing value of the key."""
        with self._manager.locked():
            run_once(self._require_statements().replace, key, value)

    def __setitem__(self, key: Any, value: Any) -> None:
        self.insert(key, value)

    def get(self, key: Any, default: Any = None) -> Any:
        """Get the value of a key, or `default` when absent."""
        with self._manager.locked():
            stmt = self._require_statements().get_value
            stmt.bind(1, key)
            try:
                row = stmt.fetch_one()
            finally:
                stmt.clear_bindings()
        if row is None:
            return default
        return decode(row[0], self.value_type)

    def __getitem__(self, key: Any) -> Any:
        missing = object()
        value = self.get(key, missing)
        if value is missing:
            raise KeyError(key)
        return value

    def __contains__(self, key: object) -> bool:
        missing = object()
        return self.get(key, missing) is not missing

    def remove(self, key: Any) -> None:
        """Delete a key; no-op when absent."""
        with self._manager.locked():
            run_once(self._require_statements().remove, key)

    def clear(self, mode: Optional[TransactionMode] = None) -> None:
        """Delete every pair."""
        self._manager.run_in_transaction(
            lambda: run_once(self._require_statements().clear), mode
        )

    def load(self, mode: Optional[TransactionMode] = None) -> dict[Any, Any]:
        """Read the whole table into a dict."""
        def _load() -> dict[Any, Any]:
            rows = self._require_statements().load.fetch_all()
            return {
                decode(key, self.key_type): decode(value, self.value_type)
                for key, value in rows
            }

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
