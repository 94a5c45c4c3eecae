"""Normalized relation schema for multi-value stores.

A many-to-many key <-> value relation with per-pair multiplicity is kept in
three persistent tables plus three connection-scoped staging tables:

- T_keys(id, key UNIQUE NOT NULL): one row per distinct key
- T_values(id, value UNIQUE NOT NULL): one row per distinct value, shared by keys
- T_key_value(key_id, value_id, value_count): the associations; both ids are
  foreign keys with ON DELETE CASCADE
- T_temp_keys, T_temp_values, T_temp_key_value: TEMPORARY tables holding the
  key, value and pair sets of the reconciliation in progress

Without a configured table name the defaults are keys_store, values_store,
key_value_store, keys_temp_store, values_temp_store and key_value_temp_store.

MultiValueRelation prepares every statement once per connection and exposes
the row-level operations the stores are built from.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlite_containers.codecs import column_declaration
from sqlite_containers.storage.connection import ConnectionManager
from sqlite_containers.storage.statement import Statement, run_once

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelationTables:
    """Table names of one normalized relation."""

    keys: str
    values: str
    key_value: str
    temp_keys: str
    temp_values: str
    temp_key_value: str

    @classmethod
    def for_name(cls, table_name: str) -> "RelationTables":
        """Derive the six table names from a configured base name."""
        if not table_name:
            return cls(
                keys="keys_store",
                values="values_store",
                key_value="key_value_store",
                temp_keys="keys_temp_store",
                temp_values="values_temp_store",
                temp_key_value="key_value_temp_store",
            )
        return cls(
            keys=f"{table_name}_keys",
            values=f"{table_name}_values",
            key_value=f"{table_name}_key_value",
            temp_keys=f"{table_name}_temp_keys",
            temp_values=f"{table_name}_temp_values",
            temp_key_value=f"{table_name}_temp_key_value",
        )


def relation_ddl(
    tables: RelationTables,
    key_type: Optional[type] = None,
    value_type: Optional[type] = None,
) -> list[str]:
    """Build the CREATE statements for a relation.

    All statements are idempotent (IF NOT EXISTS).
    """
    key_column = column_declaration("key", key_type, "NOT NULL UNIQUE")
    value_column = column_declaration("value", value_type, "NOT NULL UNIQUE")
    return [
        f"""CREATE TABLE IF NOT EXISTS {tables.keys} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            {key_column}
        )""",
        f"""CREATE TABLE IF NOT EXISTS {tables.values} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            {value_column}
        )""",
        f"""CREATE TABLE IF NOT EXISTS {tables.key_value} (
            key_id INTEGER NOT NULL,
            value_id INTEGER NOT NULL,
            value_count INTEGER NOT NULL DEFAULT 1,
            FOREIGN KEY (key_id) REFERENCES {tables.keys}(id) ON DELETE CASCADE,
            FOREIGN KEY (value_id) REFERENCES {tables.values}(id) ON DELETE CASCADE,
            PRIMARY KEY (key_id, value_id)
        )""",
        f"""CREATE INDEX IF NOT EXISTS idx_{tables.key_value}_value_id
            ON {tables.key_value}(value_id)""",
        f"""CREATE TEMPORARY TABLE IF NOT EXISTS {tables.temp_keys} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            {key_column}
        )""",
        f"""CREATE TEMPORARY TABLE IF NOT EXISTS {tables.temp_values} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            {value_column}
        )""",
        f"""CREATE TEMPORARY TABLE IF NOT EXISTS {tables.temp_key_value} (
            key_id INTEGER NOT NULL,
            value_id INTEGER NOT NULL,
            PRIMARY KEY (key_id, value_id)
        )""",
    ]


class MultiValueRelation:
    """Prepared statements and row-level operations of one relation.

    Every method binds, runs, then resets and clears its statement, so a
    statement is reusable after each call. Methods do not take the lock or
    open transactions; callers do.

    Args:
        manager: Connected manager to prepare statements on
        tables: Table names of the relation
        key_type: Declared key type (column affinity)
        value_type: Declared value type (column affinity)
    """

    def __init__(
        self,
        manager: ConnectionManager,
        tables: RelationTables,
        key_type: Optional[type] = None,
        value_type: Optional[type] = None,
    ):
        self.tables = tables
        t = tables
        conn = manager.connection

        cursor = conn.cursor()
        try:
            for ddl in relation_ddl(t, key_type, value_type):
                cursor.execute(ddl)
        finally:
            cursor.close()
        logger.debug(f"Provisioned relation tables {t.keys}, {t.values}, {t.key_value}")

        def prepare(sql: str) -> Statement:
            return Statement(conn, sql)

        # Loading
        self.load = prepare(
            f"SELECT k.key, v.value, kv.value_count "
            f"FROM {t.key_value} kv "
            f"JOIN {t.keys} k ON k.id = kv.key_id "
            f"JOIN {t.values} v ON v.id = kv.value_id "
            f"ORDER BY k.id, v.id"
        )
        self.find = prepare(
            f"SELECT v.value, kv.value_count "
            f"FROM {t.key_value} kv "
            f"JOIN {t.keys} k ON k.id = kv.key_id "
            f"JOIN {t.values} v ON v.id = kv.value_id "
            f"WHERE k.key = ? ORDER BY v.id"
        )

        # Key and value rows
        self.insert_key = prepare(f"INSERT OR IGNORE INTO {t.keys} (key) VALUES (?)")
        self.insert_value = prepare(f"INSERT OR IGNORE INTO {t.values} (value) VALUES (?)")
        self.get_key_id = prepare(f"SELECT id FROM {t.keys} WHERE key = ?")
        self.get_value_id = prepare(f"SELECT id FROM {t.values} WHERE value = ?")

        # Associations by id
        self.insert_pair = prepare(
            f"INSERT INTO {t.key_value} (key_id, value_id) VALUES (?, ?)"
        )
        self.get_pair_count = prepare(
            f"SELECT value_count FROM {t.key_value} WHERE key_id = ? AND value_id = ?"
        )
        self.set_pair_count = prepare(
            f"UPDATE {t.key_value} SET value_count = ? WHERE key_id = ? AND value_id = ?"
        )

        # Associations by key and value
        self.get_count_kv = prepare(
            f"SELECT value_count FROM {t.key_value} "
            f"WHERE key_id = (SELECT id FROM {t.keys} WHERE key = ?) "
            f"AND value_id = (SELECT id FROM {t.values} WHERE value = ?)"
        )
        self.remove_pair_kv = prepare(
            f"DELETE FROM {t.key_value} "
            f"WHERE key_id = (SELECT id FROM {t.keys} WHERE key = ?) "
            f"AND value_id = (SELECT id FROM {t.values} WHERE value = ?)"
        )
        self.remove_key = prepare(f"DELETE FROM {t.keys} WHERE key = ?")

        # Staging
        self.insert_key_staging = prepare(
            f"INSERT OR IGNORE INTO {t.temp_keys} (key) VALUES (?)"
        )
        self.insert_value_staging = prepare(
            f"INSERT OR IGNORE INTO {t.temp_values} (value) VALUES (?)"
        )
        self.insert_pair_staging = prepare(
            f"INSERT OR IGNORE INTO {t.temp_key_value} (key_id, value_id) VALUES (?, ?)"
        )
        self.clear_keys_staging = prepare(f"DELETE FROM {t.temp_keys}")
        self.clear_values_staging = prepare(f"DELETE FROM {t.temp_values}")
        self.clear_pairs_staging = prepare(f"DELETE FROM {t.temp_key_value}")

        # Purge by anti-join against staging
        self.purge_keys = prepare(
            f"DELETE FROM {t.keys} WHERE key NOT IN (SELECT key FROM {t.temp_keys})"
        )
        self.purge_values = prepare(
            f"DELETE FROM {t.values} WHERE value NOT IN (SELECT value FROM {t.temp_values})"
        )
        self.purge_pairs = prepare(
            f"DELETE FROM {t.key_value} WHERE NOT EXISTS ("
            f"SELECT 1 FROM {t.temp_key_value} s "
            f"WHERE s.key_id = {t.key_value}.key_id AND s.value_id = {t.key_value}.value_id)"
        )

        # Whole-relation
        self.clear_keys = prepare(f"DELETE FROM {t.keys}")
        self.clear_values = prepare(f"DELETE FROM {t.values}")
        self.clear_key_values = prepare(f"DELETE FROM {t.key_value}")
        self.count_keys = prepare(f"SELECT COUNT(DISTINCT key_id) FROM {t.key_value}")
        self.stats = prepare(
            f"SELECT (SELECT COUNT(*) FROM {t.keys}), "
            f"(SELECT COUNT(*) FROM {t.values}), "
            f"COUNT(*), COALESCE(SUM(value_count), 0) "
            f"FROM {t.key_value}"
        )

    # -------------------------------------------------------------------------
    # Row-level operations
    # -------------------------------------------------------------------------

    @staticmethod
    def _scalar(stmt: Statement, *params: Any) -> Optional[Any]:
        stmt.bind_all(*params)
        try:
            row = stmt.step()
            return row[0] if row is not None else None
        finally:
            stmt.reset()
            stmt.clear_bindings()

    def insert_key_if_absent(self, key: Any) -> None:
        run_once(self.insert_key, key)

    def insert_value_if_absent(self, value: Any) -> None:
        run_once(self.insert_value, value)

    def key_id(self, key: Any) -> Optional[int]:
        """Get the surrogate id of a key, None when absent."""
        return self._scalar(self.get_key_id, key)

    def value_id(self, value: Any) -> Optional[int]:
        """Get the surrogate id of a value, None when absent."""
        return self._scalar(self.get_value_id, value)

    def pair_count(self, key_id: int, value_id: int) -> int:
        """Get the count of an association by ids, 0 when absent."""
        return self._scalar(self.get_pair_count, key_id, value_id) or 0

    def set_count(self, key_id: int, value_id: int, count: int) -> None:
        run_once(self.set_pair_count, count, key_id, value_id)

    def add_pair(self, key_id: int, value_id: int) -> None:
        """Insert a new association with the default count."""
        run_once(self.insert_pair, key_id, value_id)

    def count_by_kv(self, key: Any, value: Any) -> int:
        return self._scalar(self.get_count_kv, key, value) or 0

    def delete_pair(self, key: Any, value: Any) -> int:
        return run_once(self.remove_pair_kv, key, value)

    def delete_key(self, key: Any) -> int:
        """Delete a key row; its associations go with it by cascade."""
        return run_once(self.remove_key, key)

    def stage_key(self, key: Any) -> None:
        run_once(self.insert_key_staging, key)

    def stage_value(self, value: Any) -> None:
        run_once(self.insert_value_staging, value)

    def stage_pair(self, key_id: int, value_id: int) -> None:
        run_once(self.insert_pair_staging, key_id, value_id)

    def purge_keys_not_in_staging(self) -> int:
        return run_once(self.purge_keys)

    def purge_values_not_in_staging(self) -> int:
        return run_once(self.purge_values)

    def purge_pairs_not_in_staging(self) -> int:
        return run_once(self.purge_pairs)

    def clear_staging(self) -> None:
        """Empty all three staging tables."""
        run_once(self.clear_keys_staging)
        run_once(self.clear_values_staging)
        run_once(self.clear_pairs_staging)

    def clear_all(self) -> None:
        """Delete every key, value and association."""
        run_once(self.clear_key_values)
        run_once(self.clear_keys)
        run_once(self.clear_values)

    def rows(self) -> list[tuple]:
        """All (key, value, count) rows in insertion order of keys and values."""
        return self.load.fetch_all()

    def values_for(self, key: Any) -> list[tuple]:
        """All (value, count) rows for one key."""
        self.find.bind(1, key)
        try:
            return self.find.fetch_all()
        finally:
            self.find.clear_bindings()

    def reconcile_statements(self) -> list[Statement]:
        """Statements a reconciliation may leave mid-execution on failure."""
        return [
            self.insert_key,
            self.insert_value,
            self.get_key_id,
            self.get_value_id,
            self.get_pair_count,
            self.set_pair_count,
            self.insert_pair,
            self.insert_key_staging,
            self.insert_value_staging,
            self.insert_pair_staging,
            self.purge_keys,
            self.purge_values,
            self.purge_pairs,
            self.clear_keys_staging,
            self.clear_values_staging,
            self.clear_pairs_staging,
        ]
