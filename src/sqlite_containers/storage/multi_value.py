"""SQLite-backed multi-value store with diff-based reconciliation.

This module provides KeyMultiValueStore, a persistent multimap: each key maps
to any number of values and each (key, value) pair carries an occurrence
count. It supports:
- reconcile: make the stored relation exactly equal a multiset of pairs
- append/insert: additive merges that only add pairs or raise counts
- load/find/count/set_count/remove/clear for everyday access

Reconciliation never reads the stored relation into memory. The new content
is written into staging tables and the database computes what to delete with
anti-joins, all inside one transaction that is rolled back on any error.
"""

import logging
from collections.abc import Iterable, Iterator
from typing import Any, Callable, Optional

from sqlite_containers.adapters import expand_counts, group_pairs
from sqlite_containers.codecs import coerce, decode
from sqlite_containers.config import StoreSettings
from sqlite_containers.frequency import Comparison, FrequencyMap, select_comparison
from sqlite_containers.storage.connection import ConnectionManager
from sqlite_containers.storage.schema import MultiValueRelation, RelationTables
from sqlite_containers.storage.statement import (
    SQLiteContainerError,
    Statement,
    normalize_error,
)
from sqlite_containers.types import PairCount, RelationStats, TransactionMode

logger = logging.getLogger(__name__)

_MISSING = object()


class KeyMultiValueStore:
    """Persistent multimap over a normalized key/value/association schema.

    Args:
        settings: Connection settings (default: StoreSettings from environment)
        key_type: Declared key type; drives column affinity and decoding
        value_type: Declared value type; drives column affinity and decoding
        key_comparison: Identity strategy for keys when building frequency
            maps (default: chosen from key_type)
        value_comparison: Identity strategy for values (default: chosen from
            value_type)
        process: Optional background task run when settings.use_async is set

    Attributes:
        settings: Settings of the current connection
        tables: Names of the relation's tables

    Example:
        >>> store = KeyMultiValueStore(StoreSettings(in_memory=True), key_type=int, value_type=str)
        >>> store.reconcile([(1, "a"), (1, "a"), (2, "b")])
        >>> store.load_counts()
        [PairCount(key=1, value='a', count=2), PairCount(key=2, value='b', count=1)]
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        key_type: Optional[type] = None,
        value_type: Optional[type] = None,
        key_comparison: Optional[Comparison] = None,
        value_comparison: Optional[Comparison] = None,
        process: Optional[Callable[[ConnectionManager], None]] = None,
    ):
        self.key_type = key_type
        self.value_type = value_type
        self.key_comparison = key_comparison or select_comparison(key_type)
        self.value_comparison = value_comparison or select_comparison(value_type)
        self._relation: Optional[MultiValueRelation] = None
        self._manager = ConnectionManager(
            settings or StoreSettings(),
            provision_schema=self._provision,
            process=process,
            on_close=self._release_statements,
        )
        self._manager.connect()

    # -------------------------------------------------------------------------
    # Connection life cycle
    # -------------------------------------------------------------------------

    @property
    def settings(self) -> StoreSettings:
        return self._manager.settings

    @property
    def tables(self) -> RelationTables:
        return self._require_relation().tables

    @property
    def manager(self) -> ConnectionManager:
        """The underlying connection manager."""
        return self._manager

    def _provision(self, manager: ConnectionManager) -> None:
        tables = RelationTables.for_name(manager.settings.table_name)
        self._relation = MultiValueRelation(manager, tables, self.key_type, self.value_type)

    def _release_statements(self) -> None:
        self._relation = None

    def _require_relation(self) -> MultiValueRelation:
        if self._relation is None:
            raise SQLiteContainerError("Database is not connected.")
        return self._relation

    def reconnect(self, settings: StoreSettings) -> None:
        """Reconnect with new settings, re-provisioning the schema."""
        self._manager.reconnect(settings)

    def close(self) -> None:
        """Close the database connection."""
        self._manager.disconnect()

    def __enter__(self) -> "KeyMultiValueStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    def reconcile(
        self,
        pairs: Iterable[tuple[Any, Any]],
        mode: Optional[TransactionMode] = None,
    ) -> None:
        """Make the stored relation exactly equal a multiset of pairs.

        Afterwards every distinct (key, value) in `pairs` is stored once with
        its multiplicity as count, and nothing else is stored. Keys and
        values no longer referenced are deleted.

        Args:
            pairs: Iterable of (key, value) pairs, duplicates allowed
            mode: Transaction mode (default: settings.default_txn_mode)

        Raises:
            SQLiteContainerError: If reconciliation fails or `pairs` holds
                something the columns cannot store; the stored relation is
                unchanged in that case
        """
        try:
            frequencies = FrequencyMap.from_pairs(
                self._coerced(pairs), self.key_comparison, self.value_comparison
            )
        except Exception as e:
            error = normalize_error(e, "Unknown error occurred while reconciling data.")
            if error is e:
                raise
            raise error from e
        self._manager.run_in_transaction(lambda: self._db_reconcile(frequencies), mode)
        logger.debug(
            f"Reconciled {len(frequencies)} keys / {frequencies.pair_count()} pairs "
            f"into {self.tables.key_value}"
        )

    def _db_reconcile(self, frequencies: FrequencyMap) -> None:
        relation = self._require_relation()
        try:
            # 1. Residue from an aborted run would corrupt the diff
            relation.clear_staging()

            # 2. Populate the keep set before anything is deleted
            for key, values in frequencies.items():
                relation.insert_key_if_absent(key)
                relation.stage_key(key)
                for value, _ in values:
                    relation.insert_value_if_absent(value)
                    relation.stage_value(value)

            # 3. Create rows for new pairs; existing counts are left alone here
            for key, values in frequencies.items():
                key_id = self._require_key_id(relation, key)
                for value, _ in values:
                    value_id = self._require_value_id(relation, value)
                    if not relation.pair_count(key_id, value_id):
                        relation.add_pair(key_id, value_id)
                    relation.stage_pair(key_id, value_id)

            # 4. Anti-join purge; cascades remove associations of purged rows
            purged_keys = relation.purge_keys_not_in_staging()
            purged_values = relation.purge_values_not_in_staging()
            purged_pairs = relation.purge_pairs_not_in_staging()
            logger.debug(
                f"Purged {purged_keys} keys, {purged_values} values, "
                f"{purged_pairs} unpaired associations"
            )

            # 5. Free staging pages
            relation.clear_staging()

            # 6. Set (not increment) the final multiplicities
            for key, values in frequencies.items():
                key_id = self._require_key_id(relation, key)
                for value, count in values:
                    value_id = self._require_value_id(relation, value)
                    relation.set_count(key_id, value_id, count)
        except Exception as e:
            self._reset_statements(relation.reconcile_statements())
            error = normalize_error(e, "Unknown error occurred while reconciling data.")
            if error is e:
                raise
            raise error from e

    # -------------------------------------------------------------------------
    # Append / insert
    # -------------------------------------------------------------------------

    def append(
        self,
        pairs: Iterable[tuple[Any, Any]],
        mode: Optional[TransactionMode] = None,
    ) -> None:
        """Add pairs without removing anything.

        Each pair raises its stored count by one, or is stored with count 1
        when new. The whole batch is one transaction.

        Args:
            pairs: Iterable of (key, value) pairs, duplicates allowed
            mode: Transaction mode (default: settings.default_txn_mode)

        Raises:
            SQLiteContainerError: If the append fails; nothing is written then
        """
        batch = list(pairs)
        self._manager.run_in_transaction(lambda: self._db_append(batch), mode)
        logger.debug(f"Appended {len(batch)} pairs into {self.tables.key_value}")

    def insert(self, key: Any, value: Any, mode: Optional[TransactionMode] = None) -> None:
        """Add one occurrence of (key, value)."""
        self._manager.run_in_transaction(lambda: self._db_append([(key, value)]), mode)

    def _db_append(self, pairs: list[tuple[Any, Any]]) -> None:
        relation = self._require_relation()
        try:
            for key, value in self._coerced(pairs):
                relation.insert_key_if_absent(key)
                relation.insert_value_if_absent(value)
                key_id = self._require_key_id(relation, key)
                value_id = self._require_value_id(relation, value)
                count = relation.pair_count(key_id, value_id)
                if count:
                    relation.set_count(key_id, value_id, count + 1)
                else:
                    relation.add_pair(key_id, value_id)
        except Exception as e:
            self._reset_statements(
                [
                    relation.insert_key,
                    relation.insert_value,
                    relation.get_key_id,
                    relation.get_value_id,
                    relation.get_pair_count,
                    relation.set_pair_count,
                    relation.insert_pair,
                ]
            )
            error = normalize_error(e, "Unknown error occurred while inserting key-value pair.")
            if error is e:
                raise
            raise error from e

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def load_counts(self, mode: Optional[TransactionMode] = None) -> list[PairCount]:
        """Read every stored association.

        Returns:
            PairCount per stored pair, ordered by key then value insertion
        """
        def _load() -> list[PairCount]:
            rows = self._require_relation().rows()
            return [
                PairCount(
                    key=decode(key, self.key_type),
                    value=decode(value, self.value_type),
                    count=count,
                )
                for key, value, count in rows
            ]

        return self._manager.run_in_transaction(_load, mode)

    def load(self, mode: Optional[TransactionMode] = None) -> list[tuple[Any, Any]]:
        """Read the relation as a flat multimap: each pair repeated count times."""
        return expand_counts(self.load_counts(mode))

    def load_grouped(
        self,
        mode: Optional[TransactionMode] = None,
        factory: Callable[[], Any] = list,
    ) -> dict[Any, Any]:
        """Read the relation as key -> collection of values (duplicates kept)."""
        return group_pairs(self.load(mode), factory)

    def find(self, key: Any) -> list[Any]:
        """Get the values of a key, each repeated by its count.

        Returns:
            List of values, empty when the key has none
        """
        with self._manager.locked():
            rows = self._require_relation().values_for(key)
        values: list[Any] = []
        for value, count in rows:
            values.extend([decode(value, self.value_type)] * count)
        return values

    def count(self, key: Any, value: Any) -> int:
        """Get the stored count of (key, value), 0 when absent."""
        with self._manager.locked():
            return self._require_relation().count_by_kv(key, value)

    def __len__(self) -> int:
        """Number of distinct keys that have at least one value."""
        with self._manager.locked():
            row = self._require_relation().count_keys.fetch_one()
        return row[0] if row else 0

    def empty(self) -> bool:
        """Check whether no pairs are stored."""
        return len(self) == 0

    def __contains__(self, key: object) -> bool:
        return bool(self.find(key))

    def stats(self) -> RelationStats:
        """Get row counts for the key, value and association tables."""
        with self._manager.locked():
            row = self._require_relation().stats.fetch_one()
        keys, values, pairs, occurrences = row
        return RelationStats(keys=keys, values=values, pairs=pairs, occurrences=occurrences)

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def set_count(
        self,
        key: Any,
        value: Any,
        count: int,
        mode: Optional[TransactionMode] = None,
    ) -> None:
        """Set the count of an existing (key, value) pair.

        Raises:
            ValueError: If count is less than 1
            SQLiteContainerError: If the pair is not stored
        """
        if count < 1:
            raise ValueError("Count must be at least 1")

        def _set() -> None:
            relation = self._require_relation()
            key_id = relation.key_id(key)
            value_id = relation.value_id(value)
            if key_id is None or value_id is None or not relation.pair_count(key_id, value_id):
                raise SQLiteContainerError(f"Pair ({key!r}, {value!r}) is not stored.")
            relation.set_count(key_id, value_id, count)

        self._manager.run_in_transaction(_set, mode)

    def remove(self, key: Any, value: Any = _MISSING) -> None:
        """Remove one (key, value) pair, or a key with all its pairs.

        Args:
            key: The key
            value: The value to unpair from the key; omit to remove the key
        """
        with self._manager.locked():
            relation = self._require_relation()
            if value is _MISSING:
                relation.delete_key(key)
            else:
                relation.delete_pair(key, value)

    def clear(self, mode: Optional[TransactionMode] = None) -> None:
        """Delete every key, value and association."""
        def _clear() -> None:
            relation = self._require_relation()
            try:
                relation.clear_all()
            except Exception:
                self._reset_statements(
                    [relation.clear_key_values, relation.clear_keys, relation.clear_values]
                )
                raise

        self._manager.run_in_transaction(_clear, mode)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _coerced(self, pairs: Iterable[tuple[Any, Any]]) -> Iterator[tuple[Any, Any]]:
        """Yield pairs converted to what the typed columns will hold."""
        for pair in pairs:
            try:
                key, value = pair
            except (TypeError, ValueError) as e:
                raise TypeError(f"Expected a (key, value) pair, got {pair!r}") from e
            yield coerce(key, self.key_type), coerce(value, self.value_type)

    @staticmethod
    def _require_key_id(relation: MultiValueRelation, key: Any) -> int:
        key_id = relation.key_id(key)
        if key_id is None:
            raise SQLiteContainerError(f"Failed to retrieve key ID for key {key!r}.")
        return key_id

    @staticmethod
    def _require_value_id(relation: MultiValueRelation, value: Any) -> int:
        value_id = relation.value_id(value)
        if value_id is None:
            raise SQLiteContainerError(f"Failed to retrieve value ID for value {value!r}.")
        return value_id

    @staticmethod
    def _reset_statements(statements: list[Statement]) -> None:
        for stmt in statements:
            stmt.reset()
            stmt.clear_bindings()
