"""sqlite_containers - persistent multimaps and maps on SQLite.

This package stores many-to-many key/value relations with per-pair
occurrence counts in a normalized SQLite schema, and reconciles the stored
relation with in-memory content using staging tables and anti-joins.

Main components:
- storage.multi_value: KeyMultiValueStore (reconcile, append, load, ...)
- storage.key_value: KeyValueStore for one value per key
- storage.key_store: KeyStore, a persistent set of keys
- frequency: Comparison strategies and FrequencyMap
- config: Pydantic Settings for connection and engine tuning

Usage:
    from sqlite_containers import KeyMultiValueStore, StoreSettings

    with KeyMultiValueStore(StoreSettings(db_path="tags.db"), key_type=str, value_type=str) as store:
        store.reconcile([("red", "apple"), ("red", "cherry")])

    # Or use the CLI
    sqlite-containers --help
"""

from sqlite_containers.config import StoreSettings
from sqlite_containers.frequency import BYTEWISE, EQUALITY, Comparison, FrequencyMap
from sqlite_containers.storage import (
    KeyMultiValueStore,
    KeyStore,
    KeyValueStore,
    SQLiteContainerError,
)
from sqlite_containers.types import PairCount, RelationStats, TransactionMode

__all__ = [
    "BYTEWISE",
    "EQUALITY",
    "Comparison",
    "FrequencyMap",
    "KeyMultiValueStore",
    "KeyStore",
    "KeyValueStore",
    "PairCount",
    "RelationStats",
    "SQLiteContainerError",
    "StoreSettings",
    "TransactionMode",
    "main",
]
__version__ = "0.1.0"


def main() -> None:
    """Main entry point for the sqlite-containers CLI."""
    from sqlite_containers.__main__ import main as _main
    raise SystemExit(_main())
