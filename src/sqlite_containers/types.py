"""Core enums and result types for sqlite_containers.

This module defines the data structures shared across the package:
- TransactionMode: Lock-acquisition strategy used by BEGIN
- JournalMode, SynchronousMode, LockingMode, AutoVacuumMode, TempStore:
  Engine tuning modes applied as PRAGMAs on connect
- PairCount: One persisted (key, value, count) association
- RelationStats: Row counts of a normalized multi-value relation
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class TransactionMode(str, Enum):
    """SQLite transaction modes.

    - DEFERRED: Waits to lock the database until a read or write happens
    - IMMEDIATE: Takes the write lock at BEGIN, other connections may still read
    - EXCLUSIVE: Locks the database for both reading and writing
    """
    DEFERRED = "DEFERRED"
    IMMEDIATE = "IMMEDIATE"
    EXCLUSIVE = "EXCLUSIVE"


class JournalMode(str, Enum):
    """SQLite journal modes."""
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"
    PERSIST = "PERSIST"
    MEMORY = "MEMORY"
    WAL = "WAL"
    OFF = "OFF"


class SynchronousMode(str, Enum):
    """SQLite synchronous modes."""
    OFF = "OFF"
    NORMAL = "NORMAL"
    FULL = "FULL"
    EXTRA = "EXTRA"


class LockingMode(str, Enum):
    """SQLite locking modes."""
    NORMAL = "NORMAL"
    EXCLUSIVE = "EXCLUSIVE"


class AutoVacuumMode(str, Enum):
    """SQLite auto-vacuum modes."""
    NONE = "NONE"
    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"


class TempStore(str, Enum):
    """Where SQLite keeps temporary tables and indices."""
    DEFAULT = "DEFAULT"
    FILE = "FILE"
    MEMORY = "MEMORY"


@dataclass(frozen=True)
class PairCount:
    """A persisted association between one key and one value.

    Attributes:
        key: The decoded key
        value: The decoded value
        count: How many times the pair occurs (always >= 1)
    """

    key: Any
    value: Any
    count: int


@dataclass(frozen=True)
class RelationStats:
    """Row counts for a normalized multi-value relation.

    Attributes:
        keys: Rows in the key table
        values: Rows in the value table
        pairs: Rows in the association table
        occurrences: Sum of all association counts
    """

    keys: int
    values: int
    pairs: int
    occurrences: int

    def to_dict(self) -> dict[str, int]:
        """Convert to a plain dict for JSON output."""
        return {
            "keys": self.keys,
            "values": self.values,
            "pairs": self.pairs,
            "occurrences": self.occurrences,
        }
