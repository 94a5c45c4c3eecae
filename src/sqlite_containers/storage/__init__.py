"""Storage layer for sqlite_containers."""

from sqlite_containers.storage.connection import ConnectionManager
from sqlite_containers.storage.key_store import KeyStore
from sqlite_containers.storage.key_value import KeyValueStore
from sqlite_containers.storage.multi_value import KeyMultiValueStore
from sqlite_containers.storage.schema import MultiValueRelation, RelationTables
from sqlite_containers.storage.statement import (
    BUSY_RETRY_DELAY_MS,
    SQLiteContainerError,
    Statement,
)
from sqlite_containers.storage.transaction import TransactionController

__all__ = [
    "BUSY_RETRY_DELAY_MS",
    "ConnectionManager",
    "KeyMultiValueStore",
    "KeyStore",
    "KeyValueStore",
    "MultiValueRelation",
    "RelationTables",
    "SQLiteContainerError",
    "Statement",
    "TransactionController",
]
