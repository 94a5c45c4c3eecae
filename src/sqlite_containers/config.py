"""Configuration settings for sqlite_containers stores.

This module provides Pydantic Settings for configuration management with:
- Environment variable support (SQLITE_CONTAINERS_ prefix)
- Type validation and defaults for every engine knob
- Explicit values handed to a store's connect/reconnect
"""

import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqlite_containers.types import (
    AutoVacuumMode,
    JournalMode,
    LockingMode,
    SynchronousMode,
    TempStore,
    TransactionMode,
)

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StoreSettings(BaseSettings):
    """Configuration settings for one store connection.

    Settings are loaded from environment variables with the SQLITE_CONTAINERS_
    prefix. Values passed to the constructor take precedence.

    Attributes:
        db_path: Path to SQLite database file (required unless in_memory)
        table_name: Base name for the store's tables (default: per-store name)
        read_only: Open the database read-only
        use_uri: Treat db_path as an SQLite URI
        in_memory: Use a private in-memory database
        use_async: Run the store's background task on its own thread
        user_version: Written to PRAGMA user_version when > 0
        busy_timeout: Busy-handler threshold in milliseconds
        page_size: SQLite page size in bytes
        cache_size: SQLite cache size in pages
        analysis_limit: Row limit for ANALYZE
        wal_autocheckpoint: WAL auto-checkpoint threshold in pages
        journal_mode: SQLite journal mode
        synchronous: SQLite synchronous mode
        locking_mode: SQLite locking mode
        auto_vacuum: SQLite auto-vacuum mode
        temp_store: Storage for temporary tables
        default_txn_mode: Transaction mode used when an operation names none
        log_level: Logging level (default: INFO)

    Example:
        >>> settings = StoreSettings(in_memory=True, table_name="tags")
        >>> settings.database_target()
        ':memory:'
    """

    model_config = SettingsConfigDict(
        env_prefix="SQLITE_CONTAINERS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Location
    db_path: Optional[Path] = Field(
        default=None,
        description="Path to SQLite database file",
    )
    table_name: str = Field(
        default="",
        description="Base name for the store's tables",
    )
    read_only: bool = Field(default=False, description="Open the database read-only")
    use_uri: bool = Field(default=False, description="Treat db_path as an SQLite URI")
    in_memory: bool = Field(default=False, description="Use an in-memory database")
    use_async: bool = Field(
        default=False,
        description="Run the store's background task on its own thread",
    )

    # Engine tuning
    user_version: int = Field(default=-1, description="PRAGMA user_version when > 0")
    busy_timeout: int = Field(
        default=1000,
        ge=0,
        description="Busy-handler threshold in milliseconds",
    )
    page_size: int = Field(default=4096, description="SQLite page size")
    cache_size: int = Field(default=2000, description="SQLite cache size in pages")
    analysis_limit: int = Field(default=1000, ge=0, description="Row limit for ANALYZE")
    wal_autocheckpoint: int = Field(
        default=1000,
        description="WAL auto-checkpoint threshold in pages",
    )
    journal_mode: JournalMode = Field(default=JournalMode.DELETE)
    synchronous: SynchronousMode = Field(default=SynchronousMode.FULL)
    locking_mode: LockingMode = Field(default=LockingMode.NORMAL)
    auto_vacuum: AutoVacuumMode = Field(default=AutoVacuumMode.NONE)
    temp_store: TempStore = Field(default=TempStore.DEFAULT)

    # Behaviour
    default_txn_mode: TransactionMode = Field(
        default=TransactionMode.DEFERRED,
        description="Transaction mode used when an operation names none",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @field_validator("table_name")
    @classmethod
    def _check_table_name(cls, value: str) -> str:
        # Spliced into DDL, so only plain identifiers are accepted
        if value and not _IDENTIFIER_PATTERN.match(value):
            raise ValueError(f"Invalid table name: {value!r}")
        return value

    @field_validator("page_size")
    @classmethod
    def _check_page_size(cls, value: int) -> int:
        if value < 512 or value > 65536 or value & (value - 1):
            raise ValueError("page_size must be a power of two between 512 and 65536")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def _check_location(self) -> "StoreSettings":
        if not self.in_memory and self.db_path is None:
            raise ValueError("db_path is required unless in_memory is set")
        return self

    def resolved_db_path(self) -> Optional[Path]:
        """Get the database path with ~ expanded, or None for in-memory stores."""
        if self.in_memory or self.db_path is None:
            return None
        if self.use_uri:
            return self.db_path
        return self.db_path.expanduser().resolve()

    def database_target(self) -> str:
        """Get the string handed to sqlite3.connect for these settings."""
        if self.in_memory:
            return ":memory:"
        path = self.resolved_db_path()
        if self.use_uri:
            return str(path)
        if self.read_only:
            return f"{path.as_uri()}?mode=ro"
        return str(path)

    def opens_as_uri(self) -> bool:
        """Whether database_target() must be opened with uri=True."""
        return not self.in_memory and (self.use_uri or self.read_only)
