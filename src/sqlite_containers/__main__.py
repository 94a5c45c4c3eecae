"""Command-line entry point for sqlite_containers.

This module provides a small CLI over KeyMultiValueStore with:
- CLI argument parsing layered over Pydantic Settings (env variables)
- JSON input for reconcile/append and JSON output for dump/stats
- Logging to stderr so stdout carries only command output

Usage:
    python -m sqlite_containers [options] COMMAND

    Options:
        --db-path PATH      SQLite database path
        --table NAME        Base table name (default: keys_store, ...)
        --in-memory         Use a private in-memory database
        --txn-mode MODE     Transaction mode (DEFERRED, IMMEDIATE, EXCLUSIVE)
        --log-level LEVEL   Logging level (default: INFO)

    Commands:
        dump                Print every (key, value, count) triple as JSON
        stats               Print row counts as JSON
        reconcile FILE      Make the store equal the JSON pairs in FILE (- for stdin)
        append FILE         Add the JSON pairs in FILE (- for stdin)
        clear               Delete everything
"""

import argparse
import json
import logging
import sys
from typing import Any, Optional, TextIO

from pydantic import ValidationError

from sqlite_containers.config import StoreSettings
from sqlite_containers.storage.multi_value import KeyMultiValueStore
from sqlite_containers.storage.statement import SQLiteContainerError
from sqlite_containers.types import TransactionMode

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float)


def setup_logging(log_level: str) -> None:
    """Configure logging to stderr.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.debug(f"Logging initialized at {log_level.upper()} level")


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Configuration precedence:
        1. CLI arguments (highest priority)
        2. Environment variables (SQLITE_CONTAINERS_ prefix)
        3. Defaults (lowest priority)
    """
    parser = argparse.ArgumentParser(
        prog="sqlite-containers",
        description="Persistent multimap on SQLite",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Storage configuration
    parser.add_argument("--db-path", type=str, default=None, help="SQLite database path")
    parser.add_argument("--table", type=str, default=None, help="Base table name")
    parser.add_argument(
        "--in-memory",
        action="store_true",
        default=None,
        help="Use a private in-memory database",
    )
    parser.add_argument(
        "--txn-mode",
        type=str.upper,
        default=None,
        choices=[mode.value for mode in TransactionMode],
        help="Transaction mode for multi-statement commands",
    )

    # Logging configuration
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("dump", help="Print every (key, value, count) triple as JSON")
    commands.add_parser("stats", help="Print row counts as JSON")
    for name, text in (
        ("reconcile", "Make the store equal the given pairs"),
        ("append", "Add the given pairs"),
    ):
        sub = commands.add_parser(name, help=text)
        sub.add_argument("file", help="JSON array of [key, value] pairs, or - for stdin")
    commands.add_parser("clear", help="Delete every key, value and pair")

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> StoreSettings:
    """Build StoreSettings from CLI overrides on top of the environment."""
    overrides: dict[str, Any] = {}
    if args.db_path is not None:
        overrides["db_path"] = args.db_path
    if args.table is not None:
        overrides["table_name"] = args.table
    if args.in_memory:
        overrides["in_memory"] = True
    if args.txn_mode is not None:
        overrides["default_txn_mode"] = TransactionMode(args.txn_mode)
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    return StoreSettings(**overrides)


def read_pairs(source: TextIO) -> list[tuple[Any, Any]]:
    """Read a JSON array of [key, value] pairs.

    Raises:
        ValueError: If the input is not valid JSON or not a list of scalar pairs
    """
    try:
        data = json.load(source)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON input: {e}") from e
    if not isinstance(data, list):
        raise ValueError("Input must be a JSON array of [key, value] pairs")

    pairs = []
    for index, item in enumerate(data):
        if not isinstance(item, list) or len(item) != 2:
            raise ValueError(f"Item {index} is not a [key, value] pair: {item!r}")
        key, value = item
        if not isinstance(key, _SCALARS) or not isinstance(value, _SCALARS):
            raise ValueError(f"Item {index} must hold a scalar key and value: {item!r}")
        pairs.append((key, value))
    return pairs


def _load_input(path: str) -> list[tuple[Any, Any]]:
    if path == "-":
        return read_pairs(sys.stdin)
    with open(path, encoding="utf-8") as source:
        return read_pairs(source)


def run_command(store: KeyMultiValueStore, args: argparse.Namespace) -> None:
    """Run one CLI command against an open store, printing output to stdout."""
    if args.command == "dump":
        rows = [[pc.key, pc.value, pc.count] for pc in store.load_counts()]
        print(json.dumps(rows))
    elif args.command == "stats":
        print(json.dumps(store.stats().to_dict()))
    elif args.command == "reconcile":
        pairs = _load_input(args.file)
        store.reconcile(pairs)
        logger.info(f"Reconciled {len(pairs)} pairs")
    elif args.command == "append":
        pairs = _load_input(args.file)
        store.append(pairs)
        logger.info(f"Appended {len(pairs)} pairs")
    elif args.command == "clear":
        store.clear()
        logger.info("Cleared store")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Process exit code: 0 on success, 1 on storage errors, 2 on bad
        settings or input
    """
    args = parse_arguments(argv)

    try:
        settings = build_settings(args)
    except ValidationError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return 2

    setup_logging(settings.log_level)

    try:
        with KeyMultiValueStore(settings) as store:
            run_command(store, args)
    except (ValueError, OSError) as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return 2
    except SQLiteContainerError as e:
        print(f"Command {args.command} failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
