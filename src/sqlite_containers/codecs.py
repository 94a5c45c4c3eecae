"""Mapping between Python values and SQLite column storage.

Keys and values are stored in typed columns. Scalars (int, float, str, bytes)
are bound as-is. Fixed-size ctypes records (Structure, Union, Array) carry no
equality operator and are stored as their raw bytes in a BLOB column, then
rebuilt with from_buffer_copy on the way out.
"""

import ctypes
from typing import Any, Optional

_RECORD_BASES = (ctypes.Structure, ctypes.Union, ctypes.Array)


def is_record_type(python_type: Optional[type]) -> bool:
    """Check whether a type is a fixed-size ctypes record stored as raw bytes."""
    return isinstance(python_type, type) and issubclass(python_type, _RECORD_BASES)


def column_type(python_type: Optional[type]) -> str:
    """Get the SQLite column type declared for a Python type.

    Args:
        python_type: The key or value type, or None for an untyped column

    Returns:
        "INTEGER", "REAL", "TEXT", "BLOB", or "" (no declared affinity)

    Raises:
        TypeError: If the type cannot be stored
    """
    if python_type is None:
        return ""
    if issubclass(python_type, (bool, int)):
        return "INTEGER"
    if issubclass(python_type, float):
        return "REAL"
    if issubclass(python_type, str):
        return "TEXT"
    if issubclass(python_type, (bytes, bytearray)) or is_record_type(python_type):
        return "BLOB"
    raise TypeError(f"Unsupported column type: {python_type.__name__}")


def column_declaration(name: str, python_type: Optional[type], constraints: str = "") -> str:
    """Build a column definition such as "key TEXT NOT NULL UNIQUE".

    An untyped column is declared without a type name.
    """
    return " ".join(filter(None, [name, column_type(python_type), constraints]))


def _as_number(value: Any) -> Optional[Any]:
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        for parse in (int, float):
            try:
                return parse(value)
            except ValueError:
                continue
    return None


def coerce(value: Any, python_type: Optional[type]) -> Any:
    """Convert a key or value to what its declared column will hold.

    Mirrors SQLite column affinity so that inputs the engine stores as one
    row (1 and "1" in an INTEGER column) are also one entry in memory.
    Untyped stores, record types and None pass through unchanged.

    Raises:
        TypeError: If the value cannot be held by the declared column
    """
    if python_type is None or value is None or is_record_type(python_type):
        return value
    affinity = column_type(python_type)
    if isinstance(value, (bytearray, memoryview)):
        value = bytes(value)

    if affinity == "BLOB":
        if isinstance(value, bytes):
            return value
    elif affinity == "TEXT":
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
    elif not isinstance(value, bytes):
        number = _as_number(value)
        if affinity == "REAL" and number is not None:
            return float(number)
        if isinstance(number, int):
            return int(number)
        if isinstance(number, float) and number.is_integer():
            return int(number)
    raise TypeError(f"Cannot store value {value!r} in a {affinity} column")


def encode(value: Any) -> Any:
    """Convert a key or value into something sqlite3 can bind.

    None passes through so NOT NULL constraints see it.

    Raises:
        TypeError: If the value has no SQLite representation
    """
    if value is None or isinstance(value, (int, float, str, bytes)):
        # bool is an int subclass and binds as 0/1
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, _RECORD_BASES):
        return memoryview(value).tobytes()
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


def decode(raw: Any, python_type: Optional[type]) -> Any:
    """Convert a column value back into the store's Python type.

    Args:
        raw: Value returned by sqlite3 for the column
        python_type: The declared key or value type (None returns raw unchanged)

    Raises:
        ValueError: If a record BLOB does not match the record size
    """
    if python_type is None or raw is None:
        return raw
    if is_record_type(python_type):
        size = ctypes.sizeof(python_type)
        if len(raw) != size:
            raise ValueError(
                f"Blob size {len(raw)} does not match {python_type.__name__} size {size}"
            )
        return python_type.from_buffer_copy(raw)
    if issubclass(python_type, bool):
        return bool(raw)
    if issubclass(python_type, (bytes, bytearray)):
        return python_type(raw)
    if issubclass(python_type, (int, float, str)):
        return python_type(raw)
    return raw
