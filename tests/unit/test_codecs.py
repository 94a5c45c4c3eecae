"""Tests for column affinity, value encoding and decoding."""

import ctypes

import pytest

from sqlite_containers.codecs import (
    coerce,
    column_declaration,
    column_type,
    decode,
    encode,
    is_record_type,
)


class Point(ctypes.Structure):
    _fields_ = [("x", ctypes.c_int32), ("y", ctypes.c_int32)]


class TestColumnType:
    """Tests for SQLite column affinity selection."""

    @pytest.mark.parametrize(
        "python_type, expected",
        [
            (int, "INTEGER"),
            (bool, "INTEGER"),
            (float, "REAL"),
            (str, "TEXT"),
            (bytes, "BLOB"),
            (bytearray, "BLOB"),
            (Point, "BLOB"),
            (None, ""),
        ],
    )
    def test_affinity(self, python_type, expected: str):
        """Test the declared type for each supported Python type."""
        assert column_type(python_type) == expected

    def test_unsupported_type(self):
        """Test that types without a storage class are rejected."""
        with pytest.raises(TypeError):
            column_type(dict)

    def test_declaration_joins_parts(self):
        """Test column definitions with and without a declared type."""
        assert column_declaration("key", str, "NOT NULL UNIQUE") == "key TEXT NOT NULL UNIQUE"
        assert column_declaration("key", None, "NOT NULL UNIQUE") == "key NOT NULL UNIQUE"
        assert column_declaration("value", int) == "value INTEGER"


class TestCoerce:
    """Tests for converting inputs to what a typed column holds."""

    @pytest.mark.parametrize(
        "value, python_type, expected",
        [
            ("1", int, 1),
            (2.0, int, 2),
            (True, int, 1),
            (1, float, 1.0),
            ("0.5", float, 0.5),
            (1, str, "1"),
            (False, str, "0"),
            (bytearray(b"ab"), bytes, b"ab"),
        ],
    )
    def test_matches_column_affinity(self, value, python_type, expected):
        """Test that values convert the way the column would store them."""
        result = coerce(value, python_type)
        assert result == expected
        assert type(result) is type(expected)

    def test_pass_through(self):
        """Test that untyped stores, None and records are unchanged."""
        point = Point(1, 2)
        assert coerce("1", None) == "1"
        assert coerce(None, int) is None
        assert coerce(point, Point) is point

    @pytest.mark.parametrize(
        "value, python_type",
        [("abc", int), (1.5, int), (b"1", int), ("x", bytes), (["x"], str), (object(), int)],
    )
    def test_rejects_values_the_column_cannot_hold(self, value, python_type):
        """Test that mismatched values raise TypeError."""
        with pytest.raises(TypeError, match="Cannot store value"):
            coerce(value, python_type)


class TestEncode:
    """Tests for binding conversions."""

    def test_scalars_pass_through(self):
        """Test that scalars are bound unchanged."""
        assert encode(5) == 5
        assert encode(1.5) == 1.5
        assert encode("a") == "a"
        assert encode(b"\x00") == b"\x00"
        assert encode(None) is None

    def test_buffers_become_bytes(self):
        """Test that mutable buffers are frozen to bytes."""
        assert encode(bytearray(b"ab")) == b"ab"
        assert encode(memoryview(b"cd")) == b"cd"

    def test_record_becomes_raw_bytes(self):
        """Test that ctypes records are stored as their memory image."""
        raw = encode(Point(1, 2))
        assert isinstance(raw, bytes)
        assert len(raw) == ctypes.sizeof(Point)

    def test_unsupported_value(self):
        """Test that values with no SQLite form raise TypeError."""
        with pytest.raises(TypeError):
            encode(object())


class TestDecode:
    """Tests for column value decoding."""

    def test_untyped_returns_raw(self):
        """Test that no declared type returns the raw value."""
        assert decode("x", None) == "x"

    def test_record_round_trip(self):
        """Test that a record BLOB rebuilds an equal record."""
        point = decode(encode(Point(3, -4)), Point)
        assert isinstance(point, Point)
        assert (point.x, point.y) == (3, -4)

    def test_record_size_mismatch(self):
        """Test that a BLOB of the wrong size is rejected."""
        with pytest.raises(ValueError):
            decode(b"\x00" * 3, Point)

    def test_bool_and_float(self):
        """Test coercion to the declared scalar type."""
        assert decode(1, bool) is True
        assert decode(2, float) == 2.0

    def test_is_record_type(self):
        """Test record type detection."""
        assert is_record_type(Point)
        assert is_record_type(ctypes.c_int32 * 4)
        assert not is_record_type(int)
        assert not is_record_type(None)
