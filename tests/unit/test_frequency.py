"""Tests for comparison strategies and FrequencyMap."""

import ctypes

import pytest

from sqlite_containers.frequency import (
    AUTO,
    BYTEWISE,
    EQUALITY,
    Comparison,
    FrequencyMap,
    select_comparison,
)


class Point(ctypes.Structure):
    _fields_ = [("x", ctypes.c_int32), ("y", ctypes.c_int32)]


class Opaque:
    """A type with neither value equality nor a byte view."""


class Tagged:
    def __init__(self, name: str):
        self.name = name

    def __eq__(self, other):
        return isinstance(other, Tagged) and other.name == self.name

    def __hash__(self):
        return hash(self.name)


class TestSelectComparison:
    """Tests for capability-based strategy selection."""

    @pytest.mark.parametrize("python_type", [int, float, str, bytes])
    def test_scalars_use_equality(self, python_type):
        """Test that scalar types compare by value."""
        assert select_comparison(python_type) is EQUALITY

    def test_record_uses_bytewise(self):
        """Test that ctypes records compare by raw bytes."""
        assert select_comparison(Point) is BYTEWISE

    def test_custom_equality(self):
        """Test that a hashable type with its own __eq__ uses equality."""
        assert select_comparison(Tagged) is EQUALITY

    def test_untyped_uses_auto(self):
        """Test that no declared type picks per value."""
        assert select_comparison(None) is AUTO

    def test_unsupported_type(self):
        """Test that a type with no usable identity is rejected."""
        with pytest.raises(TypeError):
            select_comparison(Opaque)


class TestComparison:
    """Tests for strategy semantics."""

    def test_bytewise_equal_records(self):
        """Test that records with equal bytes are the same."""
        assert BYTEWISE.same(Point(1, 2), Point(1, 2))
        assert not BYTEWISE.same(Point(1, 2), Point(2, 1))

    def test_equality_treats_buffers_as_bytes(self):
        """Test that bytearray and bytes with equal content are the same."""
        assert EQUALITY.same(bytearray(b"ab"), b"ab")

    def test_custom_strategy(self):
        """Test that a caller-supplied strategy is honored."""
        case_insensitive = Comparison("casefold", lambda s: s.casefold())
        assert case_insensitive.same("Red", "RED")


class TestFrequencyMap:
    """Tests for building frequency maps from pairs."""

    def test_counts_duplicates(self):
        """Test that repeated pairs accumulate counts."""
        freq = FrequencyMap.from_pairs([(1, "a"), (1, "a"), (2, "b")])
        assert list(freq.triples()) == [(1, "a", 2), (2, "b", 1)]
        assert freq.count(1, "a") == 2
        assert freq.count(3, "z") == 0

    def test_first_appearance_order(self):
        """Test that keys and values keep first-appearance order."""
        freq = FrequencyMap.from_pairs([("b", 2), ("a", 1), ("b", 1), ("a", 1)])
        assert list(freq.keys()) == ["b", "a"]
        assert freq.values_of("b") == [(2, 1), (1, 1)]
        assert list(freq.distinct_values()) == [2, 1]

    def test_sizes(self):
        """Test key, pair and occurrence totals."""
        freq = FrequencyMap.from_pairs([(1, "a"), (1, "b"), (1, "a"), (2, "a")])
        assert len(freq) == 2
        assert freq.pair_count() == 3
        assert freq.total() == 4
        assert bool(freq)

    def test_empty(self):
        """Test an empty map."""
        freq = FrequencyMap.from_pairs([])
        assert len(freq) == 0
        assert not freq
        assert list(freq.items()) == []

    def test_bytewise_records_group(self):
        """Test that equal records collapse under BYTEWISE."""
        freq = FrequencyMap.from_pairs(
            [(Point(1, 1), 1), (Point(1, 1), 1)],
            key_comparison=BYTEWISE,
        )
        assert len(freq) == 1
        assert freq.pair_count() == 1
        assert freq.total() == 2

    def test_add_with_count(self):
        """Test adding several occurrences at once."""
        freq = FrequencyMap()
        freq.add("k", "v", count=3)
        freq.add("k", "v")
        assert freq.count("k", "v") == 4

    def test_add_rejects_non_positive_count(self):
        """Test that counts below one are rejected."""
        with pytest.raises(ValueError):
            FrequencyMap().add("k", "v", count=0)

    def test_rejects_non_pairs(self):
        """Test that malformed input raises TypeError."""
        with pytest.raises(TypeError):
            FrequencyMap.from_pairs([(1, 2, 3)])
        with pytest.raises(TypeError):
            FrequencyMap.from_pairs([5])

    def test_repr(self):
        """Test that repr names the strategies."""
        assert "auto" in repr(FrequencyMap())
