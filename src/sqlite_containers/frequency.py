"""Frequency maps: the canonical input of a reconciliation.

A FrequencyMap turns any iterable of (key, value) pairs into
key -> (value -> occurrence count). Two values are "the same" according to a
Comparison strategy:

- EQUALITY: the values' own == and hash (numbers, strings, byte strings)
- BYTEWISE: the raw bytes of opaque fixed-size records that define no ==

The strategy is a first-class parameter. When the caller does not supply one,
select_comparison() picks it by inspecting what the type actually supports.
"""

from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Iterator, Optional

from sqlite_containers.codecs import is_record_type


@dataclass(frozen=True)
class Comparison:
    """A value-identity strategy.

    Attributes:
        name: Strategy name used in logs and reprs
        fingerprint: Maps a value to a hashable token; equal tokens mean
            equal values
    """

    name: str
    fingerprint: Callable[[Any], Hashable]

    def same(self, left: Any, right: Any) -> bool:
        """Check whether two values are identical under this strategy."""
        return self.fingerprint(left) == self.fingerprint(right)


def _equality_fingerprint(value: Any) -> Hashable:
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


def _bytewise_fingerprint(value: Any) -> Hashable:
    # The type is part of the token so two record types with equal bytes stay distinct
    return (type(value), memoryview(value).tobytes())


def _auto_fingerprint(value: Any) -> Hashable:
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if is_record_type(type(value)):
        return _bytewise_fingerprint(value)
    return value


EQUALITY = Comparison("equality", _equality_fingerprint)
BYTEWISE = Comparison("bytewise", _bytewise_fingerprint)
# Picks per value: bytes for ctypes records, equality otherwise
AUTO = Comparison("auto", _auto_fingerprint)


def _supports_buffer(python_type: type) -> bool:
    return is_record_type(python_type) or hasattr(python_type, "__buffer__")


def select_comparison(python_type: Optional[type]) -> Comparison:
    """Choose a comparison strategy from a type's capabilities.

    Args:
        python_type: The key or value type, or None when values are untyped

    Returns:
        EQUALITY for types with usable == and hash, BYTEWISE for opaque
        records that only expose their bytes

    Raises:
        TypeError: If the type offers neither
    """
    if python_type is None:
        return AUTO
    if issubclass(python_type, (int, float, str, bytes, bytearray)):
        return EQUALITY
    if is_record_type(python_type):
        return BYTEWISE
    defines_eq = python_type.__eq__ is not object.__eq__
    if defines_eq and python_type.__hash__ is not None:
        return EQUALITY
    if _supports_buffer(python_type):
        return BYTEWISE
    raise TypeError(
        f"{python_type.__name__} provides neither hashable equality nor a raw byte view"
    )


class _Entry:
    __slots__ = ("item", "count")

    def __init__(self, item: Any) -> None:
        self.item = item
        self.count = 0


class FrequencyMap:
    """Occurrence counts of (key, value) pairs grouped by key.

    Iteration order follows first appearance of each key and, within a key,
    first appearance of each value.

    Args:
        key_comparison: Identity strategy for keys (default: AUTO)
        value_comparison: Identity strategy for values (default: AUTO)

    Example:
        >>> freq = FrequencyMap.from_pairs([(1, "a"), (1, "a"), (2, "b")])
        >>> list(freq.triples())
        [(1, 'a', 2), (2, 'b', 1)]
    """

    def __init__(
        self,
        key_comparison: Optional[Comparison] = None,
        value_comparison: Optional[Comparison] = None,
    ):
        self.key_comparison = key_comparison or AUTO
        self.value_comparison = value_comparison or AUTO
        self._groups: dict[Hashable, tuple[_Entry, dict[Hashable, _Entry]]] = {}

    @classmethod
    def from_pairs(
        cls,
        pairs: Iterable[tuple[Any, Any]],
        key_comparison: Optional[Comparison] = None,
        value_comparison: Optional[Comparison] = None,
    ) -> "FrequencyMap":
        """Build a frequency map from an iterable of (key, value) pairs."""
        freq = cls(key_comparison, value_comparison)
        for pair in pairs:
            try:
                key, value = pair
            except (TypeError, ValueError) as e:
                raise TypeError(f"Expected a (key, value) pair, got {pair!r}") from e
            freq.add(key, value)
        return freq

    def add(self, key: Any, value: Any, count: int = 1) -> None:
        """Record `count` more occurrences of (key, value).

        Raises:
            ValueError: If count is less than 1
        """
        if count < 1:
            raise ValueError("Occurrence count must be at least 1")
        key_token = self.key_comparison.fingerprint(key)
        group = self._groups.get(key_token)
        if group is None:
            group = (_Entry(key), {})
            self._groups[key_token] = group
        key_entry, values = group

        value_token = self.value_comparison.fingerprint(value)
        entry = values.get(value_token)
        if entry is None:
            entry = _Entry(value)
            values[value_token] = entry
        entry.count += count
        key_entry.count += count

    def count(self, key: Any, value: Any) -> int:
        """Get the occurrence count of (key, value), 0 when absent."""
        group = self._groups.get(self.key_comparison.fingerprint(key))
        if group is None:
            return 0
        entry = group[1].get(self.value_comparison.fingerprint(value))
        return entry.count if entry else 0

    def keys(self) -> Iterator[Any]:
        """Iterate distinct keys."""
        for key_entry, _ in self._groups.values():
            yield key_entry.item

    def items(self) -> Iterator[tuple[Any, list[tuple[Any, int]]]]:
        """Iterate (key, [(value, count), ...]) groups."""
        for key_entry, values in self._groups.values():
            yield key_entry.item, [(entry.item, entry.count) for entry in values.values()]

    def values_of(self, key: Any) -> list[tuple[Any, int]]:
        """Get the (value, count) list for one key, empty when absent."""
        group = self._groups.get(self.key_comparison.fingerprint(key))
        if group is None:
            return []
        return [(entry.item, entry.count) for entry in group[1].values()]

    def distinct_values(self) -> Iterator[Any]:
        """Iterate distinct values across all keys."""
        seen: set[Hashable] = set()
        for _, values in self._groups.values():
            for token, entry in values.items():
                if token not in seen:
                    seen.add(token)
                    yield entry.item

    def triples(self) -> Iterator[tuple[Any, Any, int]]:
        """Iterate (key, value, count) triples."""
        for key_entry, values in self._groups.values():
            for entry in values.values():
                yield key_entry.item, entry.item, entry.count

    def pair_count(self) -> int:
        """Number of distinct (key, value) pairs."""
        return sum(len(values) for _, values in self._groups.values())

    def total(self) -> int:
        """Total number of occurrences across all pairs."""
        return sum(key_entry.count for key_entry, _ in self._groups.values())

    def __len__(self) -> int:
        return len(self._groups)

    def __bool__(self) -> bool:
        return bool(self._groups)

    def __repr__(self) -> str:
        return (
            f"FrequencyMap(keys={len(self)}, pairs={self.pair_count()}, "
            f"key_comparison={self.key_comparison.name}, "
            f"value_comparison={self.value_comparison.name})"
        )
