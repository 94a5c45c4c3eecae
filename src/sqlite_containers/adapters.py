"""Boundary conversions between caller collections and stored pairs.

Stores accept exactly one input shape: an iterable of (key, value) pairs,
duplicates allowed. These helpers turn the usual Python collections into that
shape, and shape loaded pairs back into grouped collections.
"""

from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Callable

from sqlite_containers.types import PairCount


def pairs_from_mapping(mapping: Mapping[Any, Any]) -> Iterator[tuple[Any, Any]]:
    """Yield one (key, value) pair per mapping entry."""
    for key, value in mapping.items():
        yield key, value


def pairs_from_grouped(mapping: Mapping[Any, Iterable[Any]]) -> Iterator[tuple[Any, Any]]:
    """Yield (key, value) for every value in every key's collection.

    A key mapped to an empty collection contributes nothing.

    Raises:
        TypeError: If a key's values are a str/bytes or not iterable
    """
    for key, values in mapping.items():
        if isinstance(values, (str, bytes, bytearray)) or not isinstance(values, Iterable):
            raise TypeError(
                f"Values for key {key!r} must be a collection, got {type(values).__name__}"
            )
        for value in values:
            yield key, value


def pairs_from_counts(counts: Mapping[tuple[Any, Any], int]) -> Iterator[tuple[Any, Any]]:
    """Yield each (key, value) as many times as its count says.

    Works with collections.Counter over pairs. A zero count contributes nothing.

    Raises:
        ValueError: If a count is negative
    """
    for (key, value), count in counts.items():
        if count < 0:
            raise ValueError(f"Negative count {count} for pair ({key!r}, {value!r})")
        for _ in range(count):
            yield key, value


def expand_counts(triples: Iterable[PairCount]) -> list[tuple[Any, Any]]:
    """Expand persisted associations into a flat list of pairs."""
    pairs: list[tuple[Any, Any]] = []
    for triple in triples:
        pairs.extend([(triple.key, triple.value)] * triple.count)
    return pairs


def group_pairs(
    pairs: Iterable[tuple[Any, Any]],
    factory: Callable[[], Any] = list,
) -> dict[Any, Any]:
    """Group pairs by key into collections built by `factory`.

    Args:
        pairs: (key, value) pairs, duplicates kept
        factory: Collection constructor, e.g. list or set

    Returns:
        Dict of key -> collection of values
    """
    grouped: dict[Any, Any] = {}
    for key, value in pairs:
        bucket = grouped.get(key)
        if bucket is None:
            bucket = factory()
            grouped[key] = bucket
        if hasattr(bucket, "append"):
            bucket.append(value)
        else:
            bucket.add(value)
    return grouped
