# src/nrtrace/attributes.py
"""Typed key/value attributes shared by spans and logs.

Values are restricted to str, int, float and bool. Anything else is stored as
its repr() string, the same way unstructured fields are debug-formatted by the
instrumentation.

Merge policy is permissive last-write-wins: a later value replaces an earlier
one under the same key even when the types differ (a string may be overwritten
by an integer). Insertion order of first occurrence is kept so serialized
output is deterministic.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Union

AttributeValue = Union[str, int, float, bool]

_SUPPORTED_TYPES = (str, int, float, bool)


def coerce_value(value: object) -> AttributeValue:
    """Normalize a value to one of the supported attribute types."""
    if isinstance(value, _SUPPORTED_TYPES):
        return value
    return repr(value)


class Attributes(Mapping[str, AttributeValue]):
    """Ordered attribute collection with last-write-wins merging.

    Not thread-safe on its own. Open spans guard their collection with the
    span entry lock; finalized records never mutate it again.
    """

    __slots__ = ("_data",)

    def __init__(self, items: Mapping[str, object] | Iterable[tuple[str, object]] | None = None) -> None:
        self._data: dict[str, AttributeValue] = {}
        if items is not None:
            self.merge(items)

    def set(self, key: str, value: object) -> None:
        if not isinstance(key, str):
            raise TypeError(f"attribute key must be str, got {type(key).__name__}")
        if not key:
            raise ValueError("attribute key cannot be empty")
        self._data[key] = coerce_value(value)

    def merge(self, other: Mapping[str, object] | Iterable[tuple[str, object]]) -> None:
        """Apply every pair from other in order; later values win."""
        pairs = other.items() if isinstance(other, Mapping) else other
        for key, value in pairs:
            self.set(key, value)

    def copy(self) -> Attributes:
        clone = Attributes()
        clone._data = dict(self._data)
        return clone

    def to_dict(self) -> dict[str, AttributeValue]:
        return dict(self._data)

    def __getitem__(self, key: str) -> AttributeValue:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Attributes):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._data.items()))

    def __repr__(self) -> str:
        return f"Attributes({self._data!r})"
