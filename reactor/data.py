"""
Indifferent data bag.

The payload of every event crosses a JSON boundary twice (publish -> queue,
queue -> subscriber job), so keys are normalized to strings and string
values are sanitized to valid UTF-8 before they are stored.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from datetime import date, datetime
from enum import Enum
from typing import Any


def normalize_key(key: Any) -> str:
    """Normalize a key so "actor", Field.ACTOR and b"actor" address the same entry."""
    if isinstance(key, Enum):
        key = key.value
    if isinstance(key, bytes):
        key = key.decode("utf-8", errors="ignore")
    return str(key)


def sanitize(value: Any) -> Any:
    """
    Drop invalid sequences from text so the value survives serialization.

    Lone surrogates in ``str`` and invalid bytes in ``bytes`` are removed,
    at any depth of nested mappings, lists and tuples. Every other type is
    returned untouched.
    """
    if isinstance(value, str):
        return value.encode("utf-8", errors="ignore").decode("utf-8")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    if isinstance(value, Mapping):
        return {normalize_key(k): sanitize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize(v) for v in value]
    if isinstance(value, tuple):
        return tuple(sanitize(v) for v in value)
    return value


class IndifferentDict(MutableMapping[str, Any]):
    """
    String-keyed mapping with normalized key access.

    Nested plain mappings are converted on assignment, so indifferent access
    holds at every depth.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[Any, Any] | None = None, **kwargs: Any):
        self._data: dict[str, Any] = {}
        if data:
            self.update(data)
        if kwargs:
            self.update(kwargs)

    @staticmethod
    def _convert(value: Any) -> Any:
        if isinstance(value, IndifferentDict):
            return value
        if isinstance(value, Mapping):
            return IndifferentDict(value)
        return value

    def __getitem__(self, key: Any) -> Any:
        return self._data[normalize_key(key)]

    def __setitem__(self, key: Any, value: Any) -> None:
        self._data[normalize_key(key)] = self._convert(value)

    def __delitem__(self, key: Any) -> None:
        del self._data[normalize_key(key)]

    def __contains__(self, key: object) -> bool:
        return normalize_key(key) in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, IndifferentDict):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == {normalize_key(k): v for k, v in other.items()}
        return NotImplemented

    def __repr__(self) -> str:
        return f"IndifferentDict({self._data!r})"

    def copy(self) -> IndifferentDict:
        return IndifferentDict(self._data)

    def without(self, *keys: Any) -> IndifferentDict:
        """Return a copy with the given keys removed."""
        dropped = {normalize_key(k) for k in keys}
        return IndifferentDict({k: v for k, v in self._data.items() if k not in dropped})

    def to_dict(self) -> dict[str, Any]:
        """Plain, JSON-friendly dict (datetimes become ISO-8601 strings)."""
        return {key: to_plain(value) for key, value in self._data.items()}


def to_plain(value: Any) -> Any:
    """Convert a bag value (or any nested structure) to JSON-friendly builtins."""
    if isinstance(value, IndifferentDict):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {normalize_key(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value
