"""Analytics state models.

The merged state of one dashboard: summary scalars, chronological series and
keyed categorical collections. Every instance is immutable; the reducer builds
new instances instead of editing these.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import cached_property
from typing import Any, Hashable, Iterator, Mapping

Key = tuple[Hashable, ...]


def _epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def chronological_key(value: Any) -> tuple[int, Any]:
    """Sort key for a chronological key component.

    Numbers and ISO-8601 strings sort by instant; anything else sorts as a
    string after them.
    """
    if isinstance(value, bool):
        return (1, str(value))
    if isinstance(value, (int, float)):
        return (0, float(value))
    if isinstance(value, datetime):
        return (0, _epoch(value))
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            pass
        else:
            if math.isfinite(number):
                return (0, number)
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return (1, value)
        return (0, _epoch(parsed))
    return (1, str(value))


@dataclass(frozen=True)
class KeyedCollection:
    """Ordered records with unique keys.

    Keys are tuples built from ``key_fields``; a scalar upsert lands in
    ``value_field``. Chronological collections are kept sorted by key.
    """

    key_fields: tuple[str, ...]
    records: tuple[Mapping[str, Any], ...] = ()
    value_field: str = "value"
    chronological: bool = False

    @classmethod
    def from_records(
        cls,
        records: Any,
        key_fields: str | tuple[str, ...],
        *,
        value_field: str = "value",
        chronological: bool = False,
    ) -> KeyedCollection:
        """Build a collection from raw records, merging duplicate keys.

        A later duplicate is merged into the first-seen record.
        """
        if isinstance(key_fields, str):
            key_fields = (key_fields,)
        empty = cls(
            key_fields=key_fields,
            value_field=value_field,
            chronological=chronological,
        )
        ordered: dict[Key, dict[str, Any]] = {}
        for record in records or ():
            if not isinstance(record, Mapping):
                continue
            key = empty.key_of(record)
            if key in ordered:
                ordered[key].update(record)
            else:
                ordered[key] = dict(record)
        merged = list(ordered.values())
        if chronological:
            merged.sort(key=empty.sort_key)
        return cls(
            key_fields=key_fields,
            records=tuple(merged),
            value_field=value_field,
            chronological=chronological,
        )

    def key_of(self, record: Mapping[str, Any]) -> Key:
        return tuple(record.get(name) for name in self.key_fields)

    def normalize_key(self, key: Any) -> Key:
        """Turn a scalar or tuple key into a tuple matching ``key_fields``."""
        normalized = tuple(key) if isinstance(key, (tuple, list)) else (key,)
        if len(normalized) != len(self.key_fields):
            raise ValueError(
                f"Key {key!r} does not match key fields {self.key_fields!r}"
            )
        return normalized

    def sort_key(self, record: Mapping[str, Any]) -> tuple[tuple[int, Any], ...]:
        return tuple(chronological_key(part) for part in self.key_of(record))

    @cached_property
    def _positions(self) -> dict[Key, int]:
        return {self.key_of(record): i for i, record in enumerate(self.records)}

    def index_of(self, key: Any) -> int | None:
        return self._positions.get(self.normalize_key(key))

    def get(self, key: Any) -> Mapping[str, Any] | None:
        index = self.index_of(key)
        return None if index is None else self.records[index]

    def keys(self) -> list[Key]:
        return [self.key_of(record) for record in self.records]

    def to_list(self) -> list[dict[str, Any]]:
        """Plain-data copy of the records for renderers."""
        return [dict(record) for record in self.records]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        return iter(self.records)


@dataclass(frozen=True)
class AnalyticsState:
    """Merged analytics state of one dashboard instance."""

    summary: Mapping[str, float] = field(default_factory=dict)
    series: Mapping[str, KeyedCollection] = field(default_factory=dict)
    categorical: Mapping[str, KeyedCollection] = field(default_factory=dict)
    updated_at: datetime | None = None

    def get_series(self, name: str) -> KeyedCollection | None:
        return self.series.get(name)

    def get_collection(self, name: str) -> KeyedCollection | None:
        return self.categorical.get(name)

    def records(self, name: str) -> list[dict[str, Any]]:
        """Records of a categorical collection or series; empty if absent."""
        collection = self.categorical.get(name) or self.series.get(name)
        return collection.to_list() if collection is not None else []

    def series_with_prefix(self, prefix: str) -> dict[str, KeyedCollection]:
        return {
            name: collection
            for name, collection in self.series.items()
            if name.startswith(prefix)
        }

    @property
    def is_empty(self) -> bool:
        return not (self.summary or self.series or self.categorical)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": dict(self.summary),
            "series": {name: c.to_list() for name, c in self.series.items()},
            "categorical": {
                name: c.to_list() for name, c in self.categorical.items()
            },
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
