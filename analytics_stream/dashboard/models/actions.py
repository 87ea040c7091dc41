"""Reducer actions.

The closed set of state transitions the reducer understands. Stream messages
and baseline loaders produce these; nothing else mutates analytics state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Hashable, Mapping, Union

from .state import KeyedCollection


@dataclass(frozen=True)
class ReplaceBaseline:
    """Replace every collection with a freshly fetched snapshot."""

    summary: Mapping[str, float] = field(default_factory=dict)
    series: Mapping[str, KeyedCollection] = field(default_factory=dict)
    categorical: Mapping[str, KeyedCollection] = field(default_factory=dict)
    timestamp: datetime | None = None


@dataclass(frozen=True)
class PatchSummary:
    """Shallow-merge scalar metrics into the summary."""

    values: Mapping[str, float]


@dataclass(frozen=True)
class UpsertSeriesPoint:
    """Insert or replace one point of a chronological series."""

    series: str
    key: Any
    value: Any
    key_field: str = "timestamp"


@dataclass(frozen=True)
class UpsertCategorical:
    """Insert or replace one record of a categorical collection."""

    collection: str
    key: Hashable
    value: Any
    key_field: str = "key"


@dataclass(frozen=True)
class UpsertGridCell:
    """Insert or replace one cell of a 2-D collection keyed by (row, column)."""

    collection: str
    row: Hashable
    column: Hashable
    value: Any
    key_fields: tuple[str, str] = ("row", "column")


@dataclass(frozen=True)
class RemoveCategorical:
    """Drop one record of a categorical collection (e.g. a resolved incident)."""

    collection: str
    key: Hashable


@dataclass(frozen=True)
class Unknown:
    """Message with an unrecognized discriminant. The reducer ignores it."""

    discriminant: str
    payload: Mapping[str, Any] = field(default_factory=dict)


Action = Union[
    ReplaceBaseline,
    PatchSummary,
    UpsertSeriesPoint,
    UpsertCategorical,
    UpsertGridCell,
    RemoveCategorical,
    Unknown,
]
