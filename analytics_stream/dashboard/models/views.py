"""Derived view models.

Views are computed from analytics state, never stored. They are plain data
so any renderer (chart library, terminal UI, test) can consume them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class RetentionPoint:
    period_index: float
    period_label: str
    rate: float


@dataclass
class RetentionSeries:
    """One cohort's retention curve, ordered by period index."""

    cohort: str
    points: list[RetentionPoint] = field(default_factory=list)


@dataclass
class GridMatrix:
    """Dense row x column matrix, zero-filled."""

    rows: list[str] = field(default_factory=list)
    columns: list[Any] = field(default_factory=list)
    values: list[list[float]] = field(default_factory=list)
    max_value: float = 0.0

    def cell(self, row: str, column: Any) -> float:
        return self.values[self.rows.index(row)][self.columns.index(column)]


@dataclass
class RegionDatum:
    id: str
    label: str
    value: float


@dataclass
class AttendancePoint:
    date: str
    registrations: float = 0.0
    attendance: float = 0.0


@dataclass
class ConnectionStatus:
    """Connection indicator for the "live / reconnecting" badge."""

    ready_state: str
    label: str
    tone: str
    attempts: int = 0


def to_plain(value: Any) -> Any:
    """Recursively convert view dataclasses into dicts and lists."""
    if hasattr(value, "__dataclass_fields__"):
        return asdict(value)
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value
