"""Derived-view transforms: state collections → renderable structures.

Responsible for:
- Cohort retention curves with consistent period ordering
- Dense day/hour matrices for heatmaps
- Country → region buckets for the geographic overview
- Normalized sparklines and per-dashboard aggregates

All functions are pure. ViewEngine adds identity-based caching on top.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..models.state import AnalyticsState, chronological_key
from ..models.views import (
    AttendancePoint,
    ConnectionStatus,
    GridMatrix,
    RegionDatum,
    RetentionPoint,
    RetentionSeries,
)
from .connection import ReadyState

logger = logging.getLogger(__name__)


# Retention

PERIOD_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)")


def derive_period_index(label: Any, fallback: int) -> float:
    """Leading numeral of a period label ("Week 2", "Semaine 2,5"), else ``fallback``."""
    match = PERIOD_PATTERN.search(str(label or ""))
    if not match:
        return fallback
    numeric = float(match.group(1).replace(",", "."))
    return numeric if math.isfinite(numeric) else fallback


def clamp_rate(rate: Any) -> float:
    """Clamp a retention rate into [0, 1]; values in (1, 100] are percentages."""
    try:
        value = float(rate)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or value < 0:
        return 0.0
    if 1 < value <= 100:
        return value / 100
    if value > 1:
        return 1.0
    return value


def build_retention_series(cohorts: Iterable[Mapping[str, Any]]) -> list[RetentionSeries]:
    """Turn cohort records (``cohort`` + ``values`` of ``period``/``rate``) into curves."""
    result = []
    for cohort in cohorts:
        indexed = [
            (derive_period_index(point.get("period"), position), point)
            for position, point in enumerate(cohort.get("values") or [])
        ]
        indexed.sort(key=lambda item: item[0])
        result.append(
            RetentionSeries(
                cohort=str(cohort.get("cohort", "")),
                points=[
                    RetentionPoint(
                        period_index=index,
                        period_label=str(point.get("period", "")),
                        rate=clamp_rate(point.get("rate")),
                    )
                    for index, point in indexed
                ],
            )
        )
    return result


# Grid / heatmap

DAY_ORDER: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
    "lundi",
    "mardi",
    "mercredi",
    "jeudi",
    "vendredi",
    "samedi",
    "dimanche",
)


def day_index(day: Any, fallback: int, order: Sequence[str] = DAY_ORDER) -> int:
    try:
        return list(order).index(str(day).lower())
    except ValueError:
        return fallback


def build_grid_matrix(
    cells: Iterable[Mapping[str, Any]],
    row_field: str = "day",
    column_field: str = "hour",
    value_field: str = "value",
    row_order: Sequence[str] = DAY_ORDER,
) -> GridMatrix:
    """Dense matrix from scattered cells.

    Rows follow ``row_order`` where known, otherwise first-seen order after the
    known ones; columns are sorted; missing cells are 0.
    """
    cell_list = [cell for cell in cells if isinstance(cell, Mapping)]
    unknown = len(row_order)
    first_seen: dict[Any, int] = {}
    for cell in cell_list:
        first_seen.setdefault(cell.get(row_field), len(first_seen))
    ordered = sorted(
        cell_list,
        key=lambda cell: (
            day_index(cell.get(row_field), unknown, row_order),
            first_seen[cell.get(row_field)],
            chronological_key(cell.get(column_field)),
        ),
    )

    rows: list[str] = []
    row_positions: dict[Any, int] = {}
    column_set: set[Any] = set()
    for cell in ordered:
        row = cell.get(row_field)
        if row not in row_positions:
            row_positions[row] = len(rows)
            rows.append(row)
        column_set.add(cell.get(column_field))

    columns = sorted(column_set, key=chronological_key)
    column_positions = {column: i for i, column in enumerate(columns)}
    values = [[0.0 for _ in columns] for _ in rows]

    max_value = 0.0
    for cell in ordered:
        value = cell.get(value_field) or 0
        r = row_positions[cell.get(row_field)]
        c = column_positions[cell.get(column_field)]
        values[r][c] = value
        if value > max_value:
            max_value = value

    return GridMatrix(rows=rows, columns=columns, values=values, max_value=max_value)


# Geography

COUNTRY_REGION_MAP: dict[str, str] = {
    "US": "North America",
    "CA": "North America",
    "MX": "North America",
    "BR": "South America",
    "AR": "South America",
    "CL": "South America",
    "GB": "Europe",
    "FR": "Europe",
    "DE": "Europe",
    "ES": "Europe",
    "IT": "Europe",
    "PT": "Europe",
    "NL": "Europe",
    "BE": "Europe",
    "PL": "Europe",
    "SE": "Europe",
    "NO": "Europe",
    "DK": "Europe",
    "FI": "Europe",
    "IE": "Europe",
    "CH": "Europe",
    "AT": "Europe",
    "CN": "Asia",
    "JP": "Asia",
    "KR": "Asia",
    "SG": "Asia",
    "IN": "Asia",
    "ID": "Asia",
    "TH": "Asia",
    "PH": "Asia",
    "AE": "Middle East",
    "SA": "Middle East",
    "QA": "Middle East",
    "ZA": "Africa",
    "NG": "Africa",
    "EG": "Africa",
    "KE": "Africa",
    "MA": "Africa",
    "TN": "Africa",
    "AU": "Oceania",
    "NZ": "Oceania",
}

REGION_LABELS: tuple[str, ...] = (
    "North America",
    "South America",
    "Europe",
    "Africa",
    "Middle East",
    "Asia",
    "Oceania",
    "Other",
)


def aggregate_geo_distribution(
    buckets: Iterable[Mapping[str, Any]],
    code_field: str = "countryCode",
    count_field: str = "userCount",
) -> list[RegionDatum]:
    """Sum country buckets into regions. Every region is present, even at 0."""
    totals: dict[str, float] = {}
    for bucket in buckets:
        code = str(bucket.get(code_field) or "").upper()
        region = COUNTRY_REGION_MAP.get(code, "Other")
        totals[region] = totals.get(region, 0) + (bucket.get(count_field) or 0)
    return [
        RegionDatum(id=region, label=region, value=totals.get(region, 0))
        for region in REGION_LABELS
    ]


# Series

def normalize_series(values: Sequence[float]) -> list[float]:
    """Scale values into [0, 1] by the maximum; empty or all-zero input gives zeros."""
    peak = max((v for v in values), default=0)
    if peak <= 0:
        return [0.0 for _ in values]
    return [v / peak for v in values]


def aggregate_attendance(state: AnalyticsState) -> list[AttendancePoint]:
    """Registrations and attendance summed per date across all events."""
    buckets: dict[str, AttendancePoint] = {}
    for series in state.series_with_prefix("attendance:").values():
        for point in series:
            date = str(point.get("date"))
            bucket = buckets.setdefault(date, AttendancePoint(date=date))
            bucket.registrations += point.get("registrations") or 0
            bucket.attendance += point.get("attendance") or 0
    return sorted(buckets.values(), key=lambda p: chronological_key(p.date))


def top_entry(
    records: Iterable[Mapping[str, Any]], field: str = "value"
) -> Mapping[str, Any] | None:
    """First record with the highest ``field`` value, or None when empty."""
    best: Mapping[str, Any] | None = None
    for record in records:
        if best is None or (record.get(field) or 0) > (best.get(field) or 0):
            best = record
    return best


# Monitoring

INDICATOR_LABELS: dict[str, str] = {
    "cpu": "CPU",
    "memory": "Memory",
    "latency": "Latency",
    "errors": "Errors",
}

INDICATOR_UNITS: dict[str, str] = {
    "cpu": "%",
    "memory": "%",
    "latency": "ms",
    "errors": "err/min",
}


def indicator_defaults(indicator: str) -> dict[str, Any]:
    """Label, unit and thresholds for an indicator first seen on the stream."""
    latency = indicator == "latency"
    return {
        "type": indicator,
        "label": INDICATOR_LABELS.get(indicator, indicator),
        "unit": INDICATOR_UNITS.get(indicator, ""),
        "value": 0,
        "thresholds": {
            "warning": 250 if latency else 70,
            "critical": 400 if latency else 90,
        },
    }


def combine_services(state: AnalyticsState) -> list[dict[str, Any]]:
    """One entry per service merging metrics, status and open incidents."""
    services = state.records("services")
    statuses = {record.get("id"): record for record in state.records("statuses")}
    incidents = state.records("incidents")
    indicators = state.records("indicators")

    ordered_ids: list[Any] = [record.get("id") for record in services]
    ordered_ids += [sid for sid in statuses if sid not in ordered_ids]
    by_id = {record.get("id"): record for record in services}

    combined = []
    for service_id in ordered_ids:
        status = statuses.get(service_id)
        service = {
            "id": service_id,
            "name": service_id,
            "environment": "production",
            "status": "operational",
            **by_id.get(service_id, {}),
        }
        if status is not None:
            service["status"] = status.get("status", service["status"])
            for name in ("name", "environment", "region"):
                if status.get(name) and name not in by_id.get(service_id, {}):
                    service[name] = status[name]

        service["indicators"] = [
            {**indicator_defaults(str(reading.get("type"))), **reading}
            for reading in indicators
            if reading.get("serviceId") == service_id
        ]
        open_incidents = [i for i in incidents if i.get("serviceId") == service_id]
        combined.append(
            {
                "service": service,
                "status": status,
                "incidents": open_incidents,
                "ongoing_incident": open_incidents[-1] if open_incidents else None,
            }
        )
    return combined


# Connection indicator

_CONNECTION_LABELS: dict[ReadyState, tuple[str, str]] = {
    ReadyState.CONNECTING: ("Connecting", "pending"),
    ReadyState.OPEN: ("Live", "online"),
    ReadyState.CLOSING: ("Closing", "warning"),
    ReadyState.CLOSED: ("Offline", "offline"),
}


def connection_status(ready_state: ReadyState, attempts: int = 0) -> ConnectionStatus:
    label, tone = _CONNECTION_LABELS.get(ready_state, ("Offline", "offline"))
    if ready_state != ReadyState.OPEN and attempts > 0:
        label, tone = "Reconnecting", "pending"
    return ConnectionStatus(
        ready_state=ready_state.value, label=label, tone=tone, attempts=attempts
    )


class ViewEngine:
    """Compute a dashboard's derived views, cached by state identity.

    Usage:
        engine = ViewEngine(event_views)
        views = engine.compute(orchestrator.state)
    """

    def __init__(self, builder: Callable[[AnalyticsState], dict[str, Any]]) -> None:
        self._builder = builder
        self._last_state: AnalyticsState | None = None
        self._last_views: dict[str, Any] = {}
        self._computations: int = 0

    @property
    def computations(self) -> int:
        """Number of times views were actually recomputed."""
        return self._computations

    def compute(self, state: AnalyticsState) -> dict[str, Any]:
        if state is not self._last_state:
            self._last_views = self._builder(state)
            self._last_state = state
            self._computations += 1
        return self._last_views
