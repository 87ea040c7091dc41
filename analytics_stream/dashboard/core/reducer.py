"""State merge reducer: (state, action) → new state.

Responsible for:
- Applying baseline replacement and incremental upserts
- Keeping keys unique and chronological series sorted
- Never mutating the input state (callers may memoize on identity)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from ..models.actions import (
    Action,
    PatchSummary,
    RemoveCategorical,
    ReplaceBaseline,
    Unknown,
    UpsertCategorical,
    UpsertGridCell,
    UpsertSeriesPoint,
)
from ..models.state import AnalyticsState, Key, KeyedCollection

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _touch(previous: datetime | None, now: datetime) -> datetime:
    """Next updated_at: never earlier than the previous one."""
    now = _utc(now)
    if previous is not None and previous > now:
        return previous
    return now


def merge_record(
    collection: KeyedCollection,
    existing: Mapping[str, Any] | None,
    key: Key,
    value: Any,
) -> dict[str, Any]:
    """Merge an upsert payload into a (possibly missing) record.

    Mapping payloads replace the fields they name; scalars replace the value
    field. Key fields always reflect the upsert key.
    """
    record = dict(existing) if existing is not None else {}
    if isinstance(value, Mapping):
        record.update(value)
    else:
        record[collection.value_field] = value
    for name, part in zip(collection.key_fields, key):
        record[name] = part
    return record


def upsert(collection: KeyedCollection, key: Any, value: Any) -> KeyedCollection:
    """Return a copy of ``collection`` with ``key`` inserted or replaced.

    Existing keys keep their position; new keys append at the end. Chronological
    collections are re-sorted afterwards, so out-of-order delivery is harmless.
    """
    normalized = collection.normalize_key(key)
    index = collection.index_of(normalized)
    existing = None if index is None else collection.records[index]
    record = merge_record(collection, existing, normalized, value)

    records = list(collection.records)
    if index is None:
        records.append(record)
    else:
        records[index] = record
    if collection.chronological:
        records.sort(key=collection.sort_key)
    return replace(collection, records=tuple(records))


def remove(collection: KeyedCollection, key: Any) -> KeyedCollection:
    index = collection.index_of(key)
    if index is None:
        return collection
    records = collection.records[:index] + collection.records[index + 1:]
    return replace(collection, records=records)


def _with_collection(
    collections: Mapping[str, KeyedCollection], name: str, collection: KeyedCollection
) -> dict[str, KeyedCollection]:
    return {**collections, name: collection}


def reduce(
    state: AnalyticsState, action: Action, now: datetime | None = None
) -> AnalyticsState:
    """Apply one action to ``state`` and return the resulting state.

    Unknown (and unrecognized) actions return ``state`` itself.
    """
    now = now or datetime.now(timezone.utc)

    if isinstance(action, ReplaceBaseline):
        return AnalyticsState(
            summary=dict(action.summary),
            series=dict(action.series),
            categorical=dict(action.categorical),
            updated_at=_touch(state.updated_at, action.timestamp or now),
        )

    if isinstance(action, PatchSummary):
        return replace(
            state,
            summary={**state.summary, **action.values},
            updated_at=_touch(state.updated_at, now),
        )

    if isinstance(action, UpsertSeriesPoint):
        series = state.series.get(action.series)
        if series is None:
            series = KeyedCollection(key_fields=(action.key_field,), chronological=True)
        return replace(
            state,
            series=_with_collection(
                state.series, action.series, upsert(series, action.key, action.value)
            ),
            updated_at=_touch(state.updated_at, now),
        )

    if isinstance(action, UpsertCategorical):
        collection = state.categorical.get(action.collection)
        if collection is None:
            collection = KeyedCollection(key_fields=(action.key_field,))
        return replace(
            state,
            categorical=_with_collection(
                state.categorical,
                action.collection,
                upsert(collection, action.key, action.value),
            ),
            updated_at=_touch(state.updated_at, now),
        )

    if isinstance(action, UpsertGridCell):
        collection = state.categorical.get(action.collection)
        if collection is None:
            collection = KeyedCollection(key_fields=tuple(action.key_fields))
        return replace(
            state,
            categorical=_with_collection(
                state.categorical,
                action.collection,
                upsert(collection, (action.row, action.column), action.value),
            ),
            updated_at=_touch(state.updated_at, now),
        )

    if isinstance(action, RemoveCategorical):
        collection = state.categorical.get(action.collection)
        if collection is None:
            return state
        return replace(
            state,
            categorical=_with_collection(
                state.categorical, action.collection, remove(collection, action.key)
            ),
            updated_at=_touch(state.updated_at, now),
        )

    if isinstance(action, Unknown):
        return state

    logger.warning("Ignoring unsupported action: %s", type(action).__name__)
    return state


def reduce_all(
    state: AnalyticsState, actions: Iterable[Action], now: datetime | None = None
) -> AnalyticsState:
    """Fold a sequence of actions into ``state``."""
    for action in actions:
        state = reduce(state, action, now)
    return state
