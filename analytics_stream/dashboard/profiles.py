"""Dashboard profiles: what each analytics dashboard fetches, streams and shows.

A profile bundles the baseline loader (REST → ReplaceBaseline), the stream's
message registry and the derived views built from the merged state. The
orchestrator is the same for every dashboard; only the profile differs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..errors import BaselineFetchError
from .client import BaselineClient, as_list, coerce_number, numeric_map, pick
from .core.transforms import (
    aggregate_attendance,
    aggregate_geo_distribution,
    build_grid_matrix,
    build_retention_series,
    combine_services,
    normalize_series,
    top_entry,
)
from .models.actions import ReplaceBaseline
from .models.messages import (
    EVENT_MESSAGES,
    MONITORING_MESSAGES,
    USER_MESSAGES,
    MessageRegistry,
)
from .models.state import AnalyticsState, KeyedCollection

logger = logging.getLogger(__name__)

BaselineLoader = Callable[[BaselineClient, str | None], Awaitable[ReplaceBaseline]]
ViewBuilder = Callable[[AnalyticsState], dict[str, Any]]
StreamPathResolver = Callable[[BaselineClient, str], Awaitable[str]]


async def _static_stream_path(client: BaselineClient, default: str) -> str:
    return default


@dataclass(frozen=True)
class DashboardProfile:
    """Everything dashboard-specific the orchestrator needs."""

    name: str
    stream_path: str
    messages: MessageRegistry
    fetch_baseline: BaselineLoader
    build_views: ViewBuilder
    resolve_stream_path: StreamPathResolver = _static_stream_path


def _objects(items: Any) -> list[dict[str, Any]]:
    """The mapping entries of a payload list; anything else is skipped."""
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _heatmap_collection(cells: list[Any]) -> KeyedCollection:
    return KeyedCollection.from_records(
        [
            {
                "day": str(pick(cell, "day", "weekday", default="")),
                "hour": int(coerce_number(pick(cell, "hour", "slot"))),
                "value": coerce_number(pick(cell, "value", "count")),
            }
            for cell in _objects(cells)
        ],
        ("day", "hour"),
    )


# =============================================================================
# EVENT ANALYTICS
# =============================================================================


EVENT_DEFAULT_RANGE = "30d"


async def fetch_event_baseline(
    client: BaselineClient, range: str | None = None
) -> ReplaceBaseline:
    """Summary, attendance series, conversions, approval funnel and heatmap."""
    params = {"range": range or EVENT_DEFAULT_RANGE}
    summary, attendance, conversions, funnel, heatmap = await asyncio.gather(
        client.get_json("/api/events/analytics", params),
        client.get_json("/api/events/attendance", params),
        client.get_json("/api/events/conversions", params),
        client.get_json("/api/events/approval-funnel", params),
        client.get_json("/api/events/engagement-heatmap", params),
    )

    series: dict[str, KeyedCollection] = {}
    for entry in _objects(as_list(attendance, "series", "items")):
        event_id = str(pick(entry, "eventId", "id", default=""))
        event_name = pick(entry, "eventName", "name")
        points = [
            {
                "eventId": event_id,
                "eventName": event_name,
                "date": str(pick(point, "date", "day", "timestamp", default="")),
                "registrations": coerce_number(pick(point, "registrations", "registered")),
                "attendance": coerce_number(pick(point, "attendance", "attended")),
            }
            for point in _objects(entry.get("series") or entry.get("points"))
        ]
        series[f"attendance:{event_id}"] = KeyedCollection.from_records(
            points, "date", chronological=True
        )

    return ReplaceBaseline(
        summary=numeric_map(summary),
        series=series,
        categorical={
            "conversions": KeyedCollection.from_records(
                [
                    {
                        "stage": str(pick(item, "stage", "label", "name", default="")),
                        "value": coerce_number(pick(item, "value", "count")),
                    }
                    for item in _objects(as_list(conversions, "conversions", "items"))
                ],
                "stage",
            ),
            "funnel": KeyedCollection.from_records(
                [
                    {
                        "stage": str(pick(item, "stage", "label", "name", default="")),
                        "count": coerce_number(pick(item, "count", "value")),
                    }
                    for item in _objects(as_list(funnel, "stages", "funnel", "items"))
                ],
                "stage",
                value_field="count",
            ),
            "heatmap": _heatmap_collection(as_list(heatmap, "cells", "items")),
        },
    )


def event_views(state: AnalyticsState) -> dict[str, Any]:
    conversions = state.records("conversions")
    return {
        "summary": dict(state.summary),
        "attendance": aggregate_attendance(state),
        "conversions": conversions,
        "top_conversion": top_entry(conversions),
        "funnel": state.records("funnel"),
        "heatmap": build_grid_matrix(state.records("heatmap")),
    }


# =============================================================================
# USER ANALYTICS
# =============================================================================


async def fetch_user_baseline(
    client: BaselineClient, range: str | None = None
) -> ReplaceBaseline:
    """Engagement, match success, activity heatmap, cohorts and geography.

    The users API has no default window; ``range`` is only sent when given.
    """
    params = {"range": range} if range else None
    engagement, match_success, heatmap, cohorts, geo = await asyncio.gather(
        client.get_json("/api/users/engagement", params),
        client.get_json("/api/users/match-success", params),
        client.get_json("/api/users/activity-heatmap", params),
        client.get_json("/api/users/cohorts", params),
        client.get_json("/api/users/geo-distribution", params),
    )
    engagement = engagement if isinstance(engagement, dict) else {}
    match_success = match_success if isinstance(match_success, dict) else {}

    summary = numeric_map(engagement.get("summary"))
    if "overallRate" in match_success:
        summary["matchSuccessRate"] = coerce_number(match_success["overallRate"])

    engagement_points = [
        {
            "timestamp": str(pick(point, "timestamp", "date", default="")),
            "activeUsers": coerce_number(pick(point, "activeUsers", "active_users")),
            "interactions": coerce_number(point.get("interactions")),
            "matches": coerce_number(point.get("matches")),
        }
        for point in _objects(engagement.get("series"))
    ]
    trend_points = [
        {
            "date": str(pick(point, "date", "timestamp", default="")),
            "rate": coerce_number(point.get("rate")),
        }
        for point in _objects(match_success.get("trend"))
    ]

    return ReplaceBaseline(
        summary=summary,
        series={
            "engagement": KeyedCollection.from_records(
                engagement_points, "timestamp", chronological=True
            ),
            "matchTrend": KeyedCollection.from_records(
                trend_points, "date", value_field="rate", chronological=True
            ),
        },
        categorical={
            "matchSegments": KeyedCollection.from_records(
                [
                    {
                        "segment": str(pick(item, "segment", "label", default="")),
                        "rate": coerce_number(item.get("rate")),
                    }
                    for item in _objects(match_success.get("segments"))
                ],
                "segment",
                value_field="rate",
            ),
            "heatmap": _heatmap_collection(as_list(heatmap, "cells", "items")),
            "cohorts": KeyedCollection.from_records(
                [
                    {
                        "cohort": str(pick(item, "cohort", "label", default="")),
                        "values": [
                            {
                                "period": str(pick(value, "period", "label", default="")),
                                "rate": coerce_number(value.get("rate")),
                            }
                            for value in _objects(item.get("values"))
                        ],
                    }
                    for item in _objects(as_list(cohorts, "cohorts", "items"))
                ],
                "cohort",
                value_field="values",
            ),
            "geo": KeyedCollection.from_records(
                [
                    {
                        **item,
                        "countryCode": str(pick(item, "countryCode", "country", default="")).upper(),
                        "userCount": coerce_number(pick(item, "userCount", "users", "count")),
                    }
                    for item in _objects(as_list(geo, "buckets", "items"))
                ],
                "countryCode",
                value_field="userCount",
            ),
        },
    )


def user_views(state: AnalyticsState) -> dict[str, Any]:
    engagement = state.records("engagement")
    return {
        "summary": dict(state.summary),
        "engagement": engagement,
        "engagement_normalized": normalize_series(
            [point.get("activeUsers") or 0 for point in engagement]
        ),
        "match_segments": state.records("matchSegments"),
        "match_trend": state.records("matchTrend"),
        "retention": build_retention_series(state.records("cohorts")),
        "heatmap": build_grid_matrix(state.records("heatmap")),
        "regions": aggregate_geo_distribution(state.records("geo")),
    }


# =============================================================================
# SYSTEM MONITORING
# =============================================================================

MONITORING_STREAM_PATH = "/ws/monitoring"
MONITORING_DEFAULT_RANGE = "24h"


async def fetch_monitoring_baseline(
    client: BaselineClient, range: str | None = None
) -> ReplaceBaseline:
    """Service metrics and status; history is best-effort."""
    params = {"range": range or MONITORING_DEFAULT_RANGE}
    metrics, status = await asyncio.gather(
        client.get_json("/api/monitoring/metrics", params),
        client.get_json("/api/monitoring/status"),
    )
    try:
        history = await client.get_json("/api/monitoring/history", params)
    except BaselineFetchError as e:
        logger.warning("Monitoring history unavailable: %s", e)
        history = {}

    services = []
    indicators = []
    for service in _objects(as_list(metrics, "services")):
        service_id = str(pick(service, "id", "serviceId", default=""))
        services.append(
            {k: v for k, v in service.items() if k != "indicators"} | {"id": service_id}
        )
        for indicator in _objects(service.get("indicators")):
            indicators.append(
                {
                    **indicator,
                    "serviceId": service_id,
                    "type": str(pick(indicator, "type", "indicator", default="")),
                    "value": coerce_number(indicator.get("value")),
                }
            )

    status = status if isinstance(status, dict) else {}
    statuses = [
        {**item, "id": str(pick(item, "id", "serviceId", default=""))}
        for item in _objects(status.get("services"))
    ]
    incidents = [
        item
        for item in _objects(status.get("incidents"))
        if not item.get("resolvedAt")
    ]

    series: dict[str, KeyedCollection] = {}
    for entry in _objects(as_list(history, "series")):
        name = f"history:{pick(entry, 'serviceId', 'id')}:{entry.get('indicator')}"
        series[name] = KeyedCollection.from_records(
            [
                {
                    "timestamp": str(point.get("timestamp")),
                    "value": coerce_number(point.get("value")),
                }
                for point in _objects(entry.get("points"))
            ],
            "timestamp",
            chronological=True,
        )

    return ReplaceBaseline(
        summary={},
        series=series,
        categorical={
            "services": KeyedCollection.from_records(services, "id"),
            "indicators": KeyedCollection.from_records(indicators, ("serviceId", "type")),
            "statuses": KeyedCollection.from_records(statuses, "id"),
            "incidents": KeyedCollection.from_records(incidents, "id"),
        },
    )


async def resolve_monitoring_stream_path(client: BaselineClient, default: str) -> str:
    """Socket path advertised by the monitoring API, else ``default``."""
    try:
        config = await client.get_json("/api/monitoring/streams")
    except BaselineFetchError as e:
        logger.warning("Failed to load monitoring stream configuration: %s", e)
        return default
    path = config.get("socketPath") if isinstance(config, dict) else None
    if not isinstance(path, str) or not path:
        return default
    return path if path.startswith("/") else f"/{path}"


def monitoring_views(state: AnalyticsState) -> dict[str, Any]:
    services = combine_services(state)
    counts: dict[str, int] = {}
    for entry in services:
        status = entry["service"].get("status", "operational")
        counts[status] = counts.get(status, 0) + 1
    return {
        "services": services,
        "status_counts": counts,
        "incidents": state.records("incidents"),
        "history": {
            name.removeprefix("history:"): collection.to_list()
            for name, collection in state.series_with_prefix("history:").items()
        },
    }


# =============================================================================
# REGISTRY
# =============================================================================

EVENTS = DashboardProfile(
    name="events",
    stream_path="/ws/events",
    messages=EVENT_MESSAGES,
    fetch_baseline=fetch_event_baseline,
    build_views=event_views,
)

USERS = DashboardProfile(
    name="users",
    stream_path="/ws/users",
    messages=USER_MESSAGES,
    fetch_baseline=fetch_user_baseline,
    build_views=user_views,
)

MONITORING = DashboardProfile(
    name="monitoring",
    stream_path=MONITORING_STREAM_PATH,
    messages=MONITORING_MESSAGES,
    fetch_baseline=fetch_monitoring_baseline,
    build_views=monitoring_views,
    resolve_stream_path=resolve_monitoring_stream_path,
)

PROFILES: dict[str, DashboardProfile] = {
    profile.name: profile for profile in (EVENTS, USERS, MONITORING)
}


def get_profile(name: str) -> DashboardProfile:
    """Look up a profile by name.

    Raises:
        KeyError: If no dashboard has that name.
    """
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(f"Unknown dashboard: {name!r}") from None
