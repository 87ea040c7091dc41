"""Tests for dashboard profiles: baseline loaders, stream paths and views."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from analytics_stream.dashboard.core.reducer import reduce, reduce_all
from analytics_stream.dashboard.client import BaselineClient
from analytics_stream.dashboard.core.classifier import MessageClassifier
from analytics_stream.dashboard.models.state import AnalyticsState
from analytics_stream.dashboard.profiles import (
    EVENTS,
    MONITORING,
    MONITORING_STREAM_PATH,
    USERS,
    get_profile,
)
from analytics_stream.errors import BaselineFetchError

from tests.testing_utils import json_routes

EVENT_ROUTES: dict[str, Any] = {
    "/api/events/analytics": {"data": {"totalEvents": 42, "activeEvents": "3", "label": "x"}},
    "/api/events/attendance": {
        "series": [
            {
                "eventId": "evt-1",
                "eventName": "Salon",
                "series": [
                    {"date": "2026-03-02", "registrations": 10, "attendance": 8},
                    {"date": "2026-03-01", "registered": "5", "attended": 4},
                ],
            }
        ]
    },
    "/api/events/conversions": [{"label": "Visiteurs", "value": 420}],
    "/api/events/approval-funnel": {"stages": [{"stage": "submitted", "count": 12}]},
    "/api/events/engagement-heatmap": {"cells": [{"day": "Monday", "hour": "9", "value": 4}]},
}

USER_ROUTES: dict[str, Any] = {
    "/api/users/engagement": {
        "summary": {"activeUsers": 320, "newUsers": 12},
        "series": [
            {"timestamp": "2026-03-01T11:00:00Z", "activeUsers": 300},
            {"timestamp": "2026-03-01T10:00:00Z", "activeUsers": 150},
        ],
    },
    "/api/users/match-success": {
        "overallRate": 0.61,
        "segments": [{"segment": "students", "rate": 0.7}],
        "trend": [{"date": "2026-03-01", "rate": 0.6}],
    },
    "/api/users/activity-heatmap": [{"day": "Tuesday", "hour": 20, "value": 9}],
    "/api/users/cohorts": {
        "cohorts": [
            {"cohort": "2026-01", "values": [{"period": "Week 2", "rate": 55}, {"period": "Week 1", "rate": 0.8}]}
        ]
    },
    "/api/users/geo-distribution": [
        {"countryCode": "fr", "countryName": "France", "userCount": 4200},
        {"countryCode": "US", "userCount": 3100},
    ],
}

MONITORING_ROUTES: dict[str, Any] = {
    "/api/monitoring/metrics": {
        "services": [
            {
                "id": "api",
                "name": "API",
                "indicators": [{"type": "latency", "value": 120, "unit": "ms"}],
            }
        ]
    },
    "/api/monitoring/status": {
        "services": [{"serviceId": "api", "status": "degraded"}],
        "incidents": [
            {"id": "inc-1", "serviceId": "api", "severity": "warning"},
            {"id": "inc-0", "serviceId": "api", "resolvedAt": "2026-03-01T08:00:00Z"},
        ],
    },
    "/api/monitoring/history": {
        "series": [
            {
                "serviceId": "api",
                "indicator": "latency",
                "points": [
                    {"timestamp": "2026-03-01T10:00:00Z", "value": 110},
                    {"timestamp": "2026-03-01T09:00:00Z", "value": 100},
                ],
            }
        ]
    },
}


class TestRegistry:
    """Profile lookup."""

    def test_get_profile(self) -> None:
        assert get_profile("events") is EVENTS
        assert get_profile("users") is USERS
        assert get_profile("monitoring") is MONITORING

    def test_unknown_profile(self) -> None:
        with pytest.raises(KeyError):
            get_profile("sales")


class TestEventsProfile:
    """Event analytics baseline and views."""

    @pytest.mark.asyncio
    async def test_baseline_normalized(self, mock_backend: Any) -> None:
        async with mock_backend(EVENT_ROUTES) as client:
            baseline = await EVENTS.fetch_baseline(client)

        state = reduce(AnalyticsState(), baseline)

        assert state.summary == {"totalEvents": 42.0, "activeEvents": 3.0}
        points = state.records("attendance:evt-1")
        assert [p["date"] for p in points] == ["2026-03-01", "2026-03-02"]
        assert points[0]["registrations"] == 5.0
        assert state.records("conversions") == [{"stage": "Visiteurs", "value": 420.0}]
        assert state.records("funnel") == [{"stage": "submitted", "count": 12.0}]
        assert state.records("heatmap") == [{"day": "Monday", "hour": 9, "value": 4.0}]

    @pytest.mark.asyncio
    async def test_views_follow_stream_updates(self, mock_backend: Any) -> None:
        async with mock_backend(EVENT_ROUTES) as client:
            baseline = await EVENTS.fetch_baseline(client)
        classifier = MessageClassifier(EVENTS.messages)
        frames = [
            '{"type": "conversion", "stage": "Visiteurs", "value": 520}',
            '{"type": "heatmap", "day": "Monday", "hour": 10, "value": 2}',
            '{"type": "attendance", "eventId": "evt-2", "date": "2026-03-01", "registrations": 3, "attendance": 2}',
        ]
        actions = [baseline]
        for frame in frames:
            actions.extend(classifier.classify(frame).to_actions())

        views = EVENTS.build_views(reduce_all(AnalyticsState(), actions))

        assert views["top_conversion"] == {"stage": "Visiteurs", "value": 520.0}
        assert views["heatmap"].columns == [9, 10]
        first_day = views["attendance"][0]
        assert (first_day.date, first_day.registrations) == ("2026-03-01", 8.0)

    @pytest.mark.asyncio
    async def test_fetch_failure_raises(self, mock_backend: Any) -> None:
        routes = dict(EVENT_ROUTES)
        routes["/api/events/conversions"] = httpx.Response(500, json={})

        async with mock_backend(routes) as client:
            with pytest.raises(BaselineFetchError):
                await EVENTS.fetch_baseline(client)


class TestUsersProfile:
    """User analytics baseline and views."""

    @pytest.mark.asyncio
    async def test_baseline_and_views(self, mock_backend: Any) -> None:
        async with mock_backend(USER_ROUTES) as client:
            baseline = await USERS.fetch_baseline(client)

        state = reduce(AnalyticsState(), baseline)
        views = USERS.build_views(state)

        assert state.summary["activeUsers"] == 320.0
        assert state.summary["matchSuccessRate"] == 0.61
        assert [p["activeUsers"] for p in views["engagement"]] == [150.0, 300.0]
        assert views["engagement_normalized"] == [0.5, 1.0]
        (retention,) = views["retention"]
        assert [p.rate for p in retention.points] == pytest.approx([0.8, 0.55])
        regions = {r.id: r.value for r in views["regions"]}
        assert regions["Europe"] == 4200.0
        assert regions["North America"] == 3100.0
        assert views["heatmap"].rows == ["Tuesday"]
        assert views["match_segments"] == [{"segment": "students", "rate": 0.7}]


class TestMonitoringProfile:
    """System monitoring baseline, stream path and views."""

    @pytest.mark.asyncio
    async def test_baseline_and_views(self, mock_backend: Any) -> None:
        async with mock_backend(MONITORING_ROUTES) as client:
            baseline = await MONITORING.fetch_baseline(client)

        state = reduce(AnalyticsState(), baseline)
        views = MONITORING.build_views(state)

        (entry,) = views["services"]
        assert entry["service"]["status"] == "degraded"
        assert entry["service"]["indicators"][0]["value"] == 120.0
        assert [i["id"] for i in views["incidents"]] == ["inc-1"]
        assert views["status_counts"] == {"degraded": 1}
        assert [p["value"] for p in views["history"]["api:latency"]] == [100.0, 110.0]

    @pytest.mark.asyncio
    async def test_history_optional(self, mock_backend: Any) -> None:
        routes = dict(MONITORING_ROUTES)
        del routes["/api/monitoring/history"]

        async with mock_backend(routes) as client:
            baseline = await MONITORING.fetch_baseline(client)

        assert baseline.series == {}
        assert "services" in baseline.categorical

    @pytest.mark.asyncio
    async def test_stream_updates_merge(self, mock_backend: Any) -> None:
        async with mock_backend(MONITORING_ROUTES) as client:
            baseline = await MONITORING.fetch_baseline(client)
        classifier = MessageClassifier(MONITORING.messages)
        frames = [
            '{"type": "metric", "serviceId": "api", "indicator": "latency", "value": 300,'
            ' "status": "critical", "timestamp": "2026-03-01T11:00:00Z"}',
            '{"type": "incident", "incident": {"id": "inc-1", "serviceId": "api",'
            ' "resolvedAt": "2026-03-01T11:05:00Z"}}',
        ]
        actions = [baseline]
        for frame in frames:
            actions.extend(classifier.classify(frame).to_actions())

        views = MONITORING.build_views(reduce_all(AnalyticsState(), actions))

        (entry,) = views["services"]
        assert entry["service"]["indicators"][0]["value"] == 300.0
        assert entry["service"]["indicators"][0]["unit"] == "ms"
        assert views["incidents"] == []
        assert [p["value"] for p in views["history"]["api:latency"]] == [100.0, 110.0, 300.0]

    @pytest.mark.asyncio
    async def test_stream_path_from_backend(self, mock_backend: Any) -> None:
        async with mock_backend({"/api/monitoring/streams": {"socketPath": "realtime/monitoring"}}) as client:
            path = await MONITORING.resolve_stream_path(client, MONITORING_STREAM_PATH)

        assert path == "/realtime/monitoring"

    @pytest.mark.asyncio
    async def test_stream_path_fallback(self, mock_backend: Any) -> None:
        async with mock_backend({}) as client:
            path = await MONITORING.resolve_stream_path(client, MONITORING_STREAM_PATH)

        assert path == "/ws/monitoring"

    @pytest.mark.asyncio
    async def test_static_stream_path(self, mock_backend: Any) -> None:
        async with mock_backend({}) as client:
            path = await EVENTS.resolve_stream_path(client, EVENTS.stream_path)

        assert path == "/ws/events"


class TestMalformedPayloads:
    """Entries of the wrong shape are skipped instead of breaking the loader."""

    @pytest.mark.asyncio
    async def test_events(self, mock_backend: Any) -> None:
        routes = dict(EVENT_ROUTES)
        routes["/api/events/attendance"] = {
            "series": [
                "oops",
                {"eventId": "evt-1", "series": ["bad", 3, {"date": "2026-03-01", "registrations": 2}]},
                {"eventId": "evt-2", "series": {"not": "a list"}},
            ]
        }
        routes["/api/events/conversions"] = ["oops", {"label": "Visiteurs", "value": 420}]
        routes["/api/events/approval-funnel"] = {"stages": [None, 7]}
        routes["/api/events/engagement-heatmap"] = {"cells": ["x"]}

        async with mock_backend(routes) as client:
            baseline = await EVENTS.fetch_baseline(client)

        state = reduce(AnalyticsState(), baseline)
        assert [p["date"] for p in state.records("attendance:evt-1")] == ["2026-03-01"]
        assert state.records("attendance:evt-2") == []
        assert state.records("conversions") == [{"stage": "Visiteurs", "value": 420.0}]
        assert state.records("funnel") == []
        assert state.records("heatmap") == []

    @pytest.mark.asyncio
    async def test_users(self, mock_backend: Any) -> None:
        routes = dict(USER_ROUTES)
        routes["/api/users/engagement"] = {
            "summary": {"activeUsers": 320},
            "series": ["oops", {"timestamp": "2026-03-01T10:00:00Z", "activeUsers": 150}],
        }
        routes["/api/users/match-success"] = {"segments": "oops", "trend": [1, 2]}
        routes["/api/users/cohorts"] = [
            "oops",
            {"cohort": "2026-01", "values": ["bad", {"period": "Week 1", "rate": 0.8}]},
        ]
        routes["/api/users/geo-distribution"] = [["fr", 10]]

        async with mock_backend(routes) as client:
            baseline = await USERS.fetch_baseline(client)

        state = reduce(AnalyticsState(), baseline)
        assert [p["activeUsers"] for p in state.records("engagement")] == [150.0]
        assert state.records("matchTrend") == []
        assert state.records("matchSegments") == []
        assert state.records("cohorts") == [
            {"cohort": "2026-01", "values": [{"period": "Week 1", "rate": 0.8}]}
        ]
        assert state.records("geo") == []

    @pytest.mark.asyncio
    async def test_monitoring(self, mock_backend: Any) -> None:
        routes = {
            "/api/monitoring/metrics": {
                "services": ["oops", {"id": "api", "indicators": ["bad", {"type": "latency", "value": 1}]}]
            },
            "/api/monitoring/status": {"services": ["oops"], "incidents": "none"},
            "/api/monitoring/history": {
                "series": ["oops", {"serviceId": "api", "indicator": "latency", "points": [5]}]
            },
        }

        async with mock_backend(routes) as client:
            baseline = await MONITORING.fetch_baseline(client)

        state = reduce(AnalyticsState(), baseline)
        assert [s["id"] for s in state.records("services")] == ["api"]
        assert [i["type"] for i in state.records("indicators")] == ["latency"]
        assert state.records("statuses") == []
        assert state.records("incidents") == []
        assert state.records("history:api:latency") == []

    @pytest.mark.asyncio
    async def test_non_string_socket_path(self, mock_backend: Any) -> None:
        async with mock_backend({"/api/monitoring/streams": {"socketPath": 5}}) as client:
            path = await MONITORING.resolve_stream_path(client, MONITORING_STREAM_PATH)

        assert path == "/ws/monitoring"


class TestRange:
    """Baseline time window forwarded as the range query parameter."""

    @staticmethod
    def ranges(seen: list[httpx.Request]) -> dict[str, str | None]:
        return {request.url.path: request.url.params.get("range") for request in seen}

    @pytest.mark.asyncio
    async def test_events_default_and_override(self) -> None:
        seen: list[httpx.Request] = []
        async with BaselineClient("http://backend.test", transport=json_routes(EVENT_ROUTES, seen)) as client:
            await EVENTS.fetch_baseline(client)
            assert set(self.ranges(seen).values()) == {"30d"}

            seen.clear()
            await EVENTS.fetch_baseline(client, "7d")

        assert self.ranges(seen)["/api/events/attendance"] == "7d"
        assert set(self.ranges(seen).values()) == {"7d"}

    @pytest.mark.asyncio
    async def test_monitoring_range(self) -> None:
        seen: list[httpx.Request] = []
        async with BaselineClient("http://backend.test", transport=json_routes(MONITORING_ROUTES, seen)) as client:
            await MONITORING.fetch_baseline(client, "1h")

        ranges = self.ranges(seen)
        assert ranges["/api/monitoring/metrics"] == "1h"
        assert ranges["/api/monitoring/history"] == "1h"

    @pytest.mark.asyncio
    async def test_users_range_only_when_given(self) -> None:
        seen: list[httpx.Request] = []
        async with BaselineClient("http://backend.test", transport=json_routes(USER_ROUTES, seen)) as client:
            await USERS.fetch_baseline(client)
            assert set(self.ranges(seen).values()) == {None}

            seen.clear()
            await USERS.fetch_baseline(client, "90d")

        assert set(self.ranges(seen).values()) == {"90d"}
