"""Tests for the dashboard orchestrator."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from analytics_stream.config_schema import StreamConfig
from analytics_stream.dashboard.client import BaselineClient
from analytics_stream.dashboard.core.connection import ReadyState
from analytics_stream.dashboard.core.orchestrator import DashboardOrchestrator, build_stream_url
from analytics_stream.dashboard.models.actions import (
    PatchSummary,
    ReplaceBaseline,
    UpsertCategorical,
)
from analytics_stream.dashboard.models.messages import GENERIC_MESSAGES
from analytics_stream.dashboard.models.state import AnalyticsState, KeyedCollection
from analytics_stream.dashboard.profiles import DashboardProfile
from analytics_stream.errors import BaselineFetchError, ErrorCode, NotConnectedError

from tests.testing_utils import FakeStreamServer, json_routes, wait_for


class GatedLoader:
    """Baseline loader whose calls complete only when released, in any order."""

    def __init__(self) -> None:
        self.calls: list[tuple[asyncio.Event, dict[str, Any]]] = []
        self.ranges: list[str | None] = []

    async def __call__(self, client: BaselineClient, range: str | None = None) -> ReplaceBaseline:
        self.ranges.append(range)
        gate = asyncio.Event()
        outcome: dict[str, Any] = {}
        self.calls.append((gate, outcome))
        await gate.wait()
        if "error" in outcome:
            raise outcome["error"]
        return outcome["action"]

    def release(self, index: int, summary: dict[str, float] | None = None, error: Exception | None = None) -> None:
        gate, outcome = self.calls[index]
        if error is not None:
            outcome["error"] = error
        else:
            outcome["action"] = ReplaceBaseline(summary=summary or {})
        gate.set()


async def static_baseline(client: BaselineClient, range: str | None = None) -> ReplaceBaseline:
    return ReplaceBaseline(
        summary={"total": 1},
        categorical={"stages": KeyedCollection.from_records([{"key": "a", "value": 1}], "key")},
    )


def make_profile(loader: Any = static_baseline) -> DashboardProfile:
    return DashboardProfile(
        name="test",
        stream_path="/ws/test",
        messages=GENERIC_MESSAGES,
        fetch_baseline=loader,
        build_views=lambda state: {"total": state.summary.get("total", 0)},
    )


def make_client() -> BaselineClient:
    return BaselineClient("http://backend.test", transport=json_routes({}))


def stream_settings(**overrides: Any) -> StreamConfig:
    values: dict[str, Any] = {
        "ws_base_url": "ws://stream.test",
        "base_interval": 0.01,
        "max_interval": 0.05,
    }
    values.update(overrides)
    return StreamConfig(**values)


class TestBuildStreamUrl:
    """Stream URL derivation."""

    @pytest.mark.parametrize(
        "ws_base, api_base, path, expected",
        [
            ("ws://localhost:5000", None, "/ws/users", "ws://localhost:5000/ws/users"),
            ("ws://localhost:5000/", "http://ignored", "/ws/users", "ws://localhost:5000/ws/users"),
            (None, "http://localhost:4000/", "/ws/events", "ws://localhost:4000/ws/events"),
            (None, "https://api.example.com", "/ws/events", "wss://api.example.com/ws/events"),
            (None, "localhost:4000", "/ws/monitoring", "ws://localhost:4000/ws/monitoring"),
            (None, "http://localhost:4000", "ws/monitoring", "ws://localhost:4000/ws/monitoring"),
            (None, None, "/ws/events", None),
            ("", "", "/ws/events", None),
        ],
    )
    def test_derivation(
        self, ws_base: str | None, api_base: str | None, path: str, expected: str | None
    ) -> None:
        assert build_stream_url(ws_base, api_base, path) == expected


class TestRefresh:
    """Baseline fetch lifecycle."""

    @pytest.mark.asyncio
    async def test_applies_baseline(self) -> None:
        orchestrator = DashboardOrchestrator(make_profile(), make_client())

        applied = await orchestrator.refresh()

        assert applied is True
        assert orchestrator.state.summary == {"total": 1}
        assert orchestrator.loading is False
        assert orchestrator.error is None
        assert orchestrator.views == {"total": 1}

    @pytest.mark.asyncio
    async def test_stale_result_discarded(self) -> None:
        """An older request finishing last does not overwrite a newer one."""
        loader = GatedLoader()
        orchestrator = DashboardOrchestrator(make_profile(loader), make_client())

        first = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 1)
        second = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 2)

        loader.release(1, {"total": 2})
        assert await second is True
        loader.release(0, {"total": 1})
        assert await first is False

        assert orchestrator.state.summary == {"total": 2}

    @pytest.mark.asyncio
    async def test_result_after_unmount_ignored(self) -> None:
        loader = GatedLoader()
        orchestrator = DashboardOrchestrator(make_profile(loader), make_client())

        pending = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 1)
        await orchestrator.unmount()
        loader.release(0, {"total": 9})

        assert await pending is False
        assert orchestrator.state.is_empty

    @pytest.mark.asyncio
    async def test_failure_observable_and_state_kept(self) -> None:
        loader = GatedLoader()
        orchestrator = DashboardOrchestrator(make_profile(loader), make_client())

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 1)
        loader.release(0, {"total": 5})
        await task

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 2)
        loader.release(1, error=BaselineFetchError("GET /x returned 500", status=500))
        assert await task is False

        assert isinstance(orchestrator.error, BaselineFetchError)
        assert orchestrator.loading is False
        assert orchestrator.state.summary == {"total": 5}

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 3)
        loader.release(2, {"total": 6})
        await task

        assert orchestrator.error is None

    @pytest.mark.asyncio
    async def test_loading_flag_while_pending(self) -> None:
        loader = GatedLoader()
        orchestrator = DashboardOrchestrator(make_profile(loader), make_client())

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 1)
        assert orchestrator.loading is True

        loader.release(0)
        await task
        assert orchestrator.loading is False

    @pytest.mark.asyncio
    async def test_malformed_baseline_reported(self) -> None:
        """A loader tripping over an unexpected payload shape fails like a bad response."""
        loader = GatedLoader()
        orchestrator = DashboardOrchestrator(make_profile(loader), make_client())

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 1)
        loader.release(0, {"total": 5})
        await task

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 2)
        loader.release(1, error=AttributeError("'str' object has no attribute 'get'"))
        assert await task is False

        assert isinstance(orchestrator.error, BaselineFetchError)
        assert orchestrator.error.code == ErrorCode.BAD_RESPONSE
        assert orchestrator.loading is False
        assert orchestrator.state.summary == {"total": 5}
        assert orchestrator.snapshot()["error"]["code"] == "bad_response"

    @pytest.mark.asyncio
    async def test_range_passed_to_loader_and_kept(self) -> None:
        loader = GatedLoader()
        orchestrator = DashboardOrchestrator(
            make_profile(loader), make_client(), range="30d"
        )

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 1)
        loader.release(0)
        await task

        task = asyncio.create_task(orchestrator.refresh("7d"))
        await wait_for(lambda: len(loader.calls) == 2)
        loader.release(1)
        await task

        task = asyncio.create_task(orchestrator.refresh())
        await wait_for(lambda: len(loader.calls) == 3)
        loader.release(2)
        await task

        assert loader.ranges == ["30d", "7d", "7d"]
        assert orchestrator.range == "7d"


class TestStreaming:
    """Stream frames flow through classifier and reducer."""

    @pytest.mark.asyncio
    async def test_mount_connects_and_applies_frames(self, stream_server: FakeStreamServer) -> None:
        orchestrator = DashboardOrchestrator(
            make_profile(),
            make_client(),
            stream_settings(),
            connection_factory=stream_server.connect,
        )

        await orchestrator.mount()
        await wait_for(lambda: orchestrator.connection_status.ready_state == "open")
        stream_server.latest.feed(json.dumps({"type": "summary-patch", "summary": {"total": 4}}))
        stream_server.latest.feed("garbage")
        stream_server.latest.feed(
            json.dumps({"type": "categorical-upsert", "collection": "stages", "key": "a", "value": 7})
        )
        await wait_for(lambda: orchestrator.state.records("stages") == [{"key": "a", "value": 7}])

        assert stream_server.urls == ["ws://stream.test/ws/test"]
        assert orchestrator.state.summary == {"total": 4}
        assert orchestrator.classifier.parse_errors == 1
        await orchestrator.unmount()

    @pytest.mark.asyncio
    async def test_stream_path_override(self, stream_server: FakeStreamServer) -> None:
        orchestrator = DashboardOrchestrator(
            make_profile(),
            make_client(),
            stream_settings(),
            connection_factory=stream_server.connect,
            stream_path="custom/path",
        )

        await orchestrator.mount()
        await wait_for(lambda: len(stream_server.urls) == 1)

        assert stream_server.urls == ["ws://stream.test/custom/path"]
        await orchestrator.unmount()

    @pytest.mark.asyncio
    async def test_no_stream_configured(self, stream_server: FakeStreamServer) -> None:
        orchestrator = DashboardOrchestrator(
            make_profile(),
            make_client(),
            StreamConfig(),
            connection_factory=stream_server.connect,
        )

        await orchestrator.mount()
        await asyncio.sleep(0.02)

        assert stream_server.urls == []
        assert orchestrator.state.summary == {"total": 1}
        assert orchestrator.connection_status.label == "Offline"
        with pytest.raises(NotConnectedError):
            await orchestrator.send("hello")
        await orchestrator.unmount()

    @pytest.mark.asyncio
    async def test_frames_after_unmount_ignored(self, stream_server: FakeStreamServer) -> None:
        orchestrator = DashboardOrchestrator(
            make_profile(),
            make_client(),
            stream_settings(),
            connection_factory=stream_server.connect,
        )
        await orchestrator.mount()
        await wait_for(lambda: orchestrator.connection_status.ready_state == "open")
        socket = stream_server.latest

        await orchestrator.unmount()
        socket.feed(json.dumps({"type": "summary-patch", "summary": {"total": 99}}))
        await asyncio.sleep(0.02)

        assert orchestrator.state.summary == {"total": 1}
        assert orchestrator.connection.ready_state == ReadyState.CLOSED
        assert orchestrator.connection.reconnect_pending is False


class TestListeners:
    """Change notification."""

    @pytest.mark.asyncio
    async def test_on_change_and_unsubscribe(self) -> None:
        orchestrator = DashboardOrchestrator(make_profile(), make_client())
        seen: list[dict[str, float]] = []
        unsubscribe = orchestrator.on_change(lambda o: seen.append(dict(o.state.summary)))

        orchestrator.dispatch(PatchSummary({"total": 3}))
        unsubscribe()
        orchestrator.dispatch(PatchSummary({"total": 4}))

        assert seen == [{"total": 3}]

    @pytest.mark.asyncio
    async def test_failing_listener_isolated(self) -> None:
        orchestrator = DashboardOrchestrator(make_profile(), make_client())
        seen: list[int] = []

        def broken(o: DashboardOrchestrator) -> None:
            raise RuntimeError("renderer bug")

        orchestrator.on_change(broken)
        orchestrator.on_change(lambda o: seen.append(1))

        orchestrator.dispatch(PatchSummary({"total": 3}))

        assert seen == [1]

    def test_invalid_key_dropped(self) -> None:
        """A key that does not fit the collection's key fields leaves state untouched."""
        orchestrator = DashboardOrchestrator(make_profile(), make_client())
        state = orchestrator.dispatch(
            ReplaceBaseline(
                categorical={"grid": KeyedCollection(key_fields=("day", "hour"))}
            )
        )

        after = orchestrator.dispatch(UpsertCategorical("grid", "Monday", 1))

        assert after is state


class TestSnapshot:
    """Plain-data snapshot."""

    @pytest.mark.asyncio
    async def test_json_serializable(self) -> None:
        orchestrator = DashboardOrchestrator(make_profile(), make_client())
        await orchestrator.refresh()

        snapshot = orchestrator.snapshot()
        encoded = json.loads(json.dumps(snapshot))

        assert encoded["name"] == "test"
        assert encoded["state"]["summary"] == {"total": 1}
        assert encoded["views"] == {"total": 1}
        assert encoded["connection"]["label"] == "Offline"
        assert encoded["error"] is None

    def test_empty_state_default(self) -> None:
        orchestrator = DashboardOrchestrator(make_profile(), make_client())

        assert orchestrator.state == AnalyticsState()
