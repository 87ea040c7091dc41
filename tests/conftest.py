"""Pytest fixtures for analytics_stream tests."""

from __future__ import annotations

# Load environment variables from .env before any tests run
from dotenv import load_dotenv

load_dotenv()

from typing import Any, Iterator

import pytest

from analytics_stream.config import reset_config
from analytics_stream.dashboard.client import BaselineClient

from tests.testing_utils import FakeStreamServer, json_routes


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "external: mark test as requiring external services (real backend)"
    )


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command-line options."""
    parser.addoption(
        "--run-external",
        action="store_true",
        default=False,
        help="Run tests marked as external (real backend, slow)",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip external tests unless --run-external is given."""
    if config.getoption("--run-external"):
        return
    skip_external = pytest.mark.skip(reason="need --run-external option to run")
    for item in items:
        if "external" in item.keywords:
            item.add_marker(skip_external)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Every test starts without a loaded config or stream env overrides."""
    monkeypatch.delenv("ANALYTICS_WS_BASE_URL", raising=False)
    monkeypatch.delenv("ANALYTICS_API_BASE_URL", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def stream_server() -> FakeStreamServer:
    """A fresh in-memory stream transport."""
    return FakeStreamServer()


@pytest.fixture
def mock_backend() -> Any:
    """Build BaselineClients over a mocked backend."""

    def factory(routes: dict[str, Any]) -> BaselineClient:
        return BaselineClient("http://backend.test", transport=json_routes(routes))

    return factory
