"""FastAPI server exposing live analytics dashboards.

Each enabled dashboard gets an orchestrator that is mounted for the lifetime
of the app. Renderers read snapshots over REST or follow ``/ws/{name}``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from ..config import get_validated_config
from ..config_schema import AppConfig
from .api import api_router
from .api.routes import dashboards as dashboard_routes
from .api.websocket import ClientRegistry, websocket_endpoint
from .client import BaselineClient
from .core.connection import SocketFactory
from .core.orchestrator import DashboardOrchestrator
from .profiles import get_profile

logger = logging.getLogger(__name__)


class DashboardApp:
    """Orchestrators, baseline client and renderer registry for one app."""

    def __init__(
        self,
        config: AppConfig,
        connection_factory: SocketFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.client = BaselineClient(
            config.stream.api_base_url,
            timeout=config.baseline.timeout,
            transport=transport,
        )
        self.clients = ClientRegistry()
        self.orchestrators: dict[str, DashboardOrchestrator] = {}
        self._pending: set[asyncio.Task[None]] = set()

        for name in config.dashboards.enabled_names():
            entry = getattr(config.dashboards, name)
            self.orchestrators[name] = DashboardOrchestrator(
                get_profile(name),
                self.client,
                config.stream,
                connection_factory=connection_factory,
                stream_path=entry.stream_path,
                range=entry.range,
            )

    def _on_change(self, orchestrator: DashboardOrchestrator) -> None:
        if not self.clients.connection_count(orchestrator.name):
            return
        task = asyncio.get_running_loop().create_task(
            self.clients.broadcast(
                orchestrator.name,
                {"type": "snapshot", "data": orchestrator.snapshot()},
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def start(self) -> None:
        """Mount every dashboard; a failing baseline does not stop the others."""
        for orchestrator in self.orchestrators.values():
            orchestrator.on_change(self._on_change)
        await asyncio.gather(
            *(orchestrator.mount() for orchestrator in self.orchestrators.values())
        )
        logger.info("Mounted dashboards: %s", ", ".join(self.orchestrators) or "none")

    async def stop(self) -> None:
        """Unmount dashboards and release the HTTP client."""
        for orchestrator in self.orchestrators.values():
            await orchestrator.unmount()
        for task in list(self._pending):
            task.cancel()
        await self.client.aclose()


def _register_websocket_routes(app: FastAPI, dashboard: DashboardApp) -> None:
    """Register the renderer WebSocket endpoint."""

    @app.websocket("/ws/{name}")
    async def dashboard_socket(websocket: WebSocket, name: str) -> None:
        orchestrator = dashboard.orchestrators.get(name)
        if orchestrator is None:
            await websocket.close(code=4404)
            return

        await websocket_endpoint(
            websocket,
            name,
            on_connect=lambda: {"type": "snapshot", "data": orchestrator.snapshot()},
            keepalive_timeout=dashboard.config.server.keepalive_timeout,
            clients=dashboard.clients,
        )


def create_app(
    config: AppConfig | None = None,
    *,
    connection_factory: SocketFactory | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Validated configuration (defaults to the loaded config file)
        connection_factory: Stream socket factory (tests inject fakes)
        transport: httpx transport for baseline requests (tests inject mocks)
    """
    config = config or get_validated_config()

    app = FastAPI(
        title="Realtime Analytics Stream",
        description="Live event, user and monitoring analytics dashboards",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    dashboard = DashboardApp(config, connection_factory, transport)
    app.state.dashboard = dashboard
    dashboard_routes.set_dependencies(dashboard.orchestrators)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Lifespan context manager for startup/shutdown."""
        await dashboard.start()
        yield
        await dashboard.stop()

    app.router.lifespan_context = lifespan

    app.include_router(api_router, prefix="/api")
    _register_websocket_routes(app, dashboard)

    @app.get("/api/health")
    async def get_health() -> dict[str, Any]:
        return {
            "status": "ok",
            "dashboards": list(dashboard.orchestrators),
            "renderers": dashboard.clients.connection_count(),
        }

    return app


def run_dashboard(
    host: str | None = None,
    port: int | None = None,
    config: AppConfig | None = None,
) -> None:
    """Run the dashboard server."""
    import uvicorn

    config = config or get_validated_config()
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_config=None,
    )
