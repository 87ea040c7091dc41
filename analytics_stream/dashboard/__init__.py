"""Live analytics dashboards: baseline snapshots merged with realtime streams."""

from .core.orchestrator import DashboardOrchestrator, build_stream_url
from .profiles import EVENTS, MONITORING, USERS, get_profile
from .server import create_app, run_dashboard

__all__ = [
    "DashboardOrchestrator",
    "build_stream_url",
    "EVENTS",
    "MONITORING",
    "USERS",
    "get_profile",
    "create_app",
    "run_dashboard",
]
