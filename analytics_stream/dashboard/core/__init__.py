"""Dashboard core business logic.

Structured into:
- connection.py: Socket lifecycle, reconnect backoff, subscriber fan-out
- classifier.py: Raw frames → typed messages
- reducer.py: (state, action) → new state
- transforms.py: State → derived views
- orchestrator.py: Baseline + stream → live dashboard state
"""

from .classifier import MessageClassifier
from .connection import CloseInfo, ConnectionManager, ReadyState, compute_backoff
from .orchestrator import DashboardOrchestrator, build_stream_url
from .reducer import reduce, reduce_all
from .transforms import ViewEngine

__all__ = [
    "MessageClassifier",
    "CloseInfo",
    "ConnectionManager",
    "ReadyState",
    "compute_backoff",
    "DashboardOrchestrator",
    "build_stream_url",
    "reduce",
    "reduce_all",
    "ViewEngine",
]
