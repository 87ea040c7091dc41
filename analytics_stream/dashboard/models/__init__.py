"""Dashboard data models.

Structured into:
- messages.py: Stream message variants (Pydantic)
- actions.py: Reducer actions
- state.py: Keyed collections and analytics state
- views.py: Derived view models
"""

from .actions import (
    Action,
    PatchSummary,
    RemoveCategorical,
    ReplaceBaseline,
    Unknown,
    UpsertCategorical,
    UpsertGridCell,
    UpsertSeriesPoint,
)
from .messages import (
    EVENT_MESSAGES,
    GENERIC_MESSAGES,
    MONITORING_MESSAGES,
    USER_MESSAGES,
    StreamMessage,
    UnknownMessage,
    parse_message,
)
from .state import AnalyticsState, KeyedCollection

__all__ = [
    # Actions
    "Action",
    "PatchSummary",
    "RemoveCategorical",
    "ReplaceBaseline",
    "Unknown",
    "UpsertCategorical",
    "UpsertGridCell",
    "UpsertSeriesPoint",
    # Messages
    "EVENT_MESSAGES",
    "GENERIC_MESSAGES",
    "MONITORING_MESSAGES",
    "USER_MESSAGES",
    "StreamMessage",
    "UnknownMessage",
    "parse_message",
    # State
    "AnalyticsState",
    "KeyedCollection",
]
