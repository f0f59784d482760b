"""Usage analytics: counters, snapshot codec, persistence, and views."""

from .codec import AnalyticsError, SnapshotFormatError
from .persistence import AnalyticsPersistence, ImportUnauthorizedError, LoadOutcome
from .store import (
    AnalyticsSnapshot,
    AnalyticsStore,
    RequestObserved,
    ToolCall,
    ToolInvoked,
)

__all__ = [
    "AnalyticsError",
    "AnalyticsPersistence",
    "AnalyticsSnapshot",
    "AnalyticsStore",
    "ImportUnauthorizedError",
    "LoadOutcome",
    "RequestObserved",
    "SnapshotFormatError",
    "ToolCall",
    "ToolInvoked",
]
