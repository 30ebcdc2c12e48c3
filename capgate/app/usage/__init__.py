"""Usage event recording and storage."""
from .recorder import UsageDispatcher, UsageRecorder, classify_denial
from .store import InMemoryUsageEventStore, UsageEventSource

__all__ = [
    "InMemoryUsageEventStore",
    "UsageDispatcher",
    "UsageEventSource",
    "UsageRecorder",
    "classify_denial",
]
