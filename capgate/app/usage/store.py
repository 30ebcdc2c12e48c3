"""Usage event readers and an in-memory store for tests and local runs."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence

from ..capabilities.models import UsageEvent


class UsageEventSource(Protocol):
    """Read access to recorded usage events for analytics."""

    def list_events(
        self,
        *,
        capability_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[UsageEvent]:
        ...


def _matches(
    event: UsageEvent,
    capability_key: Optional[str],
    tenant_id: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime],
) -> bool:
    if capability_key is not None and event.capability_key != capability_key:
        return False
    if tenant_id is not None and event.tenant_id != tenant_id:
        return False
    if start is not None and event.timestamp < start:
        return False
    if end is not None and event.timestamp > end:
        return False
    return True


class InMemoryUsageEventStore:
    """Append-only list of events; acts as both sink and source.

    Writing an ``event_id`` that is already stored is a no-op.
    """

    def __init__(self, events: Iterable[UsageEvent] = ()) -> None:
        self._lock = threading.Lock()
        self._events: List[UsageEvent] = []
        self._seen: set[str] = set()
        self.extend(events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def extend(self, events: Iterable[UsageEvent]) -> int:
        written = 0
        with self._lock:
            for event in events:
                if event.event_id in self._seen:
                    continue
                self._seen.add(event.event_id)
                self._events.append(event)
                written += 1
        return written

    def put_nowait(self, event: UsageEvent) -> None:
        self.extend([event])

    async def write_batch(self, events: Sequence[UsageEvent]) -> int:
        return self.extend(events)

    def list_events(
        self,
        *,
        capability_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageEvent]:
        with self._lock:
            return [
                event
                for event in self._events
                if _matches(event, capability_key, tenant_id, start, end)
            ]
