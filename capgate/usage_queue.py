from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable, List, Optional, Protocol, Sequence

import asyncpg

from .app.capabilities.models import UsageEvent
from .app.feature_gates.exceptions import TelemetryFailure
from .config import EngineConfig

LOGGER = logging.getLogger("usage.queue")


INSERT_SQL = """
    INSERT INTO capability_usage_events (
        event_id,
        ts,
        tenant_id,
        capability_key,
        actor_id,
        decision,
        reason,
        metadata
    ) VALUES (
        $1, $2, $3, $4, $5, $6, $7, $8::jsonb
    )
    ON CONFLICT (event_id) DO NOTHING
"""


class UsageEventSink(Protocol):
    """Asynchronous batch writer for usage events."""

    async def write_batch(self, events: Sequence[UsageEvent]) -> int:
        ...


def _with_app_version(event: UsageEvent, app_version: Optional[str]) -> UsageEvent:
    if not app_version or "app_version" in event.metadata:
        return event
    metadata = dict(event.metadata)
    metadata["app_version"] = app_version
    return event.model_copy(update={"metadata": metadata})


async def create_usage_pool(config: EngineConfig) -> Optional[asyncpg.Pool]:
    if not config.telemetry_enabled:
        return None
    return await asyncpg.create_pool(
        min_size=1,
        max_size=5,
        command_timeout=10,
        timeout=config.db_connect_timeout,
        **config.db_config,
    )


async def insert_usage_events(pool: asyncpg.Pool, events: Iterable[UsageEvent]) -> int:
    payload: List[List[Any]] = []
    for event in events:
        payload.append(
            [
                event.event_id,
                event.timestamp,
                event.tenant_id,
                event.capability_key,
                event.actor_id,
                event.decision.value,
                event.reason,
                json.dumps(event.metadata, default=str),
            ]
        )

    if not payload:
        return 0

    async with pool.acquire() as connection:
        await connection.executemany(INSERT_SQL, payload)
    return len(payload)


class PostgresUsageEventSink:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def write_batch(self, events: Sequence[UsageEvent]) -> int:
        try:
            return await insert_usage_events(self._pool, events)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise TelemetryFailure(f"usage sink write failed: {exc}") from exc


class UsageEventQueue:
    """Bounded hand-off between request threads and the event sink.

    ``put_nowait`` may be called from any thread. Events that do not fit in
    the queue are dropped; failed batches are logged and dropped, never
    retried.
    """

    def __init__(
        self,
        *,
        sink: Optional[UsageEventSink],
        loop: asyncio.AbstractEventLoop,
        enabled: bool,
        maxsize: int = 10_000,
        batch_size: int = 200,
        app_version: Optional[str] = None,
    ) -> None:
        self._sink = sink
        self._loop = loop
        self.enabled = enabled and sink is not None
        self._queue: "asyncio.Queue[UsageEvent]" = asyncio.Queue(maxsize=maxsize)
        self._batch_size = max(1, batch_size)
        self._app_version = app_version
        self._closed = False
        self.dropped = 0

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        sink: Optional[UsageEventSink],
        loop: asyncio.AbstractEventLoop,
    ) -> "UsageEventQueue":
        return cls(
            sink=sink,
            loop=loop,
            enabled=config.telemetry_enabled,
            maxsize=config.queue_maxsize,
            batch_size=config.batch_size,
            app_version=config.app_version,
        )

    def put_nowait(self, event: UsageEvent) -> None:
        if not self.enabled or self._closed:
            return
        payload = _with_app_version(event, self._app_version)
        self._loop.call_soon_threadsafe(self._enqueue, payload)

    def _enqueue(self, event: UsageEvent) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            LOGGER.warning(
                "Usage queue is full; dropping event",
                extra={"capability_key": event.capability_key, "tenant_id": event.tenant_id},
            )

    async def run(self) -> None:
        if not self.enabled or self._sink is None:
            return
        try:
            while not self._closed:
                event = await self._queue.get()
                batch = [event]
                while len(batch) < self._batch_size:
                    try:
                        batch.append(self._queue.get_nowait())
                    except asyncio.QueueEmpty:
                        break
                await self._write(batch)
        except asyncio.CancelledError:
            await self.flush()
            raise

    async def _write(self, batch: List[UsageEvent]) -> None:
        try:
            await self._sink.write_batch(batch)
        except Exception:
            LOGGER.exception("Failed to persist usage batch", extra={"batch_size": len(batch)})
        finally:
            for _ in batch:
                self._queue.task_done()

    def close(self) -> None:
        self._closed = True

    async def join(self) -> None:
        """Wait until every queued event has been written or dropped."""

        await self._queue.join()

    async def flush(self) -> None:
        if not self.enabled or self._sink is None:
            return
        items: List[UsageEvent] = []
        while not self._queue.empty():
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:  # pragma: no cover - race guard
                break
        for start in range(0, len(items), self._batch_size):
            await self._write(items[start:start + self._batch_size])
