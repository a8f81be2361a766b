"""
Batching Dispatcher — coalesce live events into periodic store updates.

Events are appended to the event log as they arrive but their deltas are
buffered. Every flush applies one ApplyMetricsDelta for the whole buffer
and one ApplyTrendEvent per event in arrival order (events in one window
can land in different buckets).

hold()/release() bracket a trends period change: events arriving while
held stay buffered and are applied after the new authoritative series.
"""

from __future__ import annotations

import asyncio
import logging

from app.client.read_model import (
    AddPaymentEvent,
    ApplyMetricsDelta,
    ApplyTrendEvent,
    DashboardStore,
    MetricsDelta,
)
from app.models.payments import PaymentEvent

logger = logging.getLogger(__name__)


class BatchingDispatcher:
    """Buffers PaymentEvents and flushes them on a fixed interval."""

    def __init__(self, store: DashboardStore, flush_interval: float = 1.0) -> None:
        self.store = store
        self.flush_interval = flush_interval
        self._buffer: list[PaymentEvent] = []
        self._held = False
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @property
    def held(self) -> bool:
        return self._held

    def push(self, event: PaymentEvent) -> None:
        self.store.dispatch(AddPaymentEvent(event))
        self._buffer.append(event)

    def flush(self) -> int:
        """Apply everything buffered. Returns the number of events applied."""
        if self._held or not self._buffer:
            return 0
        batch, self._buffer = self._buffer, []

        self.store.dispatch(ApplyMetricsDelta(MetricsDelta.from_events(batch)))
        for event in batch:
            self.store.dispatch(ApplyTrendEvent.from_event(event))

        logger.debug("Flushed %d events", len(batch))
        return len(batch)

    def drain(self) -> int:
        """Flush now; used before an authoritative replace."""
        return self.flush()

    def hold(self) -> None:
        self._held = True

    def release(self) -> int:
        self._held = False
        return self.flush()

    # =========================================================================
    # PERIODIC FLUSH TASK
    # =========================================================================

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self.flush()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="flush")
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._held = False
        self.flush()
