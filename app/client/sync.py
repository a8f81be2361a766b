"""
Dashboard Sync — wires transport, batching and the read model together.

Named tasks:
  stream  — PaymentStream.run(), pushes events into the dispatcher
  flush   — BatchingDispatcher periodic flush
  poll    — authoritative refetch, only while the stream is not connected

A failed refetch sets a non-blocking error on the read model and keeps the
last snapshot. Changing the trends period cancels any in-flight trends
request; the latest request always wins.
"""

from __future__ import annotations

import asyncio
import logging

from app.client.alerts import AlertMonitor
from app.client.api import AnalyticsClient
from app.client.batching import BatchingDispatcher
from app.client.config import ClientSettings, get_client_settings
from app.client.read_model import (
    Action,
    DashboardState,
    DashboardStore,
    SetConnectionStatus,
    SetError,
    SetMetrics,
    SetPeriod,
    SetTrends,
)
from app.client.stream import PaymentStream
from app.errors import PaymentPulseError, StreamError, ValidationError
from app.models.payments import TREND_PERIODS

logger = logging.getLogger(__name__)


class DashboardSync:
    """One open dashboard for one tenant."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        store: DashboardStore | None = None,
        api: AnalyticsClient | None = None,
        stream: PaymentStream | None = None,
    ) -> None:
        self.settings = settings or get_client_settings()
        s = self.settings
        self.store = store or DashboardStore(
            event_log_cap=s.event_log_cap,
            alert_log_cap=s.alert_log_cap,
            period=s.default_period,
        )
        self.dispatcher = BatchingDispatcher(self.store, s.flush_interval_ms / 1000)
        self.alerts = AlertMonitor(self.store, s.volume_threshold, s.failure_window)
        self.api = api or AnalyticsClient(
            s.api_url, s.tenant_id, timeout=s.request_timeout_seconds
        )
        self.stream = stream or PaymentStream(
            s.ws_url,
            s.tenant_id,
            self.store,
            self.dispatcher.push,
            socketio_path=s.ws_path,
            max_attempts=s.reconnect_attempts,
            base_delay=s.reconnect_base_delay_seconds,
            max_delay=s.reconnect_max_delay_seconds,
        )
        self.tasks: dict[str, asyncio.Task] = {}
        self._trends_request: asyncio.Task | None = None
        self._unsubscribe = self.store.subscribe(self._on_action)

    @property
    def state(self) -> DashboardState:
        return self.store.state

    @property
    def stream_healthy(self) -> bool:
        return self.store.state.connection.status == "connected"

    # =========================================================================
    # AUTHORITATIVE REFRESH
    # =========================================================================

    async def refresh_metrics(self) -> bool:
        try:
            metrics = await self.api.get_metrics()
        except PaymentPulseError as e:
            logger.warning("Metrics refresh failed: %s", e.message)
            self.store.dispatch(SetError(e.message))
            return False
        self.dispatcher.drain()
        self.store.dispatch(SetMetrics(metrics))
        self.store.dispatch(SetError(None))
        return True

    async def refresh_trends(self) -> bool:
        """Fetch the series for the current period; supersedes any in-flight fetch."""
        if self._trends_request is not None and not self._trends_request.done():
            self._trends_request.cancel()

        period = self.store.state.trends.period
        request = asyncio.create_task(self.api.get_trends(period), name="trends-fetch")
        self._trends_request = request
        try:
            await asyncio.wait({request})
        except asyncio.CancelledError:
            request.cancel()
            raise

        # A superseded request leaves any period-change hold to its successor
        if request.cancelled():
            logger.debug("Trends request for %s superseded", period)
            return False
        error = request.exception()
        if isinstance(error, PaymentPulseError):
            logger.warning("Trends refresh failed: %s", error.message)
            self.store.dispatch(SetError(error.message))
            self._end_period_change()
            return False
        if error is not None:
            self._end_period_change()
            raise error

        self.dispatcher.drain()
        applied = self.store.dispatch(SetTrends(tuple(request.result()), period=period))
        if applied:
            self.store.dispatch(SetError(None))
            self._end_period_change()
        return applied

    async def refresh(self) -> None:
        await asyncio.gather(self.refresh_metrics(), self.refresh_trends())

    def _end_period_change(self) -> None:
        if self.dispatcher.held:
            self.dispatcher.release()

    async def change_period(self, period: str) -> bool:
        """Switch trend bucketing; buffered and incoming events survive the swap.

        The dispatcher stays held until a series for the new period has been
        applied, by this call or by any refresh that supersedes it.
        """
        if period not in TREND_PERIODS:
            raise ValidationError('period must be one of "day", "week", "month"')
        self.dispatcher.drain()
        self.dispatcher.hold()
        self.store.dispatch(SetPeriod(period))
        try:
            return await self.refresh_trends()
        except asyncio.CancelledError:
            self._end_period_change()
            raise

    # =========================================================================
    # BACKGROUND TASKS
    # =========================================================================

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.settings.poll_interval_seconds)
            if self.stream_healthy:
                continue
            logger.debug("Stream not connected; reconciling over HTTP")
            try:
                await self.refresh()
            except Exception as e:
                logger.exception("Reconcile failed: %s", e)
                self.store.dispatch(SetError(f"Refresh failed: {e}"))

    async def _run_stream(self) -> None:
        try:
            await self.stream.run()
        except StreamError as e:
            logger.error("Live stream stopped: %s", e.message)
            self.store.dispatch(SetConnectionStatus("error", e.message))

    def _on_action(self, action: Action, state: DashboardState) -> None:
        # A reconnect may have missed events; reconcile once
        if (
            isinstance(action, SetConnectionStatus)
            and action.status == "connected"
            and "stream" in self.tasks
            and state.metrics.last_updated is not None
        ):
            self._spawn("reconcile", self.refresh())

    def _spawn(self, name: str, coro) -> asyncio.Task:  # type: ignore[no-untyped-def]
        current = self.tasks.get(name)
        if current is not None and not current.done():
            coro.close()
            return current
        task = asyncio.create_task(coro, name=name)
        self.tasks[name] = task
        return task

    async def start(self) -> None:
        await self.refresh()
        self.tasks["flush"] = self.dispatcher.start()
        self._spawn("poll", self._poll())
        self._spawn("stream", self._run_stream())

    async def stop(self) -> None:
        await self.stream.close()
        for name, task in list(self.tasks.items()):
            if name == "flush":
                continue
            task.cancel()
        for name, task in list(self.tasks.items()):
            if name == "flush":
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks.clear()
        request, self._trends_request = self._trends_request, None
        if request is not None and not request.done():
            request.cancel()
            try:
                await request
            except asyncio.CancelledError:
                pass
        await self.dispatcher.stop()
        self.alerts.close()
        self._unsubscribe()
        await self.api.aclose()
