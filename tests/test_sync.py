"""
Tests for the dashboard sync orchestrator.

Covers: initial load, named tasks, failed refresh keeps snapshot, latest
trends request wins, period change keeps in-flight events even when a
reconcile supersedes it, polling only while the stream is down, clean stop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.client.api import AnalyticsClient
from app.client.config import ClientSettings
from app.client.read_model import SetConnectionStatus
from app.client.sync import DashboardSync
from app.errors import DependencyError, ValidationError
from app.models.payments import Metrics, Payment, PaymentEvent, TrendPoint

UTC = timezone.utc
FEB = datetime(2025, 2, 1, tzinfo=UTC)


def _metrics(count: int = 10) -> Metrics:
    return Metrics(total_volume=count * 100, total_count=count, success_count=count, success_rate=100.0)


def _point(ts: datetime = FEB) -> TrendPoint:
    return TrendPoint(timestamp=ts, amount=1000, count=10, success_rate=90.0)


def _event(ts: datetime) -> PaymentEvent:
    payment = Payment(
        id="live-1",
        tenant_id="tenant-a",
        amount=100,
        method="upi",
        status="success",
        created_at=ts,
        updated_at=ts,
    )
    return PaymentEvent(type="payment_received", payment=payment, timestamp=ts)


def _sync(**overrides) -> DashboardSync:  # type: ignore[no-untyped-def]
    api = MagicMock()
    api.get_metrics = AsyncMock(return_value=_metrics())
    api.get_trends = AsyncMock(return_value=[_point()])
    api.aclose = AsyncMock()

    stream = MagicMock()
    stream.run = AsyncMock()
    stream.close = AsyncMock()

    settings = ClientSettings(
        tenant_id="tenant-a",
        poll_interval_seconds=0.01,
        flush_interval_ms=10,
        **overrides,
    )
    return DashboardSync(settings=settings, api=api, stream=stream)


async def _settle(ticks: int = 5) -> None:
    for _ in range(ticks):
        await asyncio.sleep(0)


# =============================================================================
# LIFECYCLE
# =============================================================================


@pytest.mark.unit
class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_loads_and_spawns_named_tasks(self) -> None:
        sync = _sync()
        sync.store.dispatch(SetConnectionStatus("connected"))
        await sync.start()

        assert sync.state.metrics.data == _metrics()
        assert [b.timestamp for b in sync.state.trends.data] == [FEB]
        assert {"stream", "poll", "flush"} <= set(sync.tasks)
        assert sync.tasks["poll"].get_name() == "poll"

        await sync.stop()
        sync.stream.close.assert_awaited_once()
        sync.api.aclose.assert_awaited_once()
        assert sync.tasks == {}

    @pytest.mark.asyncio
    async def test_stream_give_up_marks_error(self) -> None:
        from app.errors import StreamError

        sync = _sync()
        sync.stream.run.side_effect = StreamError("Gave up reconnecting after 10 attempts")
        await sync.start()
        await _settle()

        assert sync.state.connection.status == "error"
        assert "Gave up" in sync.state.connection.message
        await sync.stop()


# =============================================================================
# REFRESH
# =============================================================================


@pytest.mark.unit
class TestRefresh:
    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_snapshot(self) -> None:
        sync = _sync()
        await sync.refresh()
        sync.api.get_metrics.side_effect = DependencyError("Request to /api/analytics/metrics failed")
        sync.api.get_trends.side_effect = DependencyError("Request to /api/analytics/trends failed")

        assert await sync.refresh_metrics() is False
        assert await sync.refresh_trends() is False

        assert sync.state.metrics.data == _metrics()
        assert len(sync.state.trends.data) == 1
        assert "failed" in sync.state.last_error

        sync.api.get_metrics.side_effect = None
        assert await sync.refresh_metrics() is True
        assert sync.state.last_error is None

    @pytest.mark.asyncio
    async def test_latest_trends_request_wins(self) -> None:
        sync = _sync()
        gate = asyncio.Event()
        calls: list[str] = []

        async def get_trends(period: str) -> list[TrendPoint]:
            calls.append(period)
            if len(calls) == 1:
                await gate.wait()
                return [_point(datetime(2024, 1, 1, tzinfo=UTC))]
            return [_point()]

        sync.api.get_trends.side_effect = get_trends

        first = asyncio.create_task(sync.refresh_trends())
        await _settle()
        second = await sync.refresh_trends()
        gate.set()

        assert second is True
        assert await first is False
        assert [b.timestamp for b in sync.state.trends.data] == [FEB]

    @pytest.mark.asyncio
    async def test_change_period_keeps_events_received_during_fetch(self) -> None:
        sync = _sync()
        await sync.refresh()

        async def get_trends(period: str) -> list[TrendPoint]:
            assert sync.dispatcher.held
            sync.dispatcher.push(_event(datetime(2025, 2, 14, tzinfo=UTC)))
            return [_point(FEB)]

        sync.api.get_trends.side_effect = get_trends

        assert await sync.change_period("month") is True

        trends = sync.state.trends
        assert trends.period == "month"
        [bucket] = trends.data
        assert (bucket.count, bucket.amount, bucket.success_count) == (11, 1100, 10)
        assert trends.is_optimistic is True
        assert sync.state.metrics.data.total_count == 11
        assert not sync.dispatcher.held
        assert sync.dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_superseded_period_change_keeps_held_events(self) -> None:
        sync = _sync()
        await sync.refresh()
        gate = asyncio.Event()
        calls: list[str] = []

        async def get_trends(period: str) -> list[TrendPoint]:
            calls.append(period)
            if len(calls) == 1:
                await gate.wait()
            return [_point(FEB)]

        sync.api.get_trends.side_effect = get_trends

        change = asyncio.create_task(sync.change_period("month"))
        await _settle()
        assert sync.dispatcher.held
        sync.dispatcher.push(_event(datetime(2025, 2, 14, tzinfo=UTC)))

        # A reconcile lands while the period change is still fetching
        assert await sync.refresh_trends() is True
        gate.set()
        assert await change is False

        assert calls == ["month", "month"]
        [bucket] = sync.state.trends.data
        assert (bucket.count, bucket.amount) == (11, 1100)
        assert sync.state.metrics.data.total_count == 11
        assert not sync.dispatcher.held
        assert sync.dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_failed_period_change_releases_hold(self) -> None:
        sync = _sync()
        await sync.refresh()
        sync.api.get_trends.side_effect = DependencyError("Request to /api/analytics/trends failed")

        assert await sync.change_period("week") is False
        assert not sync.dispatcher.held
        assert sync.state.trends.period == "week"
        assert "failed" in sync.state.last_error

    @pytest.mark.asyncio
    async def test_non_json_response_sets_error(self) -> None:
        http = httpx.AsyncClient(
            base_url="http://test",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, text="<html>proxy</html>")
            ),
        )
        api = AnalyticsClient("http://test", "tenant-a", client=http)
        stream = MagicMock()
        stream.close = AsyncMock()
        sync = DashboardSync(settings=ClientSettings(tenant_id="tenant-a"), api=api, stream=stream)

        assert await sync.refresh_metrics() is False
        assert await sync.refresh_trends() is False
        assert "unreadable" in sync.state.last_error
        assert sync.state.metrics.data is None
        await api.aclose()

    @pytest.mark.asyncio
    async def test_change_period_rejects_unknown(self) -> None:
        sync = _sync()
        with pytest.raises(ValidationError):
            await sync.change_period("year")


# =============================================================================
# RECONCILIATION
# =============================================================================


@pytest.mark.unit
class TestReconciliation:
    @pytest.mark.asyncio
    async def test_polls_only_while_stream_is_down(self) -> None:
        sync = _sync()

        async def run_forever() -> None:
            await asyncio.sleep(3600)

        sync.stream.run.side_effect = run_forever
        await sync.start()

        # Reconnect triggers one reconcile
        sync.store.dispatch(SetConnectionStatus("connected"))
        await asyncio.sleep(0.03)
        after_connect = sync.api.get_metrics.await_count
        assert after_connect == 2

        await asyncio.sleep(0.05)
        assert sync.api.get_metrics.await_count == after_connect

        sync.store.dispatch(SetConnectionStatus("disconnected"))
        await asyncio.sleep(0.05)
        assert sync.api.get_metrics.await_count > after_connect

        await sync.stop()

    @pytest.mark.asyncio
    async def test_poll_survives_unexpected_errors(self) -> None:
        sync = _sync()
        await sync.refresh()
        sync.api.get_metrics.side_effect = RuntimeError("boom")
        sync.api.get_trends.side_effect = RuntimeError("boom")
        sync._spawn("poll", sync._poll())

        await asyncio.sleep(0.05)
        assert not sync.tasks["poll"].done()
        assert "boom" in sync.state.last_error

        sync.api.get_metrics.side_effect = None
        sync.api.get_trends.side_effect = None
        await asyncio.sleep(0.05)
        assert sync.state.last_error is None

        await sync.stop()

    @pytest.mark.asyncio
    async def test_stop_leaves_no_pending_tasks(self) -> None:
        sync = _sync()
        gate = asyncio.Event()

        async def run_forever() -> None:
            await asyncio.sleep(3600)

        async def hang(period: str) -> list[TrendPoint]:
            await gate.wait()
            return []

        sync.stream.run.side_effect = run_forever
        await sync.start()
        sync.api.get_trends.side_effect = hang
        refresh = asyncio.create_task(sync.refresh_trends())
        await _settle()
        request = sync._trends_request
        assert request is not None and not request.done()

        await sync.stop()

        assert request.cancelled()
        assert await refresh is False
        others = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert all(t.done() for t in others)
        sync.api.aclose.assert_awaited_once()
