"""
Tests for the batching dispatcher and the alert monitor.

Covers: one metrics update per flush, per-bucket trend contributions,
hold/release around a period change, periodic flush task, failure spike
and volume threshold alerts with de-duplication.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from app.client.alerts import FAILURE_SPIKE, VOLUME_THRESHOLD, AlertMonitor
from app.client.batching import BatchingDispatcher
from app.client.read_model import (
    ApplyMetricsDelta,
    ApplyTrendEvent,
    DashboardStore,
    SetMetrics,
    SetPeriod,
    SetTrends,
)
from app.models.payments import Metrics, Payment, PaymentEvent, TrendPoint

UTC = timezone.utc
DAY = datetime(2025, 2, 1, tzinfo=UTC)


def _event(amount: float, status: str, ts: datetime) -> PaymentEvent:
    payment = Payment(
        id=f"p-{amount}-{ts.timestamp()}",
        tenant_id="tenant-a",
        amount=amount,
        method="upi",
        status=status,
        created_at=ts,
        updated_at=ts,
    )
    return PaymentEvent(type="payment_received", payment=payment, timestamp=ts)


def _point(day: int, amount: float = 100, count: int = 10, rate: float = 90.0) -> TrendPoint:
    return TrendPoint(
        timestamp=DAY + timedelta(days=day), amount=amount, count=count, success_rate=rate
    )


def _seeded_store() -> DashboardStore:
    store = DashboardStore()
    store.dispatch(SetMetrics(Metrics()))
    store.dispatch(SetTrends(()))
    return store


# =============================================================================
# BATCHING
# =============================================================================


@pytest.mark.unit
class TestBatchingDispatcher:
    def test_push_logs_event_immediately_and_buffers_delta(self) -> None:
        store = _seeded_store()
        dispatcher = BatchingDispatcher(store)
        dispatcher.push(_event(10, "success", DAY))

        assert len(store.state.events) == 1
        assert dispatcher.pending == 1
        assert store.state.metrics.data.total_count == 0

    def test_one_metrics_update_per_flush(self) -> None:
        rng = random.Random(42)
        store = _seeded_store()
        actions: list[object] = []
        store.subscribe(lambda action, state: actions.append(action))
        dispatcher = BatchingDispatcher(store)

        events = [
            _event(
                rng.randint(10, 500),
                rng.choice(["success", "failed", "refunded"]),
                DAY + timedelta(days=rng.randint(0, 4), hours=rng.randint(0, 23)),
            )
            for _ in range(100)
        ]
        for e in events:
            dispatcher.push(e)
        actions.clear()

        assert dispatcher.flush() == 100

        metric_updates = [a for a in actions if isinstance(a, ApplyMetricsDelta)]
        trend_updates = [a for a in actions if isinstance(a, ApplyTrendEvent)]
        assert len(metric_updates) == 1
        assert len(trend_updates) == 100

        total = sum(e.payment.amount for e in events)
        successes = sum(1 for e in events if e.payment.status == "success")
        m = store.state.metrics.data
        assert m.total_volume == total
        assert m.total_count == 100
        assert m.success_count == successes

        for bucket in store.state.trends.data:
            in_bucket = [
                e for e in events if e.payment.created_at.date() == bucket.timestamp.date()
            ]
            assert bucket.count == len(in_bucket)
            assert bucket.success_count == sum(
                1 for e in in_bucket if e.payment.status == "success"
            )
        assert sum(b.count for b in store.state.trends.data) == 100

    def test_flush_empty_is_noop(self) -> None:
        assert BatchingDispatcher(_seeded_store()).flush() == 0

    def test_hold_keeps_events_until_release(self) -> None:
        store = _seeded_store()
        dispatcher = BatchingDispatcher(store)
        dispatcher.hold()
        store.dispatch(SetPeriod("month"))
        dispatcher.push(_event(10, "success", DAY))

        assert dispatcher.flush() == 0
        assert dispatcher.pending == 1

        store.dispatch(SetTrends((_point(0),), period="month"))
        assert dispatcher.release() == 1
        [bucket] = store.state.trends.data
        assert bucket.count == 11
        assert bucket.amount == 110

    @pytest.mark.asyncio
    async def test_periodic_flush_task(self) -> None:
        store = _seeded_store()
        dispatcher = BatchingDispatcher(store, flush_interval=0.01)
        task = dispatcher.start()
        assert task.get_name() == "flush"
        assert dispatcher.start() is task

        dispatcher.push(_event(5, "success", DAY))
        for _ in range(50):
            await asyncio.sleep(0.01)
            if dispatcher.pending == 0:
                break
        assert store.state.metrics.data.total_count == 1

        dispatcher.push(_event(5, "failed", DAY))
        await dispatcher.stop()
        assert task.cancelled()
        assert store.state.metrics.data.total_count == 2


# =============================================================================
# ALERTS
# =============================================================================


@pytest.mark.unit
class TestAlertMonitor:
    def _store_with_history(self, failure_rate: float = 10.0, days: int = 9) -> DashboardStore:
        store = DashboardStore()
        points = tuple(_point(d, amount=1000, count=10, rate=100 - failure_rate) for d in range(days))
        store.dispatch(SetTrends(points))
        return store

    def test_failure_spike(self) -> None:
        store = self._store_with_history(failure_rate=10.0)
        AlertMonitor(store, volume_threshold=10**9)
        ts = DAY + timedelta(days=9)
        store.dispatch(ApplyTrendEvent(5, "failed", ts))

        [alert] = store.state.alerts
        assert alert.kind == FAILURE_SPIKE
        assert alert.value == 100.0

    def test_no_spike_below_absolute_floor(self) -> None:
        store = self._store_with_history(failure_rate=0.0)
        points = tuple(store.state.trends.points()) + (_point(9, count=10, rate=100.0),)
        store.dispatch(SetTrends(points))
        AlertMonitor(store, volume_threshold=10**9)
        # 1 failure in 11 => 9.1%, above 2x the trailing mean but below 10%
        store.dispatch(ApplyTrendEvent(5, "failed", DAY + timedelta(days=9)))
        assert len(store.state.alerts) == 0

    def test_no_spike_without_prior_buckets(self) -> None:
        store = DashboardStore()
        store.dispatch(SetTrends(()))
        AlertMonitor(store, volume_threshold=10**9)
        store.dispatch(ApplyTrendEvent(5, "failed", DAY))
        assert len(store.state.alerts) == 0

    def test_volume_threshold_fires_on_crossing_once(self) -> None:
        store = DashboardStore()
        store.dispatch(SetTrends((_point(0, amount=900, count=1, rate=100.0),)))
        AlertMonitor(store, volume_threshold=1000)

        store.dispatch(ApplyTrendEvent(50, "success", DAY))
        assert len(store.state.alerts) == 0

        store.dispatch(ApplyTrendEvent(100, "success", DAY))
        [alert] = store.state.alerts
        assert alert.kind == VOLUME_THRESHOLD
        assert alert.value == 1050

        store.dispatch(ApplyTrendEvent(100, "success", DAY))
        assert len(store.state.alerts) == 1

    def test_duplicate_values_are_suppressed(self) -> None:
        store = self._store_with_history(failure_rate=0.0)
        monitor = AlertMonitor(store, volume_threshold=10**9)
        # Two fresh single-failure buckets both report 100% failure
        store.dispatch(ApplyTrendEvent(1, "failed", DAY + timedelta(days=9)))
        store.dispatch(ApplyTrendEvent(1, "failed", DAY + timedelta(days=10)))
        assert [a.kind for a in store.state.alerts] == [FAILURE_SPIKE]
        monitor.close()

    def test_close_unsubscribes(self) -> None:
        store = self._store_with_history(failure_rate=0.0)
        AlertMonitor(store, volume_threshold=10**9).close()
        store.dispatch(ApplyTrendEvent(1, "failed", DAY + timedelta(days=9)))
        assert len(store.state.alerts) == 0
