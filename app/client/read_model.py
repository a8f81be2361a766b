"""
Dashboard Read Model — authoritative snapshots plus optimistic deltas.

State only changes through DashboardStore.dispatch(action). Each dataset is
either authoritative (just replaced from a server response) or optimistic
(the last authoritative snapshot with live event deltas applied on top).
An authoritative replace always discards the optimistic overlay.

Trend points keep a raw success_count next to count. successRate is always
derived from those two integers, never from a previously rounded rate, so
repeated deltas cannot accumulate rounding error.
"""

from __future__ import annotations

import bisect
import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

from app.errors import ClientSyncError
from app.models.payments import Metrics, PaymentEvent, TrendPoint
from app.services.payments.buckets import as_utc, bucket_start
from app.services.payments.rates import (
    average_amount,
    round_half_up,
    success_count_from_rate,
    success_rate,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# STATE
# =============================================================================


@dataclass
class TrendBucket:
    """A trend point as held by the client."""

    timestamp: datetime
    amount: float = 0.0
    count: int = 0
    success_count: int = 0

    @property
    def success_rate(self) -> float:
        return success_rate(self.success_count, self.count)

    @property
    def failure_rate(self) -> float:
        return round_half_up(100 - self.success_rate, 1)

    @classmethod
    def from_point(cls, point: TrendPoint) -> TrendBucket:
        return cls(
            timestamp=as_utc(point.timestamp),
            amount=point.amount,
            count=point.count,
            success_count=success_count_from_rate(point.success_rate, point.count),
        )

    def to_point(self) -> TrendPoint:
        return TrendPoint(
            timestamp=self.timestamp,
            amount=self.amount,
            count=self.count,
            success_rate=self.success_rate,
        )


@dataclass
class MetricsState:
    data: Metrics | None = None
    last_updated: datetime | None = None
    is_optimistic: bool = False


@dataclass
class TrendsState:
    period: str = "day"
    data: list[TrendBucket] = field(default_factory=list)
    is_optimistic: bool = False
    last_updated: datetime | None = None
    # Bucket touched by the most recent ApplyTrendEvent
    last_touched: datetime | None = None

    def bucket(self, timestamp: datetime) -> TrendBucket | None:
        for b in self.data:
            if b.timestamp == timestamp:
                return b
        return None

    def points(self) -> list[TrendPoint]:
        return [b.to_point() for b in self.data]


@dataclass
class ConnectionInfo:
    status: str = "disconnected"
    message: str | None = None
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Alert:
    id: str
    kind: str  # failureSpike | volumeThreshold
    message: str
    value: float
    timestamp: datetime


@dataclass
class DashboardState:
    metrics: MetricsState
    trends: TrendsState
    events: deque[PaymentEvent]
    alerts: deque[Alert]
    connection: ConnectionInfo = field(default_factory=ConnectionInfo)
    last_error: str | None = None


# =============================================================================
# ACTIONS
# =============================================================================


@dataclass(frozen=True)
class MetricsDelta:
    """Sum of one or more payment events, applied as a single update."""

    total_volume: float = 0.0
    total_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    refunded_count: int = 0

    @classmethod
    def for_payment(cls, amount: float, status: str) -> MetricsDelta:
        return cls(
            total_volume=amount,
            total_count=1,
            success_count=1 if status == "success" else 0,
            failed_count=1 if status == "failed" else 0,
            refunded_count=1 if status == "refunded" else 0,
        )

    @classmethod
    def from_events(cls, events: Iterable[PaymentEvent]) -> MetricsDelta:
        volume = 0.0
        count = success = failed = refunded = 0
        for evt in events:
            volume += evt.payment.amount
            count += 1
            if evt.payment.status == "success":
                success += 1
            elif evt.payment.status == "failed":
                failed += 1
            elif evt.payment.status == "refunded":
                refunded += 1
        return cls(volume, count, success, failed, refunded)


@dataclass(frozen=True)
class SetMetrics:
    metrics: Metrics


@dataclass(frozen=True)
class ApplyMetricsDelta:
    delta: MetricsDelta


@dataclass(frozen=True)
class ClearMetrics:
    pass


@dataclass(frozen=True)
class SetTrends:
    points: tuple[TrendPoint, ...]
    # Period the response was requested for; stale periods are ignored
    period: str | None = None


@dataclass(frozen=True)
class ApplyTrendEvent:
    amount: float
    status: str
    occurred_at: datetime

    @classmethod
    def from_event(cls, event: PaymentEvent) -> ApplyTrendEvent:
        return cls(
            amount=event.payment.amount,
            status=event.payment.status,
            occurred_at=event.payment.created_at,
        )


@dataclass(frozen=True)
class SetPeriod:
    period: str


@dataclass(frozen=True)
class AddPaymentEvent:
    event: PaymentEvent


@dataclass(frozen=True)
class ClearEvents:
    pass


@dataclass(frozen=True)
class SetConnectionStatus:
    status: str
    message: str | None = None


@dataclass(frozen=True)
class SetError:
    message: str | None


@dataclass(frozen=True)
class AddAlert:
    alert: Alert


@dataclass(frozen=True)
class ClearAlerts:
    pass


Action = Union[
    SetMetrics,
    ApplyMetricsDelta,
    ClearMetrics,
    SetTrends,
    ApplyTrendEvent,
    SetPeriod,
    AddPaymentEvent,
    ClearEvents,
    SetConnectionStatus,
    SetError,
    AddAlert,
    ClearAlerts,
]

Observer = Callable[[Action, DashboardState], None]


# =============================================================================
# REDUCERS
# =============================================================================


def _apply_metrics_delta(state: MetricsState, delta: MetricsDelta) -> None:
    if state.data is None:
        raise ClientSyncError("No metrics baseline to apply a delta to")

    m = state.data.model_copy()
    m.total_volume += delta.total_volume
    m.total_count += delta.total_count
    m.success_count += delta.success_count
    m.failed_count += delta.failed_count
    m.refunded_count += delta.refunded_count
    # top_payment_method and peak_hour need full history; left as-is
    m.success_rate = success_rate(m.success_count, m.total_count)
    m.average_amount = average_amount(m.total_volume, m.total_count)

    state.data = m
    state.is_optimistic = True
    state.last_updated = _now()


def _set_trends(state: TrendsState, action: SetTrends) -> bool:
    if action.period is not None and action.period != state.period:
        logger.debug(
            "Ignoring trends for %s; current period is %s", action.period, state.period
        )
        return False
    buckets = sorted(
        (TrendBucket.from_point(p) for p in action.points), key=lambda b: b.timestamp
    )
    state.data = buckets
    state.is_optimistic = False
    state.last_updated = _now()
    state.last_touched = None
    return True


def _apply_trend_event(state: TrendsState, action: ApplyTrendEvent) -> None:
    if state.last_updated is None:
        raise ClientSyncError("No trends baseline to apply an event to")

    ts = bucket_start(action.occurred_at, state.period)
    bucket = state.bucket(ts)
    if bucket is None:
        bucket = TrendBucket(timestamp=ts)
        keys = [b.timestamp for b in state.data]
        state.data.insert(bisect.bisect_left(keys, ts), bucket)

    bucket.amount += action.amount
    bucket.count += 1
    if action.status == "success":
        bucket.success_count += 1

    state.is_optimistic = True
    state.last_updated = _now()
    state.last_touched = ts


def _set_period(state: TrendsState, period: str) -> None:
    state.period = period
    state.data = []
    state.is_optimistic = False
    state.last_updated = None
    state.last_touched = None


# =============================================================================
# STORE
# =============================================================================


class DashboardStore:
    """Single owner of DashboardState; mutated only via dispatch()."""

    def __init__(
        self,
        event_log_cap: int = 200,
        alert_log_cap: int = 50,
        period: str = "day",
    ) -> None:
        self.state = DashboardState(
            metrics=MetricsState(),
            trends=TrendsState(period=period),
            events=deque(maxlen=event_log_cap),
            alerts=deque(maxlen=alert_log_cap),
        )
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call `observer(action, state)` after every applied action."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def dispatch(self, action: Action) -> bool:
        """Apply an action. Returns False if it was skipped."""
        try:
            applied = self._reduce(action)
        except ClientSyncError as e:
            logger.debug("Skipped %s: %s", type(action).__name__, e.message)
            return False

        if applied:
            for observer in list(self._observers):
                try:
                    observer(action, self.state)
                except Exception:
                    logger.warning(
                        "Observer %r failed on %s",
                        observer,
                        type(action).__name__,
                        exc_info=True,
                    )
        return applied

    def _reduce(self, action: Action) -> bool:
        s = self.state

        if isinstance(action, SetMetrics):
            s.metrics.data = action.metrics.model_copy()
            s.metrics.is_optimistic = False
            s.metrics.last_updated = _now()
        elif isinstance(action, ApplyMetricsDelta):
            _apply_metrics_delta(s.metrics, action.delta)
        elif isinstance(action, ClearMetrics):
            s.metrics = MetricsState()
        elif isinstance(action, SetTrends):
            return _set_trends(s.trends, action)
        elif isinstance(action, ApplyTrendEvent):
            _apply_trend_event(s.trends, action)
        elif isinstance(action, SetPeriod):
            _set_period(s.trends, action.period)
        elif isinstance(action, AddPaymentEvent):
            # Newest first
            s.events.appendleft(action.event)
        elif isinstance(action, ClearEvents):
            s.events.clear()
        elif isinstance(action, SetConnectionStatus):
            s.connection = ConnectionInfo(status=action.status, message=action.message)
        elif isinstance(action, SetError):
            s.last_error = action.message
        elif isinstance(action, AddAlert):
            s.alerts.append(action.alert)
        elif isinstance(action, ClearAlerts):
            s.alerts.clear()
        else:
            raise TypeError(f"Unknown action: {action!r}")
        return True
