"""
Dashboard Alerts — advisory notifications derived from trend deltas.

After every ApplyTrendEvent the updated bucket is checked for:
  failureSpike     — failure rate > 2x the mean of the prior buckets in the
                     window and > 10%
  volumeThreshold  — bucket amount crossed the configured threshold

Each kind is suppressed when its value equals the last one emitted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.client.read_model import (
    Action,
    AddAlert,
    Alert,
    ApplyTrendEvent,
    DashboardState,
    DashboardStore,
)

logger = logging.getLogger(__name__)

FAILURE_SPIKE = "failureSpike"
VOLUME_THRESHOLD = "volumeThreshold"

_MIN_FAILURE_RATE = 10.0


class AlertMonitor:
    """Store observer that dispatches AddAlert actions."""

    def __init__(
        self,
        store: DashboardStore,
        volume_threshold: float = 100_000,
        window: int = 9,
    ) -> None:
        self.store = store
        self.volume_threshold = volume_threshold
        self.window = window
        self._last_emitted: dict[str, float] = {}
        self._unsubscribe = store.subscribe(self)

    def close(self) -> None:
        self._unsubscribe()

    def __call__(self, action: Action, state: DashboardState) -> None:
        if not isinstance(action, ApplyTrendEvent):
            return
        trends = state.trends
        if trends.last_touched is None:
            return

        keys = [b.timestamp for b in trends.data]
        try:
            idx = keys.index(trends.last_touched)
        except ValueError:
            return
        bucket = trends.data[idx]

        prior = trends.data[max(0, idx - self.window) : idx]
        if prior:
            trailing = sum(b.failure_rate for b in prior) / len(prior)
            current = bucket.failure_rate
            if current > trailing * 2 and current > _MIN_FAILURE_RATE:
                self._emit(
                    FAILURE_SPIKE,
                    current,
                    f"Failure rate spiked to {current:.1f}% "
                    f"(trailing mean {trailing:.1f}%)",
                )

        before = bucket.amount - action.amount
        if before <= self.volume_threshold < bucket.amount:
            self._emit(
                VOLUME_THRESHOLD,
                bucket.amount,
                f"High transaction volume: {bucket.amount:,.2f}",
            )

    def _emit(self, kind: str, value: float, message: str) -> None:
        if self._last_emitted.get(kind) == value:
            return
        self._last_emitted[kind] = value
        now = datetime.now(timezone.utc)
        logger.warning("Alert %s: %s", kind, message)
        self.store.dispatch(
            AddAlert(
                Alert(
                    id=f"{kind}-{int(now.timestamp() * 1000)}",
                    kind=kind,
                    message=message,
                    value=value,
                    timestamp=now,
                )
            )
        )
