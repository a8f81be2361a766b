"""
Payment Analytics — metrics snapshots and trend series.

Each call is one aggregation round-trip to the store followed by pure
post-processing. Nothing here holds state, so concurrent requests are safe.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from app.errors import ValidationError
from app.models.payments import (
    PAYMENT_METHODS,
    TREND_PERIODS,
    Metrics,
    PaymentFilter,
    TrendPoint,
)
from app.services.payments.buckets import as_utc, bucket_from_key
from app.services.payments.rates import round_half_up, success_rate
from app.services.payments.store import AggregationSpec, PaymentStore, get_payment_store

logger = logging.getLogger(__name__)

_DEFAULT_METHOD = "upi"


def validate_period(period: str | None) -> str:
    if not period or period not in TREND_PERIODS:
        raise ValidationError('period must be one of "day", "week", "month"')
    return period


def parse_range(
    start_date: str | None, end_date: str | None
) -> tuple[datetime | None, datetime | None]:
    """Parse an optional ISO-8601 date range. Both bounds or neither."""
    if not start_date and not end_date:
        return None, None
    if not start_date or not end_date:
        raise ValidationError(
            "Both startDate and endDate are required when filtering by date"
        )
    try:
        start = as_utc(datetime.fromisoformat(start_date))
        end = as_utc(datetime.fromisoformat(end_date))
    except ValueError:
        raise ValidationError("Invalid date format. Use ISO 8601 (YYYY-MM-DD)")
    if start > end:
        raise ValidationError("startDate must be before endDate")
    return start, end


# =============================================================================
# METRICS
# =============================================================================


def _first(rows: Any) -> dict[str, Any] | None:
    if isinstance(rows, list) and rows:
        return rows[0]
    return None


def metrics_from_facets(facets: dict[str, Any] | None) -> Metrics:
    """Map the four facets of the metrics aggregation onto a Metrics snapshot."""
    facets = facets or {}

    overall = _first(facets.get("overall")) or {}
    total_count = int(overall.get("total_count") or 0)
    total_volume = float(overall.get("total_volume") or 0)
    avg = overall.get("average_amount")
    average = round_half_up(float(avg), 2) if total_count and avg is not None else 0.0

    status_counts: dict[str, int] = {}
    for item in facets.get("status_counts") or []:
        status_counts[item["status"]] = int(item["count"])
    success_count = status_counts.get("success", 0)

    top = _first(facets.get("method_counts"))
    top_method = top["method"] if top and top.get("method") in PAYMENT_METHODS else _DEFAULT_METHOD

    peak = _first(facets.get("hour_counts"))
    peak_hour = int(peak["hour"]) if peak and peak.get("hour") is not None else 0

    return Metrics(
        total_volume=total_volume,
        success_rate=success_rate(success_count, total_count),
        average_amount=average,
        peak_hour=peak_hour,
        top_payment_method=top_method,
        total_count=total_count,
        success_count=success_count,
        failed_count=status_counts.get("failed", 0),
        refunded_count=status_counts.get("refunded", 0),
    )


async def get_metrics(
    tenant_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    store: PaymentStore | None = None,
) -> Metrics:
    """Metrics for a tenant, optionally restricted to [start, end]."""
    store = store or get_payment_store()
    rows = await store.aggregate(
        tenant_id,
        PaymentFilter(start_date=start, end_date=end),
        AggregationSpec(kind="metrics"),
    )
    return metrics_from_facets(_first(rows))


# =============================================================================
# TRENDS
# =============================================================================


def _opt_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def trends_from_rows(rows: list[dict[str, Any]], period: str) -> list[TrendPoint]:
    """Turn grouped rows into an ascending series of bucket points.

    Rows are re-sorted by bucket start because week 0 of a year lands before
    the last week of the previous one.
    """
    buckets: dict[datetime, dict[str, float]] = {}
    for row in rows:
        ts = bucket_from_key(
            period,
            int(row["year"]),
            month=_opt_int(row.get("month")),
            day=_opt_int(row.get("day")),
            week=_opt_int(row.get("week")),
        )
        acc = buckets.setdefault(ts, {"amount": 0.0, "count": 0, "success": 0})
        acc["amount"] += float(row.get("amount") or 0)
        acc["count"] += int(row.get("count") or 0)
        acc["success"] += int(row.get("success_count") or 0)

    points: list[TrendPoint] = []
    for ts in sorted(buckets):
        acc = buckets[ts]
        if acc["count"] <= 0:
            continue
        points.append(
            TrendPoint(
                timestamp=ts,
                amount=acc["amount"],
                count=int(acc["count"]),
                success_rate=success_rate(int(acc["success"]), int(acc["count"])),
            )
        )
    return points


async def get_trends(
    tenant_id: str,
    period: str,
    store: PaymentStore | None = None,
) -> list[TrendPoint]:
    """Trend series for a tenant bucketed by day, week or month (UTC)."""
    period = validate_period(period)
    store = store or get_payment_store()
    rows = await store.aggregate(
        tenant_id, None, AggregationSpec(kind="trends", period=period)
    )
    points = trends_from_rows(rows, period)
    logger.debug("Trends %s/%s: %d buckets", tenant_id, period, len(points))
    return points
