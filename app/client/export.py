"""
CSV export of the dashboard read model.

Free-text cells are guarded against spreadsheet formula injection.
"""

import csv
import io
from collections.abc import Iterable

from app.client.read_model import DashboardState, TrendBucket
from app.models.payments import Metrics, PaymentEvent

_CSV_INJECTION_CHARS = {"=", "+", "-", "@", "\t", "\r"}


def _sanitize_csv(value: str) -> str:
    """Prefix cells starting with a formula character with a single quote."""
    if value and value[0] in _CSV_INJECTION_CHARS:
        return f"'{value}"
    return value


def _render(header: list[str], rows: Iterable[list]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    writer.writerows(rows)
    return output.getvalue()


def metrics_csv(metrics: Metrics | None) -> str:
    header = [
        "Total Volume",
        "Success Rate",
        "Average Amount",
        "Peak Hour",
        "Top Payment Method",
        "Total Count",
        "Success Count",
        "Failed Count",
        "Refunded Count",
    ]
    if metrics is None:
        return _render(header, [])
    row = [
        f"{metrics.total_volume:.2f}",
        f"{metrics.success_rate:.1f}",
        f"{metrics.average_amount:.2f}",
        metrics.peak_hour,
        _sanitize_csv(metrics.top_payment_method),
        metrics.total_count,
        metrics.success_count,
        metrics.failed_count,
        metrics.refunded_count,
    ]
    return _render(header, [row])


def trends_csv(buckets: Iterable[TrendBucket]) -> str:
    rows = (
        [
            b.timestamp.isoformat(),
            f"{b.amount:.2f}",
            b.count,
            f"{b.success_rate:.1f}",
        ]
        for b in buckets
    )
    return _render(["Timestamp", "Amount", "Count", "Success Rate"], rows)


def events_csv(events: Iterable[PaymentEvent]) -> str:
    rows = (
        [
            e.timestamp.isoformat(),
            e.type,
            _sanitize_csv(e.payment.id),
            _sanitize_csv(e.payment.tenant_id),
            f"{e.payment.amount:.2f}",
            e.payment.method,
            e.payment.status,
            e.payment.created_at.isoformat(),
        ]
        for e in events
    )
    header = [
        "Received At",
        "Type",
        "Payment ID",
        "Tenant ID",
        "Amount",
        "Method",
        "Status",
        "Created At",
    ]
    return _render(header, rows)


def dashboard_csv(state: DashboardState) -> dict[str, str]:
    """All three exports keyed by a suggested file stem."""
    return {
        "metrics": metrics_csv(state.metrics.data),
        f"trends-{state.trends.period}": trends_csv(state.trends.data),
        "events": events_csv(state.events),
    }
