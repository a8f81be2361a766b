"""
Watch a tenant's live dashboard from the terminal.

Loads authoritative metrics and trends, subscribes to the live payment
stream and prints a summary line every few seconds. Alerts and connection
changes are printed as they happen. Optionally writes CSV exports on exit.

Usage:
    python3 -m scripts.watch_dashboard --tenant tenant-alpha
    python3 -m scripts.watch_dashboard --tenant tenant-beta --period week --export-dir ./out
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure app imports work
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.client.config import get_client_settings  # noqa: E402
from app.client.export import dashboard_csv  # noqa: E402
from app.client.read_model import (  # noqa: E402
    Action,
    AddAlert,
    DashboardState,
    SetConnectionStatus,
)
from app.client.sync import DashboardSync  # noqa: E402
from app.models.payments import TREND_PERIODS  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def format_summary(state: DashboardState) -> str:
    m = state.metrics.data
    if m is None:
        head = "metrics: -"
    else:
        flag = "*" if state.metrics.is_optimistic else " "
        head = (
            f"volume {m.total_volume:,.2f}{flag} | count {m.total_count} | "
            f"success {m.success_rate:.1f}% | avg {m.average_amount:,.2f} | "
            f"peak {m.peak_hour:02d}h | top {m.top_payment_method}"
        )
    latest = state.trends.data[-1] if state.trends.data else None
    trend = (
        f"{state.trends.period} {latest.timestamp:%Y-%m-%d} "
        f"{latest.amount:,.2f} ({latest.count})"
        if latest
        else f"{state.trends.period} -"
    )
    tail = f"[{state.connection.status}]"
    if state.last_error:
        tail += f" error: {state.last_error}"
    return f"{head} || {trend} {tail}"


def _print_notable(action: Action, state: DashboardState) -> None:
    if isinstance(action, AddAlert):
        print(f"!! {action.alert.kind}: {action.alert.message}")
    elif isinstance(action, SetConnectionStatus):
        msg = f" ({action.message})" if action.message else ""
        print(f"-- connection {action.status}{msg}")


def write_exports(state: DashboardState, directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for stem, body in dashboard_csv(state).items():
        path = directory / f"{stem}.csv"
        path.write_text(body, encoding="utf-8")
        logger.info("Wrote %s", path)


async def watch(
    tenant_id: str,
    period: str,
    interval: float,
    duration: float | None,
    export_dir: Path | None,
) -> None:
    settings = get_client_settings().model_copy(
        update={"tenant_id": tenant_id, "default_period": period}
    )
    sync = DashboardSync(settings)
    unsubscribe = sync.store.subscribe(_print_notable)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration else None
    await sync.start()
    try:
        while deadline is None or loop.time() < deadline:
            print(format_summary(sync.state))
            await asyncio.sleep(interval)
    finally:
        unsubscribe()
        await sync.stop()
        if export_dir is not None:
            write_exports(sync.state, export_dir)


def main() -> None:
    settings = get_client_settings()
    parser = argparse.ArgumentParser(description="Watch a live payment dashboard")
    parser.add_argument("--tenant", default=settings.tenant_id, help="Tenant id")
    parser.add_argument(
        "--period",
        choices=TREND_PERIODS,
        default=settings.default_period,
        help="Trend bucketing",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Seconds between summary lines",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after N seconds (default: run until interrupted)",
    )
    parser.add_argument(
        "--export-dir",
        type=Path,
        default=None,
        help="Write metrics/trends/events CSV here on exit",
    )
    args = parser.parse_args()

    try:
        asyncio.run(
            watch(args.tenant, args.period, args.interval, args.duration, args.export_dir)
        )
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
