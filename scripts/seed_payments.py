"""
Seed demo payments for a set of tenants.

Each tenant's existing payments are deleted, then a batch of random
payments spread over the last N days is bulk-inserted. Bulk inserts emit
no live events. Prints a per-tenant status breakdown at the end.

Usage:
    python3 -m scripts.seed_payments
    python3 -m scripts.seed_payments --tenants tenant-alpha tenant-beta --count 500 --days 14
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure app imports work
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.models.payments import PAYMENT_STATUSES, PaymentCreate  # noqa: E402
from app.services.payments.simulator import random_method, random_status  # noqa: E402
from app.services.payments.store import PaymentStore, get_payment_store  # noqa: E402
from app.services.supabase import close_supabase  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

DEFAULT_TENANTS = ("tenant-alpha", "tenant-beta", "tenant-gamma")
DEFAULT_COUNT = 1000
DEFAULT_DAYS = 30


def build_payments(
    count: int, days_back: int, rng: random.Random, now: datetime | None = None
) -> list[PaymentCreate]:
    """Random payments in (now - days_back, now], oldest first."""
    now = now or datetime.now(timezone.utc)
    span = timedelta(days=days_back).total_seconds()
    payments = [
        PaymentCreate(
            amount=rng.randint(10, 10000),
            method=random_method(rng),  # type: ignore[arg-type]
            status=random_status(rng),  # type: ignore[arg-type]
            created_at=now - timedelta(seconds=rng.random() * span),
        )
        for _ in range(count)
    ]
    payments.sort(key=lambda p: p.created_at)  # type: ignore[arg-type,return-value]
    return payments


async def seed_tenant(
    store: PaymentStore, tenant_id: str, count: int, days_back: int, rng: random.Random
) -> int:
    deleted = await store.delete_all(tenant_id)
    logger.info("%s: cleared %d existing payments", tenant_id, deleted)

    created = await store.insert_many(tenant_id, build_payments(count, days_back, rng))
    logger.info("%s: created %d payments", tenant_id, len(created))
    return len(created)


async def summarize(store: PaymentStore, tenant_id: str) -> None:
    total = await store.count(tenant_id)
    print(f"\n{tenant_id}:")
    print(f"  Total:    {total}")
    for status in PAYMENT_STATUSES:
        n = await store.count(tenant_id, status)
        pct = (n / total * 100) if total else 0.0
        print(f"  {status.capitalize() + ':':<9} {n} ({pct:.1f}%)")


async def seed(
    tenants: list[str], count: int, days_back: int, seed_value: int | None
) -> None:
    store = get_payment_store()
    rng = random.Random(seed_value)
    try:
        for tenant_id in tenants:
            await seed_tenant(store, tenant_id, count, days_back, rng)

        print("\nSeed summary:")
        for tenant_id in tenants:
            await summarize(store, tenant_id)
    finally:
        await close_supabase()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo payments")
    parser.add_argument(
        "--tenants",
        nargs="+",
        default=list(DEFAULT_TENANTS),
        help="Tenant ids to seed (default: alpha, beta, gamma)",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=DEFAULT_COUNT,
        help="Payments per tenant",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_DAYS,
        help="Spread payments over the last N days",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for a reproducible data set",
    )
    args = parser.parse_args()

    try:
        asyncio.run(seed(args.tenants, args.count, args.days, args.seed))
    except Exception:
        logger.exception("Seed failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
