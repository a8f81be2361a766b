"""
Payment Store — tenant-scoped persistence on Supabase.

Rows live in the `payments` table (see supabase/migrations). Aggregations
run server-side as Postgres functions so every metrics or trends request
is a single round-trip. No operation here spans more than one tenant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.config import settings
from app.errors import DependencyError, ValidationError
from app.models.payments import Payment, PaymentCreate, PaymentFilter
from app.services.supabase import get_supabase_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationSpec:
    """Which server-side reduction to run.

    kind="metrics" returns one row with four facets (overall, status_counts,
    method_counts, hour_counts). kind="trends" returns one row per bucket
    keyed by year/month/day/week with amount, count and success_count.
    """

    kind: str
    period: str | None = None


def _require_tenant(tenant_id: str | None) -> str:
    if not tenant_id or not tenant_id.strip():
        raise ValidationError("tenantId is required")
    return tenant_id


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


class PaymentStore:
    """Append-only payment records with tenant-scoped reads."""

    def __init__(self, table: str | None = None) -> None:
        self.table = table or settings.payments_table

    async def _execute(self, build: Any, what: str) -> Any:
        """Run a query builder, mapping any store failure to DependencyError."""
        try:
            return await build.execute()
        except Exception:
            logger.exception("Payment store: %s failed", what)
            raise DependencyError(f"Payment store unavailable during {what}")

    async def _client(self) -> Any:
        try:
            return await get_supabase_client()
        except Exception:
            logger.exception("Payment store: could not obtain client")
            raise DependencyError("Payment store unavailable")

    # =========================================================================
    # WRITES
    # =========================================================================

    def _row(self, tenant_id: str, body: PaymentCreate) -> dict[str, Any]:
        row: dict[str, Any] = {
            "tenant_id": tenant_id,
            "amount": body.amount,
            "method": body.method,
            "status": body.status,
        }
        if body.created_at is not None:
            row["created_at"] = body.created_at.isoformat()
            row["updated_at"] = body.created_at.isoformat()
        return row

    async def insert(self, tenant_id: str, body: PaymentCreate) -> Payment:
        """Insert one payment; the store assigns id and timestamps."""
        _require_tenant(tenant_id)
        sb = await self._client()
        result = await self._execute(
            sb.table(self.table).insert(self._row(tenant_id, body)), "insert"
        )
        if not result.data:
            raise DependencyError("Payment store returned no row for insert")
        return Payment(**result.data[0])

    async def insert_many(
        self, tenant_id: str, bodies: list[PaymentCreate]
    ) -> list[Payment]:
        """Bulk insert for seeding and fixtures. Emits no events."""
        _require_tenant(tenant_id)
        if not bodies:
            return []
        sb = await self._client()
        result = await self._execute(
            sb.table(self.table).insert([self._row(tenant_id, b) for b in bodies]),
            "bulk insert",
        )
        return [Payment(**row) for row in (result.data or [])]

    async def delete_all(self, tenant_id: str) -> int:
        """Delete every payment of a tenant. Test fixtures and seeding only."""
        _require_tenant(tenant_id)
        sb = await self._client()
        result = await self._execute(
            sb.table(self.table).delete().eq("tenant_id", tenant_id), "delete"
        )
        return len(result.data or [])

    # =========================================================================
    # READS
    # =========================================================================

    async def query(
        self, tenant_id: str, filt: PaymentFilter | None = None
    ) -> list[Payment]:
        """Newest-first payments of a tenant matching the filter."""
        _require_tenant(tenant_id)
        filt = filt or PaymentFilter()
        sb = await self._client()

        query = sb.table(self.table).select("*").eq("tenant_id", tenant_id)
        if filt.status:
            query = query.eq("status", filt.status)
        if filt.method:
            query = query.eq("method", filt.method)
        if filt.start_date:
            query = query.gte("created_at", _iso(filt.start_date))
        if filt.end_date:
            query = query.lte("created_at", _iso(filt.end_date))

        query = query.order("created_at", desc=True).range(
            filt.skip, filt.skip + filt.limit - 1
        )
        result = await self._execute(query, "query")
        return [Payment(**row) for row in (result.data or [])]

    async def count(self, tenant_id: str, status: str | None = None) -> int:
        _require_tenant(tenant_id)
        sb = await self._client()
        query = (
            sb.table(self.table)
            .select("id", count="exact")
            .eq("tenant_id", tenant_id)
        )
        if status:
            query = query.eq("status", status)
        result = await self._execute(query, "count")
        if result.count is not None:
            return int(result.count)
        return len(result.data or [])

    async def aggregate(
        self,
        tenant_id: str,
        filt: PaymentFilter | None,
        spec: AggregationSpec,
    ) -> list[dict[str, Any]]:
        """Run a server-side aggregation and return its raw rows."""
        _require_tenant(tenant_id)
        filt = filt or PaymentFilter()

        params: dict[str, Any] = {
            "p_tenant_id": tenant_id,
            "p_start": _iso(filt.start_date),
            "p_end": _iso(filt.end_date),
        }
        if spec.kind == "metrics":
            fn = settings.metrics_rpc
        elif spec.kind == "trends":
            fn = settings.trends_rpc
            params["p_period"] = spec.period
        else:
            raise ValidationError(f"Unknown aggregation: {spec.kind}")

        sb = await self._client()
        result = await self._execute(sb.rpc(fn, params), f"aggregate:{spec.kind}")
        data = result.data
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return list(data)


# Singleton
_store: PaymentStore | None = None


def get_payment_store() -> PaymentStore:
    """Get or create the singleton payment store."""
    global _store
    if _store is None:
        _store = PaymentStore()
    return _store
