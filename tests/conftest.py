"""
Test configuration — sets required env vars before any imports.

Also provides an in-memory stand-in for the async Supabase client that
understands the query-builder calls the payment store makes and evaluates
the two aggregation functions in Python.
"""

import os

# Set dummy env vars so Settings() doesn't fail during test collection.
# These are never used for real calls — the store is always faked.
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

import uuid  # noqa: E402
from collections import Counter  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from typing import Any  # noqa: E402
from unittest.mock import AsyncMock, patch  # noqa: E402

import pytest  # noqa: E402


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _comparable(column: str, value: Any) -> Any:
    if column in ("created_at", "updated_at"):
        return _parse_ts(value)
    return value


class FakeResult:
    def __init__(self, data: Any, count: int | None = None) -> None:
        self.data = data
        self.count = count


# =============================================================================
# QUERY BUILDER
# =============================================================================


class FakeQuery:
    """Chainable builder mirroring the postgrest calls used by PaymentStore."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table_name = table
        self._op = "select"
        self._payload: Any = None
        self._filters: list[tuple[str, str, Any]] = []
        self._order: tuple[str, bool] | None = None
        self._range: tuple[int, int] | None = None
        self._count = False

    def select(self, *columns: str, count: str | None = None) -> "FakeQuery":
        self._op = "select"
        self._count = count == "exact"
        return self

    def insert(self, payload: Any) -> "FakeQuery":
        self._op = "insert"
        self._payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self._op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(("eq", column, value))
        return self

    def gte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(("gte", column, value))
        return self

    def lte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(("lte", column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self._range = (start, end)
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        for op, column, value in self._filters:
            left = _comparable(column, row.get(column))
            right = _comparable(column, value)
            if op == "eq" and left != right:
                return False
            if op == "gte" and left < right:
                return False
            if op == "lte" and left > right:
                return False
        return True

    async def execute(self) -> FakeResult:
        if self.db.fail_with is not None:
            raise self.db.fail_with
        rows = self.db.tables.setdefault(self.table_name, [])

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            created = [self.db.make_row(item) for item in payload]
            rows.extend(created)
            return FakeResult([dict(r) for r in created])

        if self._op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table_name] = [r for r in rows if not self._matches(r)]
            return FakeResult(removed)

        selected = [dict(r) for r in rows if self._matches(r)]
        total = len(selected)
        if self._order is not None:
            column, desc = self._order
            selected.sort(key=lambda r: _comparable(column, r[column]), reverse=desc)
        if self._range is not None:
            start, end = self._range
            selected = selected[start : end + 1]
        return FakeResult(selected, total if self._count else None)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", fn: str, params: dict[str, Any]) -> None:
        self.db = db
        self.fn = fn
        self.params = params

    async def execute(self) -> FakeResult:
        if self.db.fail_with is not None:
            raise self.db.fail_with
        self.db.rpc_calls.append((self.fn, dict(self.params)))
        if self.fn == "payment_metrics":
            return FakeResult(self.db.payment_metrics(**self.params))
        if self.fn == "payment_trends":
            return FakeResult(self.db.payment_trends(**self.params))
        raise RuntimeError(f"Unknown function {self.fn}")


# =============================================================================
# CLIENT
# =============================================================================


class FakeSupabase:
    """In-memory async Supabase client for the `payments` table."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, fn: str, params: dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, fn, params)

    @staticmethod
    def make_row(item: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        row = dict(item)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", now)
        row.setdefault("updated_at", row["created_at"])
        return row

    def _selected(
        self, tenant_id: str, start: str | None, end: str | None
    ) -> list[dict[str, Any]]:
        rows = []
        for r in self.tables.get("payments", []):
            if r["tenant_id"] != tenant_id:
                continue
            ts = _parse_ts(r["created_at"])
            if start is not None and ts < _parse_ts(start):
                continue
            if end is not None and ts > _parse_ts(end):
                continue
            rows.append(r)
        return rows

    def payment_metrics(
        self, p_tenant_id: str, p_start: str | None = None, p_end: str | None = None
    ) -> dict[str, Any]:
        rows = self._selected(p_tenant_id, p_start, p_end)
        if not rows:
            return {"overall": [], "status_counts": [], "method_counts": [], "hour_counts": []}

        volume = sum(float(r["amount"]) for r in rows)
        statuses = Counter(r["status"] for r in rows)
        methods = Counter(r["method"] for r in rows)
        hours = Counter(_parse_ts(r["created_at"]).hour for r in rows)
        top_method = sorted(methods.items(), key=lambda kv: (-kv[1], kv[0]))[0]
        top_hour = sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))[0]
        return {
            "overall": [
                {
                    "total_volume": volume,
                    "total_count": len(rows),
                    "average_amount": volume / len(rows),
                }
            ],
            "status_counts": [{"status": s, "count": c} for s, c in statuses.items()],
            "method_counts": [{"method": top_method[0], "count": top_method[1]}],
            "hour_counts": [{"hour": top_hour[0], "count": top_hour[1]}],
        }

    def payment_trends(
        self,
        p_tenant_id: str,
        p_period: str,
        p_start: str | None = None,
        p_end: str | None = None,
    ) -> list[dict[str, Any]]:
        groups: dict[tuple, dict[str, Any]] = {}
        for r in self._selected(p_tenant_id, p_start, p_end):
            ts = _parse_ts(r["created_at"])
            key = (
                ts.year,
                ts.month if p_period in ("day", "month") else None,
                ts.day if p_period == "day" else None,
                int(ts.strftime("%U")) if p_period == "week" else None,
            )
            acc = groups.setdefault(key, {"amount": 0.0, "count": 0, "success_count": 0})
            acc["amount"] += float(r["amount"])
            acc["count"] += 1
            if r["status"] == "success":
                acc["success_count"] += 1
        return [
            {"year": k[0], "month": k[1], "day": k[2], "week": k[3], **v}
            for k, v in sorted(groups.items(), key=lambda kv: tuple(x or 0 for x in kv[0]))
        ]


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def fake_supabase():
    """Patch the payment store's client getter with an in-memory fake."""
    db = FakeSupabase()
    with patch(
        "app.services.payments.store.get_supabase_client",
        new=AsyncMock(return_value=db),
    ):
        yield db


@pytest.fixture
def store(fake_supabase):
    from app.services.payments.store import PaymentStore

    return PaymentStore(table="payments")


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Fresh event bus, gateway, simulator and store per test."""
    from app.services.payments import events, gateway, simulator
    from app.services.payments import store as store_module

    yield
    events.reset_event_bus()
    gateway.reset_gateway()
    simulator.reset_simulator()
    store_module._store = None
