"""
Analytics Router — metrics snapshot and trend series.

Endpoints:
  GET /api/analytics/metrics?startDate&endDate — Metrics
  GET /api/analytics/trends?period=day|week|month — TrendPoint[]

Every request runs tenant check -> parameter validation -> aggregation.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from app.models.payments import Metrics, TrendPoint
from app.services.payments import analytics
from app.services.payments.auth import require_tenant

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/metrics")
async def get_metrics(
    tenant_id: str = Depends(require_tenant),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
) -> Metrics:
    """All-time metrics, or metrics for [startDate, endDate] when both are given."""
    start, end = analytics.parse_range(start_date, end_date)
    return await analytics.get_metrics(tenant_id, start, end)


@router.get("/trends")
async def get_trends(
    tenant_id: str = Depends(require_tenant),
    period: str | None = Query(default=None),
) -> list[TrendPoint]:
    """Trend points bucketed by UTC day, week or month, oldest first."""
    period = analytics.validate_period(period)
    return await analytics.get_trends(tenant_id, period)
