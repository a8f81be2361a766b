"""
Payments Router — tenant-scoped payment writes and listing.

Endpoints:
  POST /api/payments        — Create a payment (broadcast to live sessions)
  GET  /api/payments        — List payments, newest first
  GET  /api/payments/count  — Count payments, optionally by status
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from app.config import settings
from app.errors import ValidationError
from app.models.payments import (
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    Payment,
    PaymentCount,
    PaymentCreate,
    PaymentFilter,
)
from app.services.payments.analytics import parse_range
from app.services.payments.auth import require_tenant
from app.services.payments.service import create_payment
from app.services.payments.store import get_payment_store

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_choice(name: str, value: str | None, choices: tuple[str, ...]) -> None:
    if value is not None and value not in choices:
        raise ValidationError(f"{name} must be one of: {', '.join(choices)}")


@router.post("", status_code=201)
async def create(
    body: PaymentCreate,
    tenant_id: str = Depends(require_tenant),
) -> Payment:
    """Record a payment for the calling tenant."""
    return await create_payment(tenant_id, body)


@router.get("")
async def list_payments(
    tenant_id: str = Depends(require_tenant),
    status: str | None = Query(default=None),
    method: str | None = Query(default=None),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    limit: int = Query(default=100, ge=1),
    skip: int = Query(default=0, ge=0),
) -> list[Payment]:
    """List payments with optional status / method / date filters."""
    _check_choice("status", status, PAYMENT_STATUSES)
    _check_choice("method", method, PAYMENT_METHODS)
    start, end = parse_range(start_date, end_date)

    filt = PaymentFilter(
        status=status,
        method=method,
        start_date=start,
        end_date=end,
        limit=min(limit, settings.payments_list_limit),
        skip=skip,
    )
    return await get_payment_store().query(tenant_id, filt)


@router.get("/count")
async def count_payments(
    tenant_id: str = Depends(require_tenant),
    status: str | None = Query(default=None),
) -> PaymentCount:
    _check_choice("status", status, PAYMENT_STATUSES)
    return PaymentCount(count=await get_payment_store().count(tenant_id, status))
