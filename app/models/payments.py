"""
Payment Models — Pydantic models for payments, analytics and live events.

Wire format is camelCase (totalVolume, createdAt, ...); Python attributes
stay snake_case. Every model accepts either spelling on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PaymentMethod = Literal["credit_card", "debit_card", "upi", "net_banking", "wallet"]
PaymentStatus = Literal["success", "failed", "refunded"]
PaymentEventType = Literal["payment_received", "payment_failed", "payment_refunded"]
TrendPeriod = Literal["day", "week", "month"]
ConnectionState = Literal["connected", "disconnected", "error"]

PAYMENT_METHODS: tuple[str, ...] = (
    "credit_card",
    "debit_card",
    "upi",
    "net_banking",
    "wallet",
)
PAYMENT_STATUSES: tuple[str, ...] = ("success", "failed", "refunded")
TREND_PERIODS: tuple[str, ...] = ("day", "week", "month")

EVENT_TYPE_BY_STATUS: dict[str, str] = {
    "success": "payment_received",
    "failed": "payment_failed",
    "refunded": "payment_refunded",
}

TENANT_ID_PATTERN = r"tenant-[A-Za-z0-9-]+"


class CamelModel(BaseModel):
    """Base model serialising to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# PAYMENTS
# =============================================================================


class PaymentCreate(CamelModel):
    """Request body for creating a payment. Tenant comes from X-Tenant-Id."""

    amount: float = Field(ge=0)
    method: PaymentMethod
    status: PaymentStatus
    # Only honoured by bulk inserts (seeding / fixtures)
    created_at: datetime | None = None


class Payment(CamelModel):
    """A stored payment record."""

    id: str
    tenant_id: str
    amount: float
    method: PaymentMethod
    status: PaymentStatus
    created_at: datetime
    updated_at: datetime


class PaymentFilter(CamelModel):
    """Tenant-scoped query filter. Dates are inclusive bounds on created_at."""

    status: PaymentStatus | None = None
    method: PaymentMethod | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=100, ge=1)
    skip: int = Field(default=0, ge=0)


class PaymentCount(CamelModel):
    count: int


# =============================================================================
# ANALYTICS
# =============================================================================


class Metrics(CamelModel):
    """Aggregate view of a tenant's payments over an optional range."""

    total_volume: float = 0
    success_rate: float = 0
    average_amount: float = 0
    peak_hour: int = 0
    top_payment_method: PaymentMethod = "upi"
    total_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    refunded_count: int = 0


class TrendPoint(CamelModel):
    """One bucket of a trend series. timestamp is the UTC bucket start."""

    timestamp: datetime
    amount: float
    count: int
    success_rate: float


# =============================================================================
# LIVE EVENTS
# =============================================================================


class PaymentEvent(CamelModel):
    """Broadcast to a tenant room for every created payment."""

    type: PaymentEventType
    payment: Payment
    timestamp: datetime


class ConnectionStatusEvent(CamelModel):
    status: ConnectionState
    message: str | None = None
    timestamp: datetime


class StreamErrorEvent(CamelModel):
    message: str


# =============================================================================
# SIMULATOR
# =============================================================================


class StartSimulationRequest(CamelModel):
    payments_per_minute: int | None = Field(default=None, ge=1, le=60)


class SimulationStarted(CamelModel):
    message: str
    tenant_id: str
    payments_per_minute: int
    started_at: datetime


class SimulationStopped(CamelModel):
    message: str
    tenant_id: str
    was_stopped: bool


class SimulationsStopped(CamelModel):
    message: str
    count: int


class SimulationStatus(CamelModel):
    tenant_id: str
    payments_per_minute: int
    payments_sent: int
    started_at: datetime
    runtime_minutes: int
    is_running: bool = True


class SimulatorStatus(CamelModel):
    active_simulations: int
    simulations: list[SimulationStatus] = Field(default_factory=list)
