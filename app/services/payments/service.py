"""
Payment Service — the "create payment" operation.

Persists through the store, then publishes `payment.created` so live
sessions of the tenant see it. Publish happens after the insert returns,
so events from one caller go out in insertion order.
"""

from __future__ import annotations

import logging

from app.models.payments import Payment, PaymentCreate
from app.services.payments.events import (
    PAYMENT_CREATED,
    EventBus,
    PaymentCreated,
    get_event_bus,
)
from app.services.payments.store import PaymentStore, get_payment_store

logger = logging.getLogger(__name__)


async def create_payment(
    tenant_id: str,
    body: PaymentCreate,
    store: PaymentStore | None = None,
    bus: EventBus | None = None,
) -> Payment:
    """Insert a payment and publish it to the tenant's subscribers."""
    store = store or get_payment_store()
    bus = bus or get_event_bus()

    payment = await store.insert(tenant_id, body)
    message = PaymentCreated.for_payment(payment)
    await bus.publish(PAYMENT_CREATED, message)

    logger.debug(
        "Created payment %s for %s (%s, %.2f)",
        payment.id,
        tenant_id,
        message.event_type,
        payment.amount,
    )
    return payment
