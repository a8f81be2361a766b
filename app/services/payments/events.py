"""
Payment Events — in-process publish/subscribe.

The payment writer publishes a typed PaymentCreated message; the broadcast
gateway subscribes at startup. Delivery is best-effort and in-process: a
failing subscriber is logged and skipped, the rest still receive the
message.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.models.payments import EVENT_TYPE_BY_STATUS, Payment

logger = logging.getLogger(__name__)

PAYMENT_CREATED = "payment.created"


@dataclass(frozen=True)
class PaymentCreated:
    """Message published on `payment.created`."""

    tenant_id: str
    payment: Payment
    event_type: str

    @classmethod
    def for_payment(cls, payment: Payment) -> PaymentCreated:
        return cls(
            tenant_id=payment.tenant_id,
            payment=payment,
            event_type=EVENT_TYPE_BY_STATUS[payment.status],
        )


Subscriber = Callable[[PaymentCreated], Awaitable[None]]


class EventBus:
    """Topic-keyed subscriber lists with copy-on-write updates."""

    def __init__(self) -> None:
        self._subscribers: dict[str, tuple[Subscriber, ...]] = {}

    def subscribe(self, topic: str, handler: Subscriber) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        self._subscribers[topic] = self._subscribers.get(topic, ()) + (handler,)

        def _unsubscribe() -> None:
            current = self._subscribers.get(topic, ())
            self._subscribers[topic] = tuple(h for h in current if h is not handler)

        return _unsubscribe

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    async def publish(self, topic: str, message: PaymentCreated) -> int:
        """Deliver to every subscriber in registration order.

        Returns the number of subscribers that handled the message.
        """
        delivered = 0
        for handler in self._subscribers.get(topic, ()):
            try:
                await handler(message)
                delivered += 1
            except Exception:
                logger.warning(
                    "Subscriber %r failed on %s for %s",
                    handler,
                    topic,
                    message.tenant_id,
                    exc_info=True,
                )
        return delivered

    def clear(self) -> None:
        """Drop all subscribers (for testing)."""
        self._subscribers.clear()


# Singleton
_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get or create the singleton event bus."""
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus


def reset_event_bus() -> None:
    """Reset the singleton (for testing)."""
    global _bus
    _bus = None
