"""
Payment Simulator — per-tenant fake payment producers.

Each running simulation is an asyncio task that calls create_payment at a
fixed rate, so generated payments flow through the store, the event bus
and the gateway exactly like real ones.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.config import settings
from app.errors import ValidationError
from app.models.payments import (
    Payment,
    PaymentCreate,
    SimulationStatus,
    SimulatorStatus,
)
from app.services.payments.service import create_payment

logger = logging.getLogger(__name__)

CreatePayment = Callable[[str, PaymentCreate], Awaitable[Payment]]

# (upper bound of the cumulative draw, value)
_METHOD_WEIGHTS: tuple[tuple[float, str], ...] = (
    (0.35, "upi"),
    (0.60, "credit_card"),
    (0.80, "debit_card"),
    (0.90, "net_banking"),
    (1.00, "wallet"),
)
_STATUS_WEIGHTS: tuple[tuple[float, str], ...] = (
    (0.85, "success"),
    (0.97, "failed"),
    (1.00, "refunded"),
)


def _pick(weights: tuple[tuple[float, str], ...], draw: float) -> str:
    for bound, value in weights:
        if draw < bound:
            return value
    return weights[-1][1]


def random_method(rng: random.Random | None = None) -> str:
    """UPI 35%, credit 25%, debit 20%, net banking 10%, wallet 10%."""
    return _pick(_METHOD_WEIGHTS, (rng or random).random())


def random_status(rng: random.Random | None = None) -> str:
    """Success 85%, failed 12%, refunded 3%."""
    return _pick(_STATUS_WEIGHTS, (rng or random).random())


def random_amount(rng: random.Random | None = None) -> int:
    """10..9999, skewed towards small amounts."""
    r = (rng or random).random()
    return math.floor(10 + (r**2) * 9990)


def random_payment(rng: random.Random | None = None) -> PaymentCreate:
    return PaymentCreate(
        amount=random_amount(rng),
        method=random_method(rng),  # type: ignore[arg-type]
        status=random_status(rng),  # type: ignore[arg-type]
    )


def interval_seconds(payments_per_minute: int) -> float:
    """Gap between payments, truncated to whole milliseconds."""
    return math.floor(60000 / payments_per_minute) / 1000


@dataclass
class Simulation:
    tenant_id: str
    payments_per_minute: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    payments_sent: int = 0
    task: asyncio.Task | None = None

    def status(self) -> SimulationStatus:
        runtime = datetime.now(timezone.utc) - self.started_at
        return SimulationStatus(
            tenant_id=self.tenant_id,
            payments_per_minute=self.payments_per_minute,
            payments_sent=self.payments_sent,
            started_at=self.started_at,
            runtime_minutes=int(runtime.total_seconds() // 60),
            is_running=self.task is not None and not self.task.done(),
        )


class PaymentSimulator:
    """Registry of running simulations keyed by tenant."""

    def __init__(
        self,
        create: CreatePayment | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._create = create or create_payment
        self._rng = rng or random.Random()
        self._simulations: dict[str, Simulation] = {}

    async def _run(self, sim: Simulation) -> None:
        gap = interval_seconds(sim.payments_per_minute)
        while True:
            await asyncio.sleep(gap)
            payment = random_payment(self._rng)
            try:
                await self._create(sim.tenant_id, payment)
            except Exception as e:
                logger.error("Failed to generate payment for %s: %s", sim.tenant_id, e)
                continue
            sim.payments_sent += 1
            logger.debug(
                "[%s] Generated payment #%d: %.0f (%s)",
                sim.tenant_id,
                sim.payments_sent,
                payment.amount,
                payment.method,
            )

    def start(self, tenant_id: str, payments_per_minute: int | None = None) -> Simulation:
        """Start (or restart) the producer for a tenant. Needs a running loop."""
        rate = payments_per_minute or settings.simulator_default_rate
        if rate < 1 or rate > settings.simulator_max_rate:
            raise ValidationError(
                f"paymentsPerMinute must be between 1 and {settings.simulator_max_rate}"
            )

        if tenant_id in self._simulations:
            logger.warning("Stopping existing simulation for %s", tenant_id)
            self.stop(tenant_id)

        sim = Simulation(tenant_id=tenant_id, payments_per_minute=rate)
        sim.task = asyncio.create_task(self._run(sim), name=f"simulator:{tenant_id}")
        self._simulations[tenant_id] = sim

        logger.info(
            "Started simulation for %s: %d payments/min (every %.3fs)",
            tenant_id,
            rate,
            interval_seconds(rate),
        )
        return sim

    def stop(self, tenant_id: str) -> bool:
        """Stop a tenant's producer. False if none was running."""
        sim = self._simulations.pop(tenant_id, None)
        if sim is None:
            logger.warning("No simulation running for %s", tenant_id)
            return False

        if sim.task is not None:
            sim.task.cancel()

        logger.info(
            "Stopped simulation for %s: generated %d payments in %d minutes",
            tenant_id,
            sim.payments_sent,
            sim.status().runtime_minutes,
        )
        return True

    async def stop_all(self) -> int:
        """Stop every producer and wait for the tasks to finish."""
        sims = list(self._simulations.values())
        for sim in sims:
            self.stop(sim.tenant_id)
        tasks = [sim.task for sim in sims if sim.task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        return len(sims)

    def status(self) -> SimulatorStatus:
        items = [sim.status() for sim in self._simulations.values()]
        return SimulatorStatus(active_simulations=len(items), simulations=items)


# Singleton
_simulator: PaymentSimulator | None = None


def get_simulator() -> PaymentSimulator:
    """Get or create the singleton simulator."""
    global _simulator
    if _simulator is None:
        _simulator = PaymentSimulator()
    return _simulator


def reset_simulator() -> None:
    """Reset the singleton (for testing)."""
    global _simulator
    _simulator = None
