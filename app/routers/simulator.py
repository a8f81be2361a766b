"""
Simulator Router — control the fake payment producer.

Endpoints:
  POST /api/simulator/start     — Start generating payments for the tenant
  POST /api/simulator/stop      — Stop the tenant's simulation
  POST /api/simulator/stop-all  — Stop every simulation
  GET  /api/simulator/status    — Running simulations
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.models.payments import (
    SimulationsStopped,
    SimulationStarted,
    SimulationStopped,
    SimulatorStatus,
    StartSimulationRequest,
)
from app.services.payments.auth import require_tenant
from app.services.payments.simulator import get_simulator

router = APIRouter()


@router.post("/start")
async def start_simulation(
    body: StartSimulationRequest | None = None,
    tenant_id: str = Depends(require_tenant),
) -> SimulationStarted:
    rate = body.payments_per_minute if body else None
    sim = get_simulator().start(tenant_id, rate)
    return SimulationStarted(
        message="Simulation started",
        tenant_id=sim.tenant_id,
        payments_per_minute=sim.payments_per_minute,
        started_at=sim.started_at,
    )


@router.post("/stop")
async def stop_simulation(
    tenant_id: str = Depends(require_tenant),
) -> SimulationStopped:
    was_stopped = get_simulator().stop(tenant_id)
    return SimulationStopped(
        message="Simulation stopped" if was_stopped else "No simulation was running",
        tenant_id=tenant_id,
        was_stopped=was_stopped,
    )


@router.post("/stop-all")
async def stop_all_simulations() -> SimulationsStopped:
    count = await get_simulator().stop_all()
    return SimulationsStopped(message="All simulations stopped", count=count)


@router.get("/status")
async def simulator_status() -> SimulatorStatus:
    return get_simulator().status()
