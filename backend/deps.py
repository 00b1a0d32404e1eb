"""
Shared FastAPI dependencies.

Routers import DB session, payment gateway and poller from this one place so
tests can swap them with app.dependency_overrides.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException

from config import settings
from database import get_db
from services.payment_gateway import PaymentGateway, SimulatedGateway, get_gateway
from services.payment_poller import PaymentPoller, get_poller

__all__ = [
    "get_db",
    "gateway_dep",
    "poller_dep",
    "require_simulated_gateway",
]


def gateway_dep() -> PaymentGateway:
    return get_gateway()


def poller_dep() -> PaymentPoller:
    return get_poller()


def require_simulated_gateway(
    gateway: PaymentGateway = Depends(gateway_dep),
) -> SimulatedGateway:
    """
    Guard for /simulate endpoints.

    Double-guard: simulation mode must be on AND the environment must not be
    production, and the active gateway must actually be the simulator.
    """
    if not settings.simulation_mode:
        raise HTTPException(status_code=403, detail="Simulation endpoints disabled")
    if settings.environment == "production":
        raise HTTPException(status_code=403, detail="Simulation explicitly blocked in production environment")
    if not isinstance(gateway, SimulatedGateway):
        raise HTTPException(status_code=409, detail="Active payment gateway is not the simulator")
    return gateway
