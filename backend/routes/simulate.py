"""
Simulation Routes — drive the in-memory payment provider.

Only available when SIMULATION_MODE is on and the environment is not
production. Lets the frontend (and demos) complete a QRIS payment without a
real wallet:

    POST /simulate/transaction-status  {orderId, transactionStatus}

transactionStatus uses the provider's vocabulary ("settlement", "expire",
"deny", ...). The order itself only changes on the next status check.
"""
import logging

from fastapi import APIRouter, Depends

from deps import require_simulated_gateway
from domain.errors import OrderNotFound, ProviderRejected
from models import SimulateStatusRequest
from services.payment_gateway import SimulatedGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/simulate", tags=["simulation"])


@router.post("/transaction-status")
async def simulate_transaction_status(
    req: SimulateStatusRequest,
    gateway: SimulatedGateway = Depends(require_simulated_gateway),
):
    try:
        gateway.set_status(req.order_id, req.transaction_status)
    except ProviderRejected:
        raise OrderNotFound(req.order_id) from None
    return {
        "success": True,
        "orderId": req.order_id,
        "transactionStatus": req.transaction_status,
    }
