"""
Payment Routes — QRIS order lifecycle.

Endpoints:
    POST /api/payment/create                     — Create a pending order + QR code
    POST /api/payment/check                      — Reconcile an order with the provider
    POST /api/payment/check-pending              — Resume the customer's pending order
    POST /api/payment/cancel                     — Cancel the customer's pending order
    GET  /api/payment/orders/{order_id}/history  — Status transition audit trail
    POST /api/payment/watch                      — Start server-side polling for an order
    GET  /api/payment/watch/{order_id}           — Poller state + countdown
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from deps import gateway_dep, get_db, poller_dep
from domain.errors import NotFoundError, OrderNotFound
from models import (
    CancelOrderRequest,
    CancelOrderResponse,
    CheckPendingRequest,
    CheckPendingResponse,
    CheckStatusRequest,
    CheckStatusResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    OrderEventOut,
    OrderHistoryResponse,
    OrderOut,
    WatchOrderRequest,
    WatchStateResponse,
)
from services import order_service
from services.payment_gateway import PaymentGateway
from services.payment_poller import PaymentPoller, PollState
from stores import order_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payment"])


# ════════════════════════════════════════════════════════════════════
# Order lifecycle
# ════════════════════════════════════════════════════════════════════


@router.post("/create", response_model=CreateOrderResponse)
async def create_payment(
    req: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(gateway_dep),
):
    """
    Create a QRIS order for a service tier.

    The price comes from the server-side tier table. A customer with an
    active order gets 409 with that order in error.details.pendingOrder.
    """
    order = await order_service.create_order(
        db, req.user_id, req.service_type, gateway=gateway
    )
    return CreateOrderResponse(
        order=OrderOut.model_validate(order),
        qrCodeUrl=order.qr_code_url,
    )


@router.post("/check", response_model=CheckStatusResponse)
async def check_payment(
    req: CheckStatusRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(gateway_dep),
):
    """Provider outages still answer 200 with the last known status and an `error` note."""
    result = await order_service.check_status(db, req.order_id, gateway=gateway)
    return CheckStatusResponse(
        status=result.status,
        order=OrderOut.model_validate(result.order),
        error=result.provider_error,
    )


@router.post("/check-pending", response_model=CheckPendingResponse)
async def check_pending_payment(
    req: CheckPendingRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(gateway_dep),
):
    result = await order_service.check_pending(db, req.user_id, gateway=gateway)
    return CheckPendingResponse(
        hasPendingOrder=result.has_pending_order,
        order=OrderOut.model_validate(result.order) if result.order is not None else None,
        qrCodeUrl=result.qr_payload,
        expiresInSeconds=result.seconds_remaining,
        message=result.message,
    )


@router.post("/cancel", response_model=CancelOrderResponse)
async def cancel_payment(
    req: CancelOrderRequest,
    db: AsyncSession = Depends(get_db),
):
    """Idempotent: cancelling a terminal order succeeds without changing it."""
    result = await order_service.cancel_order(db, req.user_id, req.order_id)
    return CancelOrderResponse(message=result.message)


@router.get("/orders/{order_id}/history", response_model=OrderHistoryResponse)
async def get_order_history(
    order_id: str,
    db: AsyncSession = Depends(get_db),
):
    order, events = await order_service.get_order_history(db, order_id)
    return OrderHistoryResponse(
        orderId=order.order_id,
        events=[OrderEventOut.model_validate(e) for e in events],
    )


# ════════════════════════════════════════════════════════════════════
# Server-side polling
# ════════════════════════════════════════════════════════════════════


def _watch_response(state: PollState, poller: PaymentPoller) -> WatchStateResponse:
    return WatchStateResponse(
        orderId=state.order_id,
        status=state.status,
        polling=poller.is_polling(state.order_id),
        polls=state.polls,
        secondsRemaining=state.seconds_remaining(),
        lastError=state.last_error,
        lastCheckedAt=state.last_checked_at,
    )


@router.post("/watch", response_model=WatchStateResponse)
async def watch_payment(
    req: WatchOrderRequest,
    db: AsyncSession = Depends(get_db),
    poller: PaymentPoller = Depends(poller_dep),
):
    """Start polling the provider for this order until it reaches a terminal status."""
    order = await order_store.get_by_order_id(db, req.order_id)
    if order is None:
        raise OrderNotFound(req.order_id)
    state = poller.watch(order.order_id, order.status, order.expiry_time)
    return _watch_response(state, poller)


@router.get("/watch/{order_id}", response_model=WatchStateResponse)
async def get_watch_state(
    order_id: str,
    poller: PaymentPoller = Depends(poller_dep),
):
    state = poller.get_state(order_id)
    if state is None:
        raise NotFoundError("Watched order", order_id)
    return _watch_response(state, poller)
