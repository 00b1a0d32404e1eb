"""
Pydantic models for request/response validation.

Wire format is camelCase; Python attributes stay snake_case.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from datetime import datetime


class APIBase(BaseModel):
    """Shared base — allows construction by Python name or alias."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# ── Resources ───────────────────────────────────────────────────────

class OrderOut(APIBase):
    """Persisted order fields (wire-stable)."""
    order_id: str = Field(..., alias="orderId")
    user_id: int = Field(..., alias="userId")
    service_type: str = Field(..., alias="serviceType")
    price: int
    status: str
    qr_code_url: str = Field(..., alias="qrCodeUrl")
    expiry_time: Optional[datetime] = Field(None, alias="expiryTime")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    payment_type: Optional[str] = Field(None, alias="paymentType")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class UserOut(APIBase):
    id: int
    name: str
    email: str
    pending_order_id: Optional[int] = Field(None, alias="pendingOrder")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class OrderEventOut(APIBase):
    from_status: Optional[str] = Field(None, alias="fromStatus")
    to_status: str = Field(..., alias="toStatus")
    reason: str
    provider_status: Optional[str] = Field(None, alias="providerStatus")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


def serialize_order(order) -> dict[str, Any]:
    """ORM Order → camelCase JSON-ready dict."""
    return OrderOut.model_validate(order).model_dump(by_alias=True, mode="json")


# ── Users ───────────────────────────────────────────────────────────

class CreateUserRequest(APIBase):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)


class UserResponse(APIBase):
    success: bool = True
    user: UserOut


class UserOrdersResponse(APIBase):
    success: bool = True
    orders: List[OrderOut]


# ── Payment ─────────────────────────────────────────────────────────

class CreateOrderRequest(APIBase):
    user_id: int = Field(..., alias="userId")
    service_type: str = Field(..., alias="serviceType", min_length=1)


class CreateOrderResponse(APIBase):
    success: bool = True
    order: OrderOut
    qr_code_url: str = Field(..., alias="qrCodeUrl")


class CheckStatusRequest(APIBase):
    order_id: str = Field(..., alias="orderId", min_length=1)


class CheckStatusResponse(APIBase):
    success: bool = True
    status: str
    order: OrderOut
    error: Optional[str] = None


class CheckPendingRequest(APIBase):
    user_id: int = Field(..., alias="userId")


class CheckPendingResponse(APIBase):
    has_pending_order: bool = Field(..., alias="hasPendingOrder")
    order: Optional[OrderOut] = None
    qr_code_url: Optional[str] = Field(None, alias="qrCodeUrl")
    expires_in_seconds: Optional[int] = Field(None, alias="expiresInSeconds")
    message: Optional[str] = None


class CancelOrderRequest(APIBase):
    user_id: int = Field(..., alias="userId")
    order_id: str = Field(..., alias="orderId", min_length=1)


class CancelOrderResponse(APIBase):
    success: bool = True
    message: str


class OrderHistoryResponse(APIBase):
    success: bool = True
    order_id: str = Field(..., alias="orderId")
    events: List[OrderEventOut]


# ── Poller ──────────────────────────────────────────────────────────

class WatchOrderRequest(APIBase):
    order_id: str = Field(..., alias="orderId", min_length=1)


class WatchStateResponse(APIBase):
    order_id: str = Field(..., alias="orderId")
    status: str
    polling: bool
    polls: int
    seconds_remaining: int = Field(..., alias="secondsRemaining")
    last_error: Optional[str] = Field(None, alias="lastError")
    last_checked_at: Optional[datetime] = Field(None, alias="lastCheckedAt")


# ── Simulation ──────────────────────────────────────────────────────

class SimulateStatusRequest(APIBase):
    order_id: str = Field(..., alias="orderId", min_length=1)
    transaction_status: str = Field(..., alias="transactionStatus", min_length=1)
