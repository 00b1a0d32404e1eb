"""
User Routes

Endpoints:
    POST /api/users/create            — Look up or register a customer by email
    GET  /api/users/{user_id}/orders  — Customer's recent orders
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from deps import get_db
from models import CreateUserRequest, OrderOut, UserOrdersResponse, UserOut, UserResponse
from services import order_service, user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("/create", response_model=UserResponse)
async def create_user(
    req: CreateUserRequest,
    db: AsyncSession = Depends(get_db),
):
    """Idempotent by email: an existing customer is returned unchanged."""
    user = await user_service.get_or_create_user(db, name=req.name, email=req.email)
    return UserResponse(user=UserOut.model_validate(user))


@router.get("/{user_id}/orders", response_model=UserOrdersResponse)
async def get_user_orders(
    user_id: int,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    orders = await order_service.list_user_orders(db, user_id, limit=limit)
    return UserOrdersResponse(orders=[OrderOut.model_validate(o) for o in orders])
