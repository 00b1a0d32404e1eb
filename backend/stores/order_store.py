"""
Order Store — durable record of orders and their status history.

Uniqueness of the provider-visible order id is enforced here by the
database, not by id generation: a collision surfaces as DuplicateOrderId.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order, OrderEvent
from domain.enums import ACTIVE_STATUSES
from domain.errors import DuplicateOrderId

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


async def get_by_order_id(db: AsyncSession, order_id: str) -> Optional[Order]:
    """Load by provider-visible id, refreshing any cached instance."""
    result = await db.execute(
        select(Order)
        .where(Order.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get(db: AsyncSession, order_pk: int) -> Optional[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_pk)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def insert(db: AsyncSession, **fields) -> Order:
    """
    Persist a new order and flush it.

    On an order_id collision the session is rolled back and
    DuplicateOrderId is raised; any other integrity error propagates.
    """
    order = Order(**fields)
    db.add(order)
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        if "order_id" in str(e.orig):
            raise DuplicateOrderId(fields.get("order_id", "")) from e
        raise
    return order


async def add_event(
    db: AsyncSession,
    order: Order,
    from_status: Optional[str],
    to_status: str,
    reason: str,
    at: datetime,
    provider_status: Optional[str] = None,
) -> OrderEvent:
    event = OrderEvent(
        order_id=order.id,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        provider_status=provider_status,
        created_at=at,
    )
    db.add(event)
    return event


async def list_for_user(db: AsyncSession, user_id: int, limit: int = 20) -> List[Order]:
    """Most recent orders first."""
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_events(db: AsyncSession, order_pk: int) -> List[OrderEvent]:
    result = await db.execute(
        select(OrderEvent)
        .where(OrderEvent.order_id == order_pk)
        .order_by(OrderEvent.created_at, OrderEvent.id)
    )
    return list(result.scalars().all())


async def list_overdue(db: AsyncSession, now: datetime, limit: int = 500) -> List[Order]:
    """Active orders whose expiry has passed."""
    result = await db.execute(
        select(Order)
        .where(Order.status.in_(_ACTIVE), Order.expiry_time < now)
        .order_by(Order.expiry_time)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def count_active_for_user(db: AsyncSession, user_id: int) -> int:
    """Number of pending/processing orders a user holds (should be 0 or 1)."""
    result = await db.execute(
        select(func.count(Order.id)).where(
            Order.user_id == user_id,
            Order.status.in_(_ACTIVE),
        )
    )
    return result.scalar() or 0
