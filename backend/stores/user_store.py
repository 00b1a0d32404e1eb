"""
User Store — customers and their single pending-order reference.

The reference is only ever changed with conditional UPDATEs:
    claim   — set it if (and only if) it is currently NULL
    release — clear it if (and only if) it still points at the given order
so two writers can never overwrite each other's pending order.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import User

logger = logging.getLogger(__name__)


async def get(db: AsyncSession, user_id: int) -> Optional[User]:
    """Load a user by primary key, refreshing any cached instance."""
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User)
        .where(User.email == email)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def insert(db: AsyncSession, name: str, email: str) -> User:
    """Add a user and flush so the id is assigned. May raise IntegrityError."""
    user = User(name=name, email=email)
    db.add(user)
    await db.flush()
    return user


async def claim_pending_order(db: AsyncSession, user_id: int, order_pk: int) -> bool:
    """
    Point the user at `order_pk` if they hold no pending order.

    Returns False when another order already holds the slot.
    """
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.pending_order_id.is_(None))
        .values(pending_order_id=order_pk)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release_pending_order(db: AsyncSession, user_id: int, order_pk: int) -> bool:
    """
    Clear the user's reference if it still points at `order_pk`.

    Returns False when the reference was already cleared or moved on.
    """
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.pending_order_id == order_pk)
        .values(pending_order_id=None)
        .execution_options(synchronize_session=False)
    )
    released = result.rowcount == 1
    if released:
        logger.debug(f"Released pending order {order_pk} for user {user_id}")
    return released
