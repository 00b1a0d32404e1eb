"""
Order Lifecycle Service — QRIS order creation, status reconciliation, expiry.

Handles:
    1. Order creation (server-side price, provider charge, pending slot)
    2. Status checks against the payment provider
    3. Pending-order lookup with expiry and QR refresh
    4. User cancellation
    5. Batch expiry for the background reconciler

Rules:
    - A user holds at most one pending/processing order. The slot is the
      users.pending_order_id column, claimed with a compare-and-swap update;
      create / check-pending / cancel are additionally serialized per user
      inside this process.
    - Terminal orders (success, failed, expired, cancelled) never change
      status again. Every transition goes through _transition().
    - Orders are payable for ORDER_EXPIRY_WINDOW after creation, whatever
      the provider says afterwards.
    - Provider failures are fatal to create_order and absorbed everywhere
      else (last persisted state wins).
"""
import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, List, Optional, Tuple, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from db_models import Order, OrderEvent
from domain.constants import ORDER_EXPIRY_WINDOW, ORDER_ID_PREFIX, SERVICE_PRICES
from domain.enums import OrderStatus, ServiceTier, can_transition, is_active, is_terminal
from domain.errors import (
    DuplicateOrderId,
    GatewayError,
    InvalidTier,
    InvalidTransition,
    OrderAlreadyPending,
    OrderNotFound,
    OrderNotOwned,
    ProviderUnavailable,
    UserNotFound,
)
from models import serialize_order
from services import user_service
from services.payment_gateway import PayerInfo, PaymentGateway, map_provider_status
from stores import order_store, user_store
from utils.clock import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVIDER_UNVERIFIED = "Could not verify with payment provider"


# ════════════════════════════════════════════════════════════════════
# Results
# ════════════════════════════════════════════════════════════════════


@dataclass
class StatusCheck:
    order: Order
    status: str
    provider_status: Optional[str] = None
    provider_error: Optional[str] = None


@dataclass
class PendingCheck:
    has_pending_order: bool
    order: Optional[Order] = None
    qr_payload: Optional[str] = None
    seconds_remaining: Optional[int] = None
    message: Optional[str] = None


@dataclass
class CancelOutcome:
    order: Order
    cancelled: bool  # False when the order was already terminal
    message: str


# ════════════════════════════════════════════════════════════════════
# Helpers
# ════════════════════════════════════════════════════════════════════

# Locks disappear once no coroutine holds or waits on them
_user_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def _user_lock(user_id: int) -> asyncio.Lock:
    lock = _user_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _user_locks[user_id] = lock
    return lock


def price_for(service_type: str) -> Tuple[ServiceTier, int]:
    """Look up a tier and its price in the server-side table."""
    try:
        tier = ServiceTier(service_type)
    except ValueError:
        raise InvalidTier(service_type) from None
    return tier, SERVICE_PRICES[tier]


def generate_order_id(now: datetime) -> str:
    """ORDER-<epoch millis>-<random suffix>. Uniqueness is enforced by the store."""
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"{ORDER_ID_PREFIX}{millis}-{uuid.uuid4().hex[:7]}"


def seconds_until_expiry(order: Order, now: datetime) -> int:
    return max(0, int((order.expiry_time - now).total_seconds()))


async def _call_provider(call: Awaitable[T], what: str) -> T:
    """Await a gateway call under the configured timeout."""
    try:
        return await asyncio.wait_for(call, timeout=settings.provider_timeout_seconds)
    except asyncio.TimeoutError as e:
        raise ProviderUnavailable(f"Payment provider timed out during {what}") from e


async def _transition(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    reason: str,
    now: datetime,
    provider_status: Optional[str] = None,
) -> None:
    """Apply one state-machine step, record it, and free the user's slot on terminal states."""
    current = order.status
    if not can_transition(current, target):
        raise InvalidTransition(order.order_id, current, target.value)

    order.status = target.value
    order.updated_at = now
    await order_store.add_event(db, order, current, target.value, reason, now, provider_status)

    if is_terminal(target):
        await user_store.release_pending_order(db, order.user_id, order.id)

    logger.info(f"  Order {order.order_id}: {current} → {target.value} ({reason})")


async def _commit_transition(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    reason: str,
    now: datetime,
    provider_status: Optional[str] = None,
) -> Order:
    """
    _transition() + commit.

    If another writer changed the order first, the step is dropped and the
    stored order is returned instead.
    """
    pk, public_id = order.id, order.order_id
    try:
        await _transition(db, order, target, reason, now, provider_status)
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.info(f"  Order {public_id} changed concurrently; dropped {target.value} ({reason})")
        return await order_store.get(db, pk)
    return order


def _already_pending(order: Order) -> OrderAlreadyPending:
    return OrderAlreadyPending(order, details={"pendingOrder": serialize_order(order)})


# ════════════════════════════════════════════════════════════════════
# Create
# ════════════════════════════════════════════════════════════════════


async def create_order(
    db: AsyncSession,
    user_id: int,
    service_type: str,
    *,
    gateway: PaymentGateway,
    now: Optional[datetime] = None,
) -> Order:
    """
    Create a pending QRIS order for a user.

    Raises:
        UserNotFound, OrderAlreadyPending (with the existing order),
        InvalidTier, ProviderUnavailable, ProviderRejected, DuplicateOrderId
    """
    async with _user_lock(user_id):
        return await _create_order_locked(db, user_id, service_type, gateway, now or utcnow())


async def _create_order_locked(
    db: AsyncSession,
    user_id: int,
    service_type: str,
    gateway: PaymentGateway,
    now: datetime,
) -> Order:
    user = await user_store.get(db, user_id)
    if user is None:
        raise UserNotFound(user_id)

    # The session may be rolled back below; keep plain values
    payer = PayerInfo(name=user.name, email=user.email)
    uid = user.id
    pending_pk = user.pending_order_id

    if pending_pk is not None:
        existing = await order_store.get(db, pending_pk)
        if existing is not None and is_active(existing.status):
            if now <= existing.expiry_time:
                logger.info(f"  User {user_id} already has pending order {existing.order_id}")
                raise _already_pending(existing)
            existing = await _commit_transition(db, existing, OrderStatus.EXPIRED, "expired", now)
            if is_active(existing.status):
                raise _already_pending(existing)
        else:
            await user_store.release_pending_order(db, uid, pending_pk)
            await db.commit()
            logger.info(f"  Cleared stale pending reference for user {user_id}")

    tier, price = price_for(service_type)

    order = None
    order_id = ""
    for attempt in range(1, settings.order_id_max_attempts + 1):
        order_id = generate_order_id(now)
        # An id already in the store was charged before; never send it again
        if await order_store.get_by_order_id(db, order_id) is not None:
            logger.warning(f"  Order id {order_id} already exists (attempt {attempt}); regenerating")
            continue
        charge = await _call_provider(gateway.charge(order_id, price, payer), "charge")
        try:
            order = await order_store.insert(
                db,
                order_id=order_id,
                user_id=uid,
                service_type=tier.value,
                price=price,
                status=OrderStatus.PENDING.value,
                qr_code_url=charge.qr_payload,
                qr_refreshed_at=now,
                expiry_time=now + ORDER_EXPIRY_WINDOW,
                transaction_id=charge.transaction_id,
                created_at=now,
                updated_at=now,
            )
        except DuplicateOrderId:
            logger.warning(f"  Order id collision on {order_id} (attempt {attempt}); retrying")
            continue
        break

    if order is None:
        raise DuplicateOrderId(order_id)

    await order_store.add_event(db, order, None, order.status, "created", now)

    if not await user_store.claim_pending_order(db, uid, order.id):
        # Another writer filled the slot between our read and this update
        await _transition(db, order, OrderStatus.CANCELLED, "superseded", now)
        await db.commit()
        holder = await user_store.get(db, uid)
        winner = None
        if holder is not None and holder.pending_order_id is not None:
            winner = await order_store.get(db, holder.pending_order_id)
        logger.warning(f"  Order {order.order_id} lost the pending slot for user {uid}")
        raise _already_pending(winner or order)

    await db.commit()
    logger.info(
        f"  🧾 Order created: {order.order_id} ({tier.value}, IDR {price:,}) "
        f"for user {uid}, expires {order.expiry_time.isoformat()}"
    )
    return order


# ════════════════════════════════════════════════════════════════════
# Status check
# ════════════════════════════════════════════════════════════════════


async def check_status(
    db: AsyncSession,
    order_id: str,
    *,
    gateway: PaymentGateway,
    now: Optional[datetime] = None,
) -> StatusCheck:
    """
    Reconcile one order with the payment provider.

    Terminal orders short-circuit without a provider call. Provider errors
    are reported in `provider_error` and never change the stored status.
    """
    now = now or utcnow()
    order = await order_store.get_by_order_id(db, order_id)
    if order is None:
        raise OrderNotFound(order_id)

    if is_terminal(order.status):
        return StatusCheck(order=order, status=order.status)

    if now > order.expiry_time:
        order = await _commit_transition(db, order, OrderStatus.EXPIRED, "expired", now)
        return StatusCheck(order=order, status=order.status)

    try:
        provider = await _call_provider(gateway.get_status(order.order_id), "status check")
    except GatewayError as e:
        logger.warning(f"  Error checking {order_id} with payment provider: {e.message}")
        return StatusCheck(order=order, status=order.status, provider_error=PROVIDER_UNVERIFIED)

    target = map_provider_status(provider.transaction_status)
    if target is not None and target.value != order.status:
        if target is OrderStatus.SUCCESS:
            order.completed_at = now
            order.transaction_id = provider.transaction_id or order.transaction_id
            order.payment_type = provider.payment_type or order.payment_type
        order = await _commit_transition(
            db, order, target, "provider", now, provider_status=provider.transaction_status
        )

    return StatusCheck(order=order, status=order.status, provider_status=provider.transaction_status)


# ════════════════════════════════════════════════════════════════════
# Pending lookup
# ════════════════════════════════════════════════════════════════════


async def check_pending(
    db: AsyncSession,
    user_id: int,
    *,
    gateway: PaymentGateway,
    now: Optional[datetime] = None,
) -> PendingCheck:
    """
    Return the user's live pending order, healing stale or expired references.
    """
    async with _user_lock(user_id):
        now = now or utcnow()
        user = await user_store.get(db, user_id)
        if user is None:
            raise UserNotFound(user_id)

        if user.pending_order_id is None:
            return PendingCheck(has_pending_order=False)

        order = await order_store.get(db, user.pending_order_id)
        if order is None or not is_active(order.status):
            await user_store.release_pending_order(db, user.id, user.pending_order_id)
            await db.commit()
            logger.info(f"  Cleared stale pending reference for user {user_id}")
            return PendingCheck(has_pending_order=False)

        if now > order.expiry_time:
            order = await _commit_transition(db, order, OrderStatus.EXPIRED, "expired", now)
            message = "Payment has expired" if order.status == OrderStatus.EXPIRED.value else None
            return PendingCheck(has_pending_order=False, order=order, message=message)

        if _qr_is_stale(order, now):
            order = await _refresh_qr(db, order, gateway, now)
            if not is_active(order.status):
                return PendingCheck(has_pending_order=False, order=order)

        return PendingCheck(
            has_pending_order=True,
            order=order,
            qr_payload=order.qr_code_url,
            seconds_remaining=seconds_until_expiry(order, now),
        )


def _qr_is_stale(order: Order, now: datetime) -> bool:
    if not order.qr_code_url or order.qr_refreshed_at is None:
        return True
    age = (now - order.qr_refreshed_at).total_seconds()
    return age >= settings.qr_refresh_max_age_seconds


async def _refresh_qr(db: AsyncSession, order: Order, gateway: PaymentGateway, now: datetime) -> Order:
    """Best-effort: on any provider failure the cached payload stays."""
    try:
        provider = await _call_provider(gateway.get_status(order.order_id), "QR refresh")
    except GatewayError as e:
        logger.warning(f"  QR refresh failed for {order.order_id}, keeping cached payload: {e.message}")
        return order

    pk = order.id
    if provider.qr_payload:
        order.qr_code_url = provider.qr_payload
    order.qr_refreshed_at = now
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        return await order_store.get(db, pk)
    return order


# ════════════════════════════════════════════════════════════════════
# Cancel
# ════════════════════════════════════════════════════════════════════


async def cancel_order(
    db: AsyncSession,
    user_id: int,
    order_id: str,
    *,
    now: Optional[datetime] = None,
) -> CancelOutcome:
    """Cancel a user's active order. Terminal orders make this a no-op."""
    async with _user_lock(user_id):
        now = now or utcnow()
        user = await user_store.get(db, user_id)
        if user is None:
            raise UserNotFound(user_id)

        order = await order_store.get_by_order_id(db, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.user_id != user.id:
            raise OrderNotOwned(order_id)

        if order.status == OrderStatus.CANCELLED.value:
            return CancelOutcome(order=order, cancelled=False, message="Order already cancelled")
        if is_terminal(order.status):
            return CancelOutcome(order=order, cancelled=False, message=f"Order already {order.status}")

        order = await _commit_transition(db, order, OrderStatus.CANCELLED, "user_cancel", now)
        if order.status != OrderStatus.CANCELLED.value:
            return CancelOutcome(order=order, cancelled=False, message=f"Order already {order.status}")

        return CancelOutcome(order=order, cancelled=True, message="Order cancelled successfully")


# ════════════════════════════════════════════════════════════════════
# Batch expiry / queries
# ════════════════════════════════════════════════════════════════════


async def expire_overdue_orders(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Expire every active order past its deadline. Returns the number expired."""
    now = now or utcnow()
    overdue_pks = [o.id for o in await order_store.list_overdue(db, now)]
    expired = 0
    for pk in overdue_pks:
        # Reload each time: a dropped transition rolls back and expires the session
        order = await order_store.get(db, pk)
        if order is None or not is_active(order.status):
            continue
        order = await _commit_transition(db, order, OrderStatus.EXPIRED, "expired", now)
        if order.status == OrderStatus.EXPIRED.value:
            expired += 1
    if expired:
        logger.info(f"  ⏰ Expired {expired} overdue order(s)")
    return expired


async def list_user_orders(db: AsyncSession, user_id: int, limit: int = 20) -> List[Order]:
    await user_service.get_user(db, user_id)
    return await order_store.list_for_user(db, user_id, limit=limit)


async def get_order_history(db: AsyncSession, order_id: str) -> Tuple[Order, List[OrderEvent]]:
    order = await order_store.get_by_order_id(db, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order, await order_store.list_events(db, order.id)
