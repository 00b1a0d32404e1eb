"""
Payment Poller — interval-driven status checks for in-flight payments.

The server-side counterpart of the checkout modal's "check every 15 seconds"
timer. Each watched order gets one asyncio task that:
    - sleeps `interval_seconds`
    - runs order_service.check_status() in a fresh DB session
    - stops for good once a terminal status is observed

At most one check per order is in flight: poll_once() holds a per-order lock
and an overlapping call returns the last known state without touching the
provider. The countdown shown to the customer is derived from the order's
expiry time, independently of polling.

Finished states (terminal status) stay readable for `retention_seconds` so
the UI can pick up the outcome, then prune() drops them. Orders that turn
out not to exist are never retained.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from domain.enums import is_terminal
from domain.errors import OrderNotFound
from services import order_service
from services.payment_gateway import PaymentGateway
from utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PollState:
    """What the presentation layer needs to render a payment in progress."""

    order_id: str
    status: str
    expiry_time: Optional[datetime] = None
    polls: int = 0
    last_error: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    missing: bool = False
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.missing or is_terminal(self.status)

    def seconds_remaining(self, now: Optional[datetime] = None) -> int:
        if self.expiry_time is None or self.done:
            return 0
        now = now or utcnow()
        return max(0, int((self.expiry_time - now).total_seconds()))


class PaymentPoller:
    """Supervises one polling task per watched order."""

    def __init__(
        self,
        session_factory: Callable,
        gateway_provider: Callable[[], PaymentGateway],
        interval_seconds: float = 15.0,
        retention_seconds: float = 300.0,
    ):
        self._session_factory = session_factory
        self._gateway_provider = gateway_provider
        self._interval = interval_seconds
        self._retention = timedelta(seconds=retention_seconds)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._states: Dict[str, PollState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ── Public API ──────────────────────────────────────────────────

    def watch(self, order_id: str, status: str, expiry_time: Optional[datetime] = None) -> PollState:
        """
        Start polling an order (idempotent).

        Terminal orders are recorded but never polled.
        """
        self.prune()
        state = self._states.get(order_id)
        if state is None:
            state = PollState(order_id=order_id, status=status, expiry_time=expiry_time)
            self._states[order_id] = state

        if state.done:
            self._finish(state)
            return state
        if self.is_polling(order_id):
            return state

        self._tasks[order_id] = asyncio.create_task(
            self._run(order_id), name=f"payment-poll:{order_id}"
        )
        logger.info(f"  🔁 Polling {order_id} every {self._interval:g}s")
        return state

    def get_state(self, order_id: str) -> Optional[PollState]:
        self.prune()
        return self._states.get(order_id)

    def is_polling(self, order_id: str) -> bool:
        task = self._tasks.get(order_id)
        return task is not None and not task.done()

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop finished states older than the retention window. Returns how many were dropped."""
        now = now or utcnow()
        stale = [
            order_id
            for order_id, state in self._states.items()
            if state.finished_at is not None
            and now - state.finished_at >= self._retention
            and not self.is_polling(order_id)
        ]
        for order_id in stale:
            self._forget(order_id)
        return len(stale)

    async def poll_once(self, order_id: str) -> PollState:
        """Run one status check unless one is already in flight for this order."""
        self.prune()
        state = self._states.setdefault(order_id, PollState(order_id=order_id, status="pending"))
        lock = self._locks.setdefault(order_id, asyncio.Lock())

        if lock.locked():
            logger.debug(f"  Status check for {order_id} already in flight; skipped")
            return state

        async with lock:
            if state.done:
                return state
            try:
                async with self._session_factory() as db:
                    result = await order_service.check_status(
                        db, order_id, gateway=self._gateway_provider()
                    )
            except OrderNotFound:
                state.missing = True
                state.last_error = "Order not found"
                self._forget(order_id)
                return state

            state.polls += 1
            state.status = result.status
            state.expiry_time = result.order.expiry_time
            state.last_error = result.provider_error
            state.last_checked_at = utcnow()
            if state.done:
                self._finish(state)

        return state

    async def stop(self, order_id: str) -> None:
        task = self._tasks.pop(order_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def shutdown(self) -> None:
        """Cancel every polling task (app shutdown)."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Payment poller stopped ({len(tasks)} task(s) cancelled)")

    # ── Internals ───────────────────────────────────────────────────

    async def _run(self, order_id: str) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    state = await self.poll_once(order_id)
                except Exception as e:
                    logger.error(f"  Poll of {order_id} failed: {e}")
                    continue

                if state.done:
                    logger.info(f"  ✅ Polling finished for {order_id}: {state.status}")
                    break
        finally:
            if self._tasks.get(order_id) is asyncio.current_task():
                del self._tasks[order_id]
            self._locks.pop(order_id, None)


# ════════════════════════════════════════════════════════════════════
# Singleton
# ════════════════════════════════════════════════════════════════════

_poller: Optional[PaymentPoller] = None


def get_poller() -> PaymentPoller:
    """FastAPI dependency — process-wide poller."""
    global _poller
    if _poller is None:
        from config import settings
        from database import async_session
        from services.payment_gateway import get_gateway

        _poller = PaymentPoller(
            async_session,
            get_gateway,
            interval_seconds=settings.poll_interval_seconds,
            retention_seconds=settings.poll_state_retention_seconds,
        )
    return _poller


async def shutdown_poller() -> None:
    global _poller
    if _poller is not None:
        await _poller.shutdown()
        _poller = None
