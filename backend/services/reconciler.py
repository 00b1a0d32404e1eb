"""
Order Reconciler — background expiry sweep.

Runs as an asyncio task during the FastAPI app lifespan. Every
`reconcile_interval_seconds` it expires active orders whose 15-minute
window has passed and frees their owners' pending-order slots, so a
customer who simply closes the browser does not keep the slot forever.
"""
import asyncio
import logging
from typing import Callable, Optional

from config import settings
from database import async_session
from services import order_service
from utils.clock import utcnow

logger = logging.getLogger(__name__)

# Reconciler state
_task: Optional[asyncio.Task] = None
_is_running: bool = False
_runs: int = 0
_expired_total: int = 0
_errors_count: int = 0
_last_run_at = None


async def run_once(session_factory: Callable = async_session) -> int:
    """One sweep. Returns the number of orders expired."""
    global _runs, _expired_total, _last_run_at

    async with session_factory() as db:
        expired = await order_service.expire_overdue_orders(db)

    _runs += 1
    _expired_total += expired
    _last_run_at = utcnow()
    return expired


async def _run_loop(session_factory: Callable, interval: float):
    global _errors_count

    logger.info(f"Reconciler started (sweeping every {interval:g}s)")
    while _is_running:
        try:
            await run_once(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _errors_count += 1
            logger.error(f"Reconciler sweep failed: {e}", exc_info=True)
        await asyncio.sleep(interval)


async def start(session_factory: Callable = async_session, interval: Optional[float] = None):
    """Start the background sweep (no-op if already running)."""
    global _task, _is_running

    if _is_running:
        return
    _is_running = True
    _task = asyncio.create_task(
        _run_loop(session_factory, interval or settings.reconcile_interval_seconds),
        name="order-reconciler",
    )


async def stop():
    """Stop the background sweep and wait for it to exit."""
    global _task, _is_running

    _is_running = False
    if _task is not None:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
        _task = None
        logger.info("Reconciler stopped")


def get_status() -> dict:
    return {
        "running": _is_running,
        "runs": _runs,
        "expiredTotal": _expired_total,
        "errors": _errors_count,
        "lastRunAt": _last_run_at.isoformat() if _last_run_at else None,
    }
