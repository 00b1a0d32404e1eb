"""
Domain enums and the order state machine.

This module is the single source of truth for which status transitions are
legal. Everything else asks `can_transition()` instead of comparing strings.
"""

from enum import Enum
from typing import Dict, FrozenSet


class ServiceTier(str, Enum):
    PORTFOLIO = "portfolio"
    LANDING = "landing"
    CUSTOM = "custom"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Statuses that hold the user's single pending-order slot
ACTIVE_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
})

# Terminal statuses - no further transitions possible
TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.SUCCESS,
    OrderStatus.FAILED,
    OrderStatus.EXPIRED,
    OrderStatus.CANCELLED,
})

# Whitelist of transitions
ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PROCESSING,
        OrderStatus.SUCCESS,
        OrderStatus.FAILED,
        OrderStatus.EXPIRED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PROCESSING: frozenset({
        OrderStatus.SUCCESS,
        OrderStatus.FAILED,
        OrderStatus.EXPIRED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.SUCCESS: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def is_terminal(status: str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def is_active(status: str) -> bool:
    return OrderStatus(status) in ACTIVE_STATUSES


def can_transition(current: str, target: str) -> bool:
    """Check a status change against the whitelist."""
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]
