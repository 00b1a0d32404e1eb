"""
SQLAlchemy ORM models for the QRIS Checkout backend.

Tables:
    users         — customers, with at most one outstanding order reference
    orders        — QRIS payment attempts, one per service tier purchase
    order_events  — audit trail of order status transitions

users.pending_order_id is a weak pointer into orders: it is set and cleared
explicitly by the lifecycle service and never cascades. Orders are never
deleted, only moved to a terminal status.
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey, Index,
)
from sqlalchemy.orm import relationship

from database import Base
from utils.clock import utcnow


class User(Base):
    """Customers who have attempted a purchase."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), unique=True, nullable=False, index=True)  # stored lower-cased
    created_at = Column(DateTime, default=utcnow)

    # Weak reference to the single active order; cleared on terminal status
    pending_order_id = Column(
        Integer,
        ForeignKey("orders.id", use_alter=True, name="fk_users_pending_order_id"),
        nullable=True,
    )

    # Relationships
    orders = relationship(
        "Order",
        back_populates="user",
        foreign_keys="Order.user_id",
        lazy="select",
    )


class Order(Base):
    """A single QRIS payment attempt for one service tier."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), unique=True, nullable=False, index=True)  # provider-visible id
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    service_type = Column(String(20), nullable=False)  # "portfolio" | "landing" | "custom"
    price = Column(Integer, nullable=False)  # IDR, server-side price table
    status = Column(String(20), nullable=False, default="pending")
    qr_code_url = Column(Text, nullable=False)
    qr_refreshed_at = Column(DateTime, nullable=True)
    expiry_time = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    transaction_id = Column(String(100), nullable=True)  # provider transaction id
    payment_type = Column(String(30), nullable=True)  # e.g. "qris"
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)  # optimistic lock, bumped on every UPDATE

    # Relationships
    user = relationship("User", back_populates="orders", foreign_keys=[user_id])
    events = relationship("OrderEvent", back_populates="order", lazy="select")

    __table_args__ = (
        # Expiry sweep: active orders ordered by deadline
        Index("ix_orders_status_expiry", "status", "expiry_time"),
        # Order history per user
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    # Concurrent writers of the same order fail with StaleDataError instead of
    # silently overwriting each other (e.g. a cancel racing a settlement)
    __mapper_args__ = {"version_id_col": version}


class OrderEvent(Base):
    """One row per order status transition (creation included)."""
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)  # null for the creation event
    to_status = Column(String(20), nullable=False)
    reason = Column(String(50), nullable=False)  # "created" | "provider" | "expired" | "user_cancel" | ...
    provider_status = Column(String(30), nullable=True)  # raw provider vocabulary, if any
    created_at = Column(DateTime, default=utcnow, index=True)

    # Relationships
    order = relationship("Order", back_populates="events")
