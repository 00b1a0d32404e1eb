"""
Tests for ORM database models and the order state machine.

Tests: defaults, unique constraints, optimistic versioning, transition whitelist.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domain.enums import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    OrderStatus,
    can_transition,
    is_active,
    is_terminal,
)


def _order(user_id, order_id="ORDER-1", status="pending"):
    from db_models import Order

    now = datetime(2026, 3, 1, 9, 0, 0)
    return Order(
        order_id=order_id,
        user_id=user_id,
        service_type="portfolio",
        price=100_000,
        status=status,
        qr_code_url=f"https://qr.test/{order_id}",
        expiry_time=now + timedelta(minutes=15),
        created_at=now,
        updated_at=now,
    )


class TestUserModel:
    """Tests for the User ORM model."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_user_defaults(self, db_session):
        from db_models import User

        db_session.add(User(name="Rina", email="rina@example.com"))
        await db_session.commit()

        fetched = (await db_session.execute(select(User).where(User.email == "rina@example.com"))).scalar_one()
        assert fetched.created_at is not None
        assert fetched.pending_order_id is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_email_is_unique(self, db_session):
        from db_models import User

        db_session.add(User(name="Rina", email="rina@example.com"))
        await db_session.commit()
        db_session.add(User(name="Rina Again", email="rina@example.com"))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()


class TestOrderModel:
    """Tests for the Order ORM model."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_version_starts_and_increments(self, db_session, sample_user):
        order = _order(sample_user.id)
        db_session.add(order)
        await db_session.commit()
        assert order.version == 1

        order.status = "cancelled"
        await db_session.commit()
        assert order.version == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_id_is_unique(self, db_session, sample_user):
        user_id = sample_user.id
        db_session.add(_order(user_id))
        await db_session.commit()

        db_session.add(_order(user_id))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_events_relationship(self, db_session, sample_user):
        from db_models import OrderEvent
        from stores import order_store

        order = _order(sample_user.id)
        db_session.add(order)
        await db_session.flush()
        db_session.add(OrderEvent(order_id=order.id, from_status=None, to_status="pending", reason="created"))
        await db_session.commit()

        events = await order_store.list_events(db_session, order.id)
        assert len(events) == 1
        assert events[0].created_at is not None


class TestOrderStateMachine:

    @pytest.mark.unit
    def test_statuses_partition(self):
        assert ACTIVE_STATUSES | TERMINAL_STATUSES == set(OrderStatus)
        assert not ACTIVE_STATUSES & TERMINAL_STATUSES

    @pytest.mark.unit
    @pytest.mark.parametrize("target", ["processing", "success", "failed", "expired", "cancelled"])
    def test_pending_moves_anywhere_forward(self, target):
        assert can_transition("pending", target)

    @pytest.mark.unit
    @pytest.mark.parametrize("terminal", ["success", "failed", "expired", "cancelled"])
    @pytest.mark.parametrize("target", [s.value for s in OrderStatus])
    def test_terminal_statuses_are_final(self, terminal, target):
        assert not can_transition(terminal, target)

    @pytest.mark.unit
    def test_processing_cannot_return_to_pending(self):
        assert not can_transition("processing", "pending")

    @pytest.mark.unit
    def test_helpers(self):
        assert is_active("processing")
        assert not is_active("success")
        assert is_terminal("expired")
        assert not is_terminal("pending")
