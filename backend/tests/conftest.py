"""
Pytest configuration and shared fixtures for the QRIS Checkout tests.

Provides in-memory and file-backed SQLite sessions, a counting payment
gateway built on the simulator, and an HTTP client wired to the app with
dependency overrides.
"""
import asyncio
import os
from datetime import datetime
from typing import AsyncGenerator

# ── Test Configuration ───────────────────────────────────────────────
# Must be set before config.settings is first imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SIMULATION_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:3000")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import db_models  # noqa: F401  (registers tables on Base.metadata)
from database import Base
from services.payment_gateway import SimulatedGateway

# Fixed clock for lifecycle tests
T0 = datetime(2026, 3, 1, 9, 0, 0)


# ── Gateway Fakes ────────────────────────────────────────────────────


class FakeGateway(SimulatedGateway):
    """Simulator that counts calls and can be switched into a failure mode."""

    def __init__(self):
        super().__init__(qr_base_url="https://qr.test")
        self.charge_calls = 0
        self.status_calls = 0
        self.fail_with = None  # exception raised by every call while set
        self.delay = 0.0

    async def charge(self, order_id, amount, payer):
        self.charge_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return await super().charge(order_id, amount, payer)

    async def get_status(self, order_id):
        self.status_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return await super().get_status(order_id)


# ── Database Fixtures ────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory over an in-memory SQLite database.

    Uses StaticPool so every session shares the single in-memory connection.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory over a SQLite file, one connection per session.

    Used where several sessions must run side by side (concurrency, poller).
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkout-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# ── Mock Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


# ── Test Data Fixtures ───────────────────────────────────────────────


@pytest_asyncio.fixture
async def sample_user(db_session: AsyncSession):
    """A registered customer with no orders."""
    from services import user_service

    return await user_service.get_or_create_user(db_session, "Rina Putri", "rina@example.com")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession):
    from services import user_service

    return await user_service.get_or_create_user(db_session, "Budi Santoso", "budi@example.com")


# ── HTTP Client ──────────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway):
    """
    HTTP client for route tests.

    Overrides the DB session, gateway and poller dependencies; the app
    lifespan (DB init, reconciler) is not run.
    """
    from deps import gateway_dep, get_db, poller_dep
    from main import app
    from services.payment_poller import PaymentPoller

    poller = PaymentPoller(session_factory, lambda: gateway, interval_seconds=3600)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[gateway_dep] = lambda: gateway
    app.dependency_overrides[poller_dep] = lambda: poller

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    await poller.shutdown()
    app.dependency_overrides.clear()
