"""Pytest fixtures for order payments tests."""

from __future__ import annotations

import itertools
from typing import AsyncGenerator, Awaitable, Callable
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from order_payments.config import ReconciliationConfig
from order_payments.database import create_schema, get_engine, make_session_factory
from order_payments.gateways import StubGateway
from order_payments.models import (
    AmbassadorApplication,
    Order,
    OrderStatus,
    Product,
    User,
)
from order_payments.services.commission import CommissionEngine
from order_payments.services.reconciliation import ReconciliationEngine
from order_payments.services.settings_store import SettingsStore

_order_numbers = itertools.count(1)


@pytest.fixture
def database_url(tmp_path) -> str:
    # File-backed so concurrent sessions see each other's commits
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with all tables."""
    engine = get_engine(database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for seeding and assertions. Seed helpers commit."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def settings_store(session_factory) -> SettingsStore:
    store = SettingsStore(session_factory)
    await store.init()
    return store


@pytest.fixture
def commission_engine(settings_store: SettingsStore) -> CommissionEngine:
    return CommissionEngine(settings_store)


@pytest.fixture
def stub_gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def reconciliation_engine(session_factory, commission_engine) -> ReconciliationEngine:
    return ReconciliationEngine(
        session_factory,
        commission_engine,
        ReconciliationConfig(amount_tolerance_cents=10, webhook_timeout_seconds=10),
    )


# =============================================================================
# Seed data
# =============================================================================


@pytest_asyncio.fixture
async def customer(session: AsyncSession) -> User:
    """A customer with no ambassador role."""
    user = User(email="abebe@example.com", name="Abebe Kebede", is_ambassador=False)
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def ambassador(session: AsyncSession) -> User:
    """An approved ambassador earning 500 bp."""
    user = User(
        email="hana@example.com",
        name="Hana Tesfaye",
        is_ambassador=True,
        ambassador_code="AMB-HAN-4821",
        commission_rate_bp=500,
    )
    session.add(user)
    await session.flush()
    session.add(AmbassadorApplication(user_id=user.id, status="APPROVED"))
    await session.commit()
    return user


@pytest_asyncio.fixture
async def product(session: AsyncSession) -> Product:
    item = Product(name="Tote bag", price_cents=50000, stock=100, is_active=True)
    session.add(item)
    await session.commit()
    return item


OrderFactory = Callable[..., Awaitable[Order]]


@pytest.fixture
def make_order(session: AsyncSession, customer: User) -> OrderFactory:
    """Insert an order directly, bypassing checkout."""

    async def _make(
        total_cents: int = 100000,
        transaction_ref: str | None = None,
        referral_code: str | None = None,
        customer_id: UUID | None = None,
        status: OrderStatus = OrderStatus.PENDING,
        gateway: str = "stub",
    ) -> Order:
        order = Order(
            order_number=f"ORD-TEST-{next(_order_numbers):05d}",
            customer_id=customer_id or customer.id,
            subtotal_cents=total_cents,
            discount_cents=0,
            total_cents=total_cents,
            status=status.value,
            transaction_ref=transaction_ref or f"T2-TEST-{uuid4().hex[:12]}",
            gateway=gateway,
            referral_code=referral_code,
        )
        session.add(order)
        await session.commit()
        return order

    return _make


@pytest.fixture
def fetch_order(session_factory) -> Callable[[UUID], Awaitable[Order]]:
    """Read an order through a fresh session, so no stale identity map."""

    async def _fetch(order_id: UUID) -> Order:
        async with session_factory() as s:
            return await s.get(Order, order_id)

    return _fetch
