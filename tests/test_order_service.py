"""Tests for checkout and order lookups."""

import re
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from order_payments.models import Order, OrderItem, OrderStatus, Product
from order_payments.services import order_service as order_service_module
from order_payments.services.order_service import (
    CartLine,
    InsufficientStockError,
    OrderNotFoundError,
    OrderService,
    OrderValidationError,
    ProductUnavailableError,
    generate_order_number,
    generate_transaction_ref,
)
from order_payments.services.state_machine import InvalidTransitionError


@pytest.fixture
def service(session, settings_store) -> OrderService:
    return OrderService(session, settings_store)


class TestCreatePendingOrder:
    """Test pending order creation."""

    async def test_creates_pending_order(self, service, session, customer, product):
        pending = await service.create_pending_order(
            customer.id, [CartLine(product.id, 2)], referral_code=" AMB-HAN-4821 ", gateway="chapa"
        )

        assert pending.total_cents == 100000
        assert re.fullmatch(r"T2-\d{13}-[0-9a-f]{8}", pending.transaction_ref)
        assert re.fullmatch(r"ORD-\d{6}-\d{3}", pending.order_number)

        order = await session.get(Order, pending.order_id)
        assert order.status == OrderStatus.PENDING.value
        assert order.referral_code == "AMB-HAN-4821"
        assert order.gateway == "chapa"
        assert order.discount_cents == 0
        items = (await session.execute(select(OrderItem))).scalars().all()
        assert [(i.quantity, i.unit_price_cents, i.line_total_cents) for i in items] == [
            (2, 50000, 100000)
        ]

    async def test_references_are_unique(self, service, customer, product):
        refs = {
            (await service.create_pending_order(customer.id, [CartLine(product.id, 1)])).transaction_ref
            for _ in range(5)
        }
        assert len(refs) == 5

    async def test_empty_cart(self, service, customer):
        with pytest.raises(OrderValidationError):
            await service.create_pending_order(customer.id, [])

    async def test_non_positive_quantity(self, service, customer, product):
        with pytest.raises(OrderValidationError):
            await service.create_pending_order(customer.id, [CartLine(product.id, 0)])

    async def test_unknown_product(self, service, customer):
        with pytest.raises(ProductUnavailableError):
            await service.create_pending_order(customer.id, [CartLine(uuid4(), 1)])

    async def test_inactive_product(self, service, session, customer, product):
        product.is_active = False
        await session.commit()

        with pytest.raises(ProductUnavailableError):
            await service.create_pending_order(customer.id, [CartLine(product.id, 1)])

    async def test_insufficient_stock(self, service, customer, product):
        with pytest.raises(InsufficientStockError) as exc_info:
            await service.create_pending_order(customer.id, [CartLine(product.id, 101)])

        assert exc_info.value.available == 100

    async def test_bulk_limit(self, service, settings_store, customer, product):
        await settings_store.update("max_bulk_order_qty", 3)

        with pytest.raises(OrderValidationError):
            await service.create_pending_order(
                customer.id, [CartLine(product.id, 2), CartLine(product.id, 2)]
            )

    async def test_minimum_total(self, service, session, customer):
        cheap = Product(name="Sticker", price_cents=500, stock=10)
        session.add(cheap)
        await session.commit()

        with pytest.raises(OrderValidationError):
            await service.create_pending_order(customer.id, [CartLine(cheap.id, 1)])

    async def test_unknown_customer(self, service, product):
        with pytest.raises(OrderValidationError):
            await service.create_pending_order(uuid4(), [CartLine(product.id, 1)])

    async def test_reference_collision_retried(
        self, service, session, customer, product, make_order, monkeypatch
    ):
        await make_order(transaction_ref="T2-COLLIDE")
        refs = iter(["T2-COLLIDE", "T2-FRESH"])
        monkeypatch.setattr(order_service_module, "generate_transaction_ref", lambda: next(refs))

        pending = await service.create_pending_order(customer.id, [CartLine(product.id, 1)])

        assert pending.transaction_ref == "T2-FRESH"

    async def test_gives_up_after_repeated_collisions(
        self, service, session, customer, product, make_order, monkeypatch
    ):
        await make_order(transaction_ref="T2-COLLIDE")
        monkeypatch.setattr(order_service_module, "generate_transaction_ref", lambda: "T2-COLLIDE")

        with pytest.raises(IntegrityError):
            await service.create_pending_order(customer.id, [CartLine(product.id, 1)])

        count = await session.scalar(select(func.count()).select_from(Order))
        assert count == 1


class TestOrderQueries:
    async def test_get_by_transaction_ref(self, service, make_order):
        order = await make_order(transaction_ref="T2-LOOKUP")

        found = await service.get_by_transaction_ref("T2-LOOKUP")

        assert found.id == order.id
        assert await service.get_by_transaction_ref("T2-MISSING") is None

    async def test_orders_by_status(self, service, make_order):
        paid = await make_order(status=OrderStatus.PAID)
        await make_order(status=OrderStatus.PENDING)

        orders = await service.orders_by_status("PAID")

        assert [o.id for o in orders] == [paid.id]
        assert len(await service.orders_by_status()) == 2

    async def test_orders_by_unknown_status(self, service):
        with pytest.raises(ValueError):
            await service.orders_by_status("LOST")


class TestAdvanceStatus:
    async def test_ship_paid_order(self, service, make_order):
        order = await make_order(status=OrderStatus.PAID)

        await service.advance_status(order.id, OrderStatus.FULFILLING)
        updated = await service.advance_status(order.id, "SHIPPED")

        assert updated.status == "SHIPPED"

    async def test_staff_cannot_mark_paid(self, service, make_order, fetch_order):
        order = await make_order()

        with pytest.raises(InvalidTransitionError):
            await service.advance_status(order.id, OrderStatus.PAID)

        assert (await fetch_order(order.id)).status == "PENDING"

    async def test_terminal_state(self, service, make_order):
        order = await make_order(status=OrderStatus.DELIVERED)

        with pytest.raises(InvalidTransitionError):
            await service.advance_status(order.id, OrderStatus.REFUNDED)

    async def test_missing_order(self, service):
        with pytest.raises(OrderNotFoundError):
            await service.advance_status(uuid4(), OrderStatus.CANCELLED)


def test_transaction_ref_format():
    assert re.fullmatch(r"T2-\d{13}-[0-9a-f]{8}", generate_transaction_ref())


def test_order_number_format():
    for _ in range(20):
        assert re.fullmatch(r"ORD-\d{6}-\d{3}", generate_order_number())
