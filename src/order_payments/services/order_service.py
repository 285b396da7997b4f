"""Checkout: pending order creation and order lookups."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from order_payments.models import Order, OrderItem, OrderStatus, Product, User
from order_payments.models.base import utcnow
from order_payments.services.settings_store import SettingsStore
from order_payments.services.state_machine import InvalidTransitionError, OrderStateMachine

logger = logging.getLogger(__name__)

MAX_REFERENCE_ATTEMPTS = 3


class OrderCreationError(Exception):
    """Base error for checkout failures."""


class ProductUnavailableError(OrderCreationError):
    """Product is missing or no longer sold."""

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not available")


class InsufficientStockError(OrderCreationError):
    """Requested quantity exceeds stock."""

    def __init__(self, product_id: UUID, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class OrderValidationError(OrderCreationError):
    """Cart or customer failed a business rule."""


class OrderNotFoundError(LookupError):
    """No order with the given identifier."""


@dataclass(frozen=True)
class CartLine:
    product_id: UUID
    quantity: int


@dataclass(frozen=True)
class PendingOrder:
    """A persisted order waiting for payment."""

    order_id: UUID
    order_number: str
    transaction_ref: str
    total_cents: int


def generate_transaction_ref() -> str:
    """T2-<epoch ms>-<8 hex>."""
    return f"T2-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def generate_order_number() -> str:
    """ORD-<last 6 digits of epoch ms>-<3 digits>."""
    return f"ORD-{str(int(time.time() * 1000))[-6:]}-{secrets.randbelow(1000):03d}"


class OrderService:
    """Order creation and lookup.

    Prices are always re-read from the catalog; nothing the client sends
    besides product ids and quantities is trusted.
    """

    def __init__(self, session: AsyncSession, settings_store: SettingsStore):
        self.session = session
        self.settings_store = settings_store

    async def create_pending_order(
        self,
        customer_id: UUID,
        cart: Iterable[CartLine],
        referral_code: str | None = None,
        gateway: str | None = None,
    ) -> PendingOrder:
        """Persist a PENDING order with a fresh transaction reference.

        The order is committed before any payment provider is contacted.

        Raises:
            OrderValidationError: Empty cart, bad quantity, unknown customer,
                bulk limit exceeded or total below the minimum.
            ProductUnavailableError: Product missing or inactive.
            InsufficientStockError: Not enough stock.
        """
        lines = list(cart)
        if not lines:
            raise OrderValidationError("Cart is empty")
        for line in lines:
            if line.quantity <= 0:
                raise OrderValidationError(
                    f"Quantity for product {line.product_id} must be positive"
                )

        total_quantity = sum(line.quantity for line in lines)
        max_quantity = await self.settings_store.max_bulk_order_qty()
        if total_quantity > max_quantity:
            raise OrderValidationError(
                f"Order quantity {total_quantity} exceeds the maximum of {max_quantity}"
            )

        customer = await self.session.get(User, customer_id)
        if customer is None:
            raise OrderValidationError(f"Unknown customer {customer_id}")

        # Snapshot prices as plain values; rollbacks below expire ORM objects
        priced: list[tuple[UUID, int, int, str]] = []
        for line in lines:
            product = await self.session.get(Product, line.product_id)
            if product is None or not product.is_active:
                raise ProductUnavailableError(line.product_id)
            if product.stock < line.quantity:
                raise InsufficientStockError(line.product_id, line.quantity, product.stock)
            priced.append((product.id, line.quantity, product.price_cents, product.name))

        subtotal = sum(quantity * price for _, quantity, price, _ in priced)
        min_total = await self.settings_store.min_order_amount_cents()
        if subtotal < min_total:
            raise OrderValidationError(
                f"Order total {subtotal} is below the minimum of {min_total}"
            )

        code = referral_code.strip() if referral_code else None

        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            order = Order(
                order_number=generate_order_number(),
                customer_id=customer_id,
                subtotal_cents=subtotal,
                discount_cents=0,
                total_cents=subtotal,
                status=OrderStatus.PENDING.value,
                transaction_ref=generate_transaction_ref(),
                gateway=gateway,
                referral_code=code or None,
            )
            order.items = [
                OrderItem(
                    product_id=product_id,
                    quantity=quantity,
                    unit_price_cents=price,
                    line_total_cents=quantity * price,
                    description=name,
                )
                for product_id, quantity, price, name in priced
            ]
            self.session.add(order)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                if attempt == MAX_REFERENCE_ATTEMPTS:
                    raise
                logger.warning("Order reference collision, retrying (attempt %d)", attempt)
                continue

            logger.info(
                "Created pending order %s (%s) for %d cents",
                order.order_number,
                order.transaction_ref,
                order.total_cents,
            )
            return PendingOrder(
                order_id=order.id,
                order_number=order.order_number,
                transaction_ref=order.transaction_ref,
                total_cents=order.total_cents,
            )

        raise AssertionError("unreachable")

    async def get(self, order_id: UUID) -> Order | None:
        return await self.session.get(Order, order_id)

    async def get_by_transaction_ref(self, transaction_ref: str) -> Order | None:
        result = await self.session.execute(
            select(Order).where(Order.transaction_ref == transaction_ref)
        )
        return result.scalar_one_or_none()

    async def orders_by_status(
        self,
        status: OrderStatus | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """Newest orders first, optionally filtered by status."""
        query = select(Order).order_by(Order.created_at.desc()).limit(limit).offset(offset)
        if status is not None:
            query = query.where(Order.status == OrderStatus(status).value)
        result = await self.session.execute(query)
        return list(result.scalars())

    async def advance_status(self, order_id: UUID, to_status: OrderStatus | str) -> Order:
        """Apply a staff transition (fulfilment, cancellation, refund).

        Raises:
            OrderNotFoundError: No such order.
            InvalidTransitionError: Transition not allowed, including any
                attempt to mark an order PAID.
        """
        target = OrderStatus(to_status).value
        order = await self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")

        current = order.status
        OrderStateMachine.validate_staff_transition(current, target)

        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(status=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) != 1:
            await self.session.rollback()
            raise InvalidTransitionError(current, target, "order was modified concurrently")
        await self.session.commit()
        await self.session.refresh(order)

        logger.info("Order %s moved %s -> %s", order.order_number, current, target)
        return order
