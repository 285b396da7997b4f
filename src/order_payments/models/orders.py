"""Order aggregate: header and snapshotted line items.

All monetary columns are integer minor-currency units (cents).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from order_payments.models.base import Base, TimestampMixin, utcnow

if TYPE_CHECKING:
    from order_payments.models.affiliate import User
    from order_payments.models.catalog import Product


class OrderStatus(str, Enum):
    """Order status values."""

    PENDING = "PENDING"
    PAID = "PAID"
    FULFILLING = "FULFILLING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Order(TimestampMixin, Base):
    """Persisted order header.

    transaction_ref is assigned at creation, before any gateway call, and is
    the correlation key for every webhook. It never changes afterwards.
    """

    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    customer_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    subtotal_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    discount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=OrderStatus.PENDING.value
    )
    transaction_ref: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    gateway: Mapped[str | None] = mapped_column(String(16), nullable=True)
    referral_code: Mapped[str | None] = mapped_column(String(40), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PAID', 'FULFILLING', 'SHIPPED', "
            "'DELIVERED', 'CANCELLED', 'REFUNDED')",
            name="orders_status_ck",
        ),
        CheckConstraint("subtotal_cents >= 0", name="orders_subtotal_ck"),
        CheckConstraint("discount_cents >= 0", name="orders_discount_ck"),
        CheckConstraint(
            "total_cents = subtotal_cents - discount_cents", name="orders_total_ck"
        ),
        Index("orders_by_status", "status", "created_at"),
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )
    customer: Mapped["User"] = relationship("User", foreign_keys=[customer_id])

    @validates("transaction_ref")
    def _freeze_transaction_ref(self, key: str, value: str) -> str:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError("transaction_ref is immutable once set")
        if not value:
            raise ValueError("transaction_ref is required")
        return value

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING.value


class OrderItem(Base):
    """Order line with the unit price captured at checkout."""

    __tablename__ = "order_items"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    line_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="order_items_quantity_ck"),
        CheckConstraint("unit_price_cents >= 0", name="order_items_price_ck"),
        CheckConstraint(
            "line_total_cents = quantity * unit_price_cents",
            name="order_items_line_total_ck",
        ),
        Index("order_items_by_order", "order_id"),
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")
