"""Catalog product as seen by checkout. Owned by the catalog service."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from order_payments.models.base import Base, TimestampMixin


class Product(TimestampMixin, Base):
    """Sellable product with its current single-unit price."""

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="products_price_ck"),
        CheckConstraint("stock >= 0", name="products_stock_ck"),
    )
