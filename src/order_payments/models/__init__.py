"""ORM models."""

from order_payments.models.base import Base, TimestampMixin
from order_payments.models.catalog import Product
from order_payments.models.orders import Order, OrderItem, OrderStatus
from order_payments.models.affiliate import (
    AmbassadorApplication,
    AmbassadorReferral,
    ApplicationStatus,
    User,
)
from order_payments.models.settings import SystemSetting

__all__ = [
    "Base",
    "TimestampMixin",
    "Product",
    "Order",
    "OrderItem",
    "OrderStatus",
    "User",
    "AmbassadorApplication",
    "AmbassadorReferral",
    "ApplicationStatus",
    "SystemSetting",
]
