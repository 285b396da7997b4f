"""API routes."""

from order_payments.api.routes.affiliate import router as affiliate_router
from order_payments.api.routes.health import router as health_router
from order_payments.api.routes.orders import router as orders_router
from order_payments.api.routes.settings import router as settings_router
from order_payments.api.routes.webhooks import router as webhooks_router

__all__ = [
    "affiliate_router",
    "health_router",
    "orders_router",
    "settings_router",
    "webhooks_router",
]
