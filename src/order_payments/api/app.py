"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from order_payments.api.routes import (
    affiliate_router,
    health_router,
    orders_router,
    settings_router,
    webhooks_router,
)
from order_payments.config import Settings, configure_logging, get_settings
from order_payments.database import create_schema, get_engine, make_session_factory
from order_payments.gateways import ChapaGateway, GatewayAdapter, TelebirrGateway
from order_payments.services.commission import CommissionEngine
from order_payments.services.reconciliation import ReconciliationEngine
from order_payments.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    gateways: dict[str, GatewayAdapter] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Defaults to the environment.
        session_factory: Inject an existing factory (tests). When omitted an
            engine is created from settings.database_url and disposed on
            shutdown.
        gateways: Adapters keyed by route name. Defaults to Chapa and
            Telebirr built from settings.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine: AsyncEngine | None = None
    if session_factory is None:
        engine = get_engine(settings.database_url)
        session_factory = make_session_factory(engine)

    if gateways is None:
        gateways = {
            "chapa": ChapaGateway(settings.chapa),
            "telebirr": TelebirrGateway(settings.telebirr),
        }

    settings_store = SettingsStore(session_factory)
    commission_engine = CommissionEngine(settings_store)
    reconciliation_engine = ReconciliationEngine(
        session_factory, commission_engine, settings.reconciliation
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        if engine is not None and settings.auto_create_schema:
            await create_schema(engine)
        await settings_store.init()
        for name, gateway in gateways.items():
            if not gateway.webhook_configured:
                logger.warning("Webhook verification for %s is not configured", name)
        yield
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Order Payments API",
        description="Mobile-money payment reconciliation and ambassador commissions",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.gateways = gateways
    app.state.settings_store = settings_store
    app.state.commission_engine = commission_engine
    app.state.reconciliation_engine = reconciliation_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(webhooks_router, prefix="/api/v1")
    app.include_router(orders_router, prefix="/api/v1")
    app.include_router(affiliate_router, prefix="/api/v1")
    app.include_router(settings_router, prefix="/api/v1")

    return app
