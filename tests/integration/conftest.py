"""Integration test fixtures: the API over a file-backed SQLite database."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from order_payments.api.app import create_app
from order_payments.config import GatewayConfig, ReconciliationConfig, Settings
from order_payments.gateways import StubGateway


@pytest.fixture
def app_settings(database_url: str) -> Settings:
    return Settings(
        database_url=database_url,
        host="127.0.0.1",
        port=8080,
        debug=False,
        log_level="INFO",
        auto_create_schema=False,
        api_base_url="http://api.test",
        frontend_url="http://shop.test",
        chapa=GatewayConfig(name="chapa"),
        telebirr=GatewayConfig(name="telebirr"),
        reconciliation=ReconciliationConfig(amount_tolerance_cents=10, webhook_timeout_seconds=10),
    )


@pytest.fixture
def unconfigured_gateway() -> StubGateway:
    """Mounted as telebirr, with no webhook key."""
    return StubGateway(webhook_secret="")


@pytest_asyncio.fixture
async def app(
    app_settings: Settings,
    session_factory,
    stub_gateway: StubGateway,
    unconfigured_gateway: StubGateway,
) -> FastAPI:
    """App wired to the test database; stub_gateway answers as chapa."""
    app = create_app(
        app_settings,
        session_factory=session_factory,
        gateways={"chapa": stub_gateway, "telebirr": unconfigured_gateway},
    )
    # ASGITransport does not run the lifespan
    await app.state.settings_store.init()
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
