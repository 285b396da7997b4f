"""FastAPI dependencies for dependency injection.

Long-lived collaborators (session factory, settings store, engines,
gateways) live on app.state and are set by create_app.
"""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from order_payments.services.commission import CommissionEngine
from order_payments.services.reconciliation import ReconciliationEngine
from order_payments.services.settings_store import SettingsStore


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_settings_store(request: Request) -> SettingsStore:
    return request.app.state.settings_store


def get_commission_engine(request: Request) -> CommissionEngine:
    return request.app.state.commission_engine


def get_reconciliation_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.reconciliation_engine


def _uuid_header(value: str | None, name: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name} format",
        )


async def get_customer_id(
    x_customer_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Authenticated customer, as forwarded by the auth proxy."""
    return _uuid_header(x_customer_id, "X-Customer-ID")


async def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Administrator making a settings change."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required",
        )
    return x_user_id


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
CustomerId = Annotated[UUID, Depends(get_customer_id)]
UserId = Annotated[str, Depends(get_user_id)]
Store = Annotated[SettingsStore, Depends(get_settings_store)]
Commissions = Annotated[CommissionEngine, Depends(get_commission_engine)]
Reconciliation = Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)]
