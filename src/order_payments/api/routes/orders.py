"""Checkout and order reporting endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request, status

from order_payments.api.dependencies import CustomerId, DbSession, Store
from order_payments.api.schemas import (
    ErrorResponse,
    OrderCreate,
    OrderCreated,
    OrderListResponse,
    OrderResponse,
)
from order_payments.models import OrderStatus, User
from order_payments.services.order_service import (
    CartLine,
    InsufficientStockError,
    OrderCreationError,
    OrderService,
    ProductUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

CURRENCY = "ETB"


@router.post(
    "",
    response_model=OrderCreated,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def create_order(
    request: Request,
    db: DbSession,
    store: Store,
    customer_id: CustomerId,
    payload: OrderCreate,
) -> OrderCreated:
    """Create a PENDING order and open a hosted checkout for it."""
    gateway = request.app.state.gateways.get(payload.gateway)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Gateway {payload.gateway} is not enabled",
        )

    service = OrderService(db, store)
    try:
        pending = await service.create_pending_order(
            customer_id,
            [CartLine(product_id=item.product_id, quantity=item.quantity) for item in payload.items],
            referral_code=payload.referral_code,
            gateway=gateway.name,
        )
    except (ProductUnavailableError, InsufficientStockError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except OrderCreationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    customer = await db.get(User, customer_id)
    first_name, _, last_name = ((customer.name if customer else None) or "").partition(" ")
    config = request.app.state.settings
    result = await gateway.initialize_payment(
        transaction_ref=pending.transaction_ref,
        amount_cents=pending.total_cents,
        currency=CURRENCY,
        customer={
            "email": (customer.email if customer else None) or "",
            "first_name": first_name,
            "last_name": last_name,
        },
        callback_url=f"{config.api_base_url}/api/v1/webhooks/{gateway.name}",
        return_url=f"{config.frontend_url}/checkout/success?order={pending.order_number}",
        description=f"Order {pending.order_number}",
    )
    if not result.success:
        # The order stays PENDING; the customer can retry payment
        logger.error(
            "Payment initialization failed for order %s: %s",
            pending.order_number,
            result.error,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=result.error or "Payment initialization failed",
        )

    return OrderCreated(
        order_id=pending.order_id,
        order_number=pending.order_number,
        transaction_ref=pending.transaction_ref,
        total_cents=pending.total_cents,
        checkout_url=result.checkout_url,
    )


@router.get("", response_model=OrderListResponse)
async def list_orders(
    db: DbSession,
    store: Store,
    status_filter: Annotated[OrderStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> OrderListResponse:
    """List orders, newest first."""
    orders = await OrderService(db, store).orders_by_status(status_filter, limit, offset)
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        limit=limit,
        offset=offset,
    )
