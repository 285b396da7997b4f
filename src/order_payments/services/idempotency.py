"""Idempotency guard for payment notifications.

Deduplication relies on the order row itself: an order whose status has
left PENDING has been processed. The PENDING -> PAID transition is a
conditional update, so concurrent deliveries for the same reference
collapse to exactly one winner.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from order_payments.models import Order, OrderStatus
from order_payments.models.base import utcnow


async def is_already_processed(session: AsyncSession, transaction_ref: str) -> bool:
    """True if an order with this reference exists and is no longer PENDING."""
    result = await session.execute(
        select(Order.id)
        .where(
            Order.transaction_ref == transaction_ref,
            Order.status != OrderStatus.PENDING.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def mark_paid(session: AsyncSession, order_id: UUID) -> bool:
    """Move an order from PENDING to PAID.

    Returns:
        True if this call made the transition, False if the order was not
        PENDING any more (another delivery won).
    """
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
        .values(status=OrderStatus.PAID.value, paid_at=utcnow(), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1
