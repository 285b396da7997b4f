"""Ambassador commission recording and reporting.

A commission is recorded once per paid order that carries a referral code.
The rate is snapshotted from the ambassador at recording time. Whether the
money is withdrawable is derived at read time from the hold period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from order_payments.models import (
    AmbassadorApplication,
    AmbassadorReferral,
    ApplicationStatus,
    Order,
    OrderStatus,
    User,
)
from order_payments.models.base import as_utc, utcnow
from order_payments.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)


class CommissionError(Exception):
    """Base error for commission recording."""


class InvalidReferralCode(CommissionError):
    """The code does not belong to an eligible ambassador."""


class SelfReferralRejected(CommissionError):
    """The ambassador and the customer are the same user."""


class DuplicateCommission(CommissionError):
    """A commission already exists for the order."""


def compute_commission_cents(total_cents: int, rate_bp: int) -> int:
    """Commission in cents, rounded down: floor(total * rate / 10000)."""
    if total_cents < 0:
        raise ValueError("total_cents must not be negative")
    if not 0 <= rate_bp <= 10000:
        raise ValueError("rate_bp must be between 0 and 10000")
    return total_cents * rate_bp // 10000


@dataclass(frozen=True)
class ReferralCodeValidation:
    """Answer to "can a customer use this code at checkout?"."""

    valid: bool
    ambassador_id: UUID | None = None
    ambassador_name: str | None = None
    discount_percent: int = 0
    error: str | None = None


@dataclass(frozen=True)
class ReferralEarning:
    """One commission as shown in an ambassador's earnings."""

    referral_id: UUID
    order_id: UUID
    commission_cents: int
    commission_rate_bp: int
    created_at: datetime
    available_at: datetime
    status: str  # "pending" or "available"


@dataclass
class EarningsSummary:
    """Commission totals for one ambassador."""

    ambassador_id: UUID
    total_cents: int = 0
    pending_cents: int = 0
    available_cents: int = 0
    hold_days: int = 0
    referrals: list[ReferralEarning] = field(default_factory=list)


@dataclass
class SweepResult:
    """Result of recording commissions for orphaned paid orders."""

    orders_examined: int = 0
    commissions_recorded: int = 0
    orders_failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.orders_failed == 0


class CommissionEngine:
    """Records and reports ambassador commissions.

    The session is passed per call so that the caller controls the
    transaction the commission shares.
    """

    def __init__(self, settings_store: SettingsStore):
        self.settings_store = settings_store

    async def _find_ambassador(self, session: AsyncSession, referral_code: str) -> User:
        code = (referral_code or "").strip()
        if not code:
            raise InvalidReferralCode("Referral code is empty")

        result = await session.execute(select(User).where(User.ambassador_code == code))
        ambassador = result.scalar_one_or_none()
        if ambassador is None or not ambassador.is_ambassador:
            raise InvalidReferralCode(f"Unknown referral code: {code}")

        rejected = await session.execute(
            select(
                exists().where(
                    AmbassadorApplication.user_id == ambassador.id,
                    AmbassadorApplication.status == ApplicationStatus.REJECTED.value,
                )
            )
        )
        if rejected.scalar():
            raise InvalidReferralCode(f"Referral code is no longer active: {code}")
        return ambassador

    async def record_commission(
        self,
        session: AsyncSession,
        order_id: UUID,
        referral_code: str,
        referral_source: str = "direct_link",
    ) -> AmbassadorReferral:
        """Create the commission record for a paid order.

        The record is flushed, not committed.

        Raises:
            CommissionError: If the order does not exist or the rate is out of range.
            InvalidReferralCode: Unknown, non-ambassador or rejected code.
            SelfReferralRejected: The ambassador placed the order.
            DuplicateCommission: The order already has a commission.
        """
        order = await session.get(Order, order_id)
        if order is None:
            raise CommissionError(f"Order {order_id} not found")

        ambassador = await self._find_ambassador(session, referral_code)

        if ambassador.id == order.customer_id:
            logger.warning(
                "Self-referral rejected: ambassador %s on own order %s",
                ambassador.id,
                order.order_number,
            )
            raise SelfReferralRejected(
                f"Ambassador {ambassador.id} cannot earn commission on own order"
            )

        existing = await session.execute(
            select(AmbassadorReferral.id).where(AmbassadorReferral.order_id == order.id)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateCommission(f"Commission already recorded for order {order.id}")

        rate_bp = ambassador.commission_rate_bp
        if rate_bp is None:
            rate_bp = await self.settings_store.commission_rate_bp()
        if not 0 <= rate_bp <= 10000:
            raise CommissionError(f"Commission rate {rate_bp} bp is out of range")

        referral = AmbassadorReferral(
            ambassador_id=ambassador.id,
            customer_id=order.customer_id,
            order_id=order.id,
            referral_code_used=referral_code.strip(),
            referral_source=referral_source,
            commission_rate_bp=rate_bp,
            commission_cents=compute_commission_cents(order.total_cents, rate_bp),
        )
        session.add(referral)
        try:
            await session.flush()
        except IntegrityError as e:
            raise DuplicateCommission(
                f"Commission already recorded for order {order.id}"
            ) from e

        logger.info(
            "Commission %d cents (%d bp) recorded for ambassador %s on order %s",
            referral.commission_cents,
            rate_bp,
            ambassador.id,
            order.order_number,
        )
        return referral

    async def validate_referral_code(
        self, session: AsyncSession, referral_code: str
    ) -> ReferralCodeValidation:
        try:
            ambassador = await self._find_ambassador(session, referral_code)
        except InvalidReferralCode as e:
            return ReferralCodeValidation(valid=False, error=str(e))
        return ReferralCodeValidation(
            valid=True,
            ambassador_id=ambassador.id,
            ambassador_name=ambassador.name,
            discount_percent=await self.settings_store.customer_discount_percent(),
        )

    async def referrals_by_ambassador(
        self,
        session: AsyncSession,
        ambassador_id: UUID,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AmbassadorReferral]:
        """Most recent commissions first."""
        result = await session.execute(
            select(AmbassadorReferral)
            .where(AmbassadorReferral.ambassador_id == ambassador_id)
            .order_by(AmbassadorReferral.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars())

    async def earnings_summary(
        self,
        session: AsyncSession,
        ambassador_id: UUID,
        now: datetime | None = None,
    ) -> EarningsSummary:
        """Split an ambassador's commissions into pending and available."""
        now = as_utc(now or utcnow())
        hold_days = await self.settings_store.commission_hold_days()
        hold = timedelta(days=hold_days)

        result = await session.execute(
            select(AmbassadorReferral)
            .where(AmbassadorReferral.ambassador_id == ambassador_id)
            .order_by(AmbassadorReferral.created_at.desc())
        )

        summary = EarningsSummary(ambassador_id=ambassador_id, hold_days=hold_days)
        for referral in result.scalars():
            created_at = as_utc(referral.created_at)
            available_at = created_at + hold
            available = available_at <= now
            summary.total_cents += referral.commission_cents
            if available:
                summary.available_cents += referral.commission_cents
            else:
                summary.pending_cents += referral.commission_cents
            summary.referrals.append(
                ReferralEarning(
                    referral_id=referral.id,
                    order_id=referral.order_id,
                    commission_cents=referral.commission_cents,
                    commission_rate_bp=referral.commission_rate_bp,
                    created_at=created_at,
                    available_at=available_at,
                    status="available" if available else "pending",
                )
            )
        return summary

    async def find_orphaned_referrals(self, session: AsyncSession) -> list[Order]:
        """Paid orders with a referral code but no commission record."""
        result = await session.execute(
            select(Order)
            .where(
                Order.referral_code.is_not(None),
                Order.status.not_in(
                    [
                        OrderStatus.PENDING.value,
                        OrderStatus.CANCELLED.value,
                        OrderStatus.REFUNDED.value,
                    ]
                ),
                ~exists().where(AmbassadorReferral.order_id == Order.id),
            )
            .order_by(Order.created_at)
        )
        return list(result.scalars())

    async def sweep_orphaned_commissions(self, session: AsyncSession) -> SweepResult:
        """Record commissions the payment pipeline could not.

        Each order is committed on its own; one failure does not stop the
        sweep.
        """
        sweep = SweepResult()
        orders = await self.find_orphaned_referrals(session)
        # Detach what we need before rollbacks expire anything
        pending = [(order.id, order.order_number, order.referral_code) for order in orders]

        for order_id, order_number, referral_code in pending:
            sweep.orders_examined += 1
            try:
                await self.record_commission(session, order_id, referral_code or "")
                await session.commit()
                sweep.commissions_recorded += 1
            except Exception as e:
                await session.rollback()
                sweep.orders_failed += 1
                sweep.errors.append(
                    {
                        "order_id": str(order_id),
                        "order_number": order_number,
                        "error": str(e),
                        "type": type(e).__name__,
                    }
                )
                if isinstance(e, (CommissionError, SQLAlchemyError)):
                    logger.warning("Commission sweep skipped order %s: %s", order_number, e)
                else:
                    logger.exception("Unexpected error sweeping order %s", order_number)

        logger.info(
            "Commission sweep: %d examined, %d recorded, %d failed",
            sweep.orders_examined,
            sweep.commissions_recorded,
            sweep.orders_failed,
        )
        return sweep
