"""Payment reconciliation - webhook to paid order.

Turns an inbound gateway notification into at most one PENDING -> PAID
transition. Every step is a gate; a delivery that fails one leaves the
order untouched:

1. Signature over the raw body
2. Payload parsing and self-reported status
3. Idempotency check (order already past PENDING)
4. Server-to-server verification with the gateway
5. Order lookup by transaction reference
6. Amount comparison within tolerance
7. Conditional PENDING -> PAID update, committed on its own
8. Commission, when the order carries a referral code

The delivery deadline covers steps 1-7. Step 8 runs on whatever time is
left, and its failures, timeouts included, come back as commission_error on
a PROCESSED outcome. Orders left without a commission are picked up by
CommissionEngine.sweep_orphaned_commissions.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_payments.config import ReconciliationConfig
from order_payments.gateways.base import GatewayAdapter, MalformedNotificationError
from order_payments.models import Order, OrderStatus
from order_payments.services.commission import CommissionEngine, CommissionError
from order_payments.services.idempotency import is_already_processed, mark_paid

logger = logging.getLogger(__name__)


class WebhookCode(str, Enum):
    """Outcome codes returned to the gateway."""

    PROCESSED = "PROCESSED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class WebhookOutcome:
    """What happened to one delivery, and the HTTP status to answer with.

    2xx tells the gateway to stop retrying; 5xx asks it to retry later.
    """

    code: WebhookCode
    http_status: int
    message: str
    order_id: UUID | None = None
    commission_id: UUID | None = None
    commission_error: str | None = None

    @property
    def acknowledged(self) -> bool:
        return 200 <= self.http_status < 300

    @property
    def success(self) -> bool:
        return self.code in (WebhookCode.PROCESSED, WebhookCode.ALREADY_PROCESSED)


def within_tolerance(expected_cents: int, actual_cents: int, tolerance_cents: int) -> bool:
    return abs(expected_cents - actual_cents) <= tolerance_cents


class ReconciliationEngine:
    """Processes gateway webhooks.

    Args:
        session_factory: Each delivery opens its own sessions.
        commission_engine: Records commissions for referred orders.
        config: Amount tolerance and overall deadline.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        commission_engine: CommissionEngine,
        config: ReconciliationConfig | None = None,
    ):
        self.session_factory = session_factory
        self.commission_engine = commission_engine
        self.config = config or ReconciliationConfig()

    async def process_webhook(
        self,
        gateway: GatewayAdapter,
        raw_body: bytes,
        signature: str | None,
    ) -> WebhookOutcome:
        """Run one delivery through the pipeline. Never raises.

        The deadline fails the delivery only while the payment is still
        unsettled. Once the order is committed PAID the answer is PROCESSED;
        commission work gets whatever time is left and reports its own
        failures in commission_error.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.webhook_timeout_seconds
        try:
            outcome, referral_code = await asyncio.wait_for(
                self._settle_payment(gateway, raw_body, signature),
                timeout=self.config.webhook_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "%s webhook exceeded %.1fs deadline",
                gateway.name,
                self.config.webhook_timeout_seconds,
            )
            return WebhookOutcome(WebhookCode.TIMEOUT, 500, "Processing timed out")
        except Exception:
            logger.exception("Unexpected error processing %s webhook", gateway.name)
            return WebhookOutcome(WebhookCode.INTERNAL_ERROR, 500, "Internal error")

        if outcome.code is not WebhookCode.PROCESSED or not referral_code:
            return outcome
        return await self._apply_commission(outcome, referral_code, deadline - loop.time())

    async def _settle_payment(
        self,
        gateway: GatewayAdapter,
        raw_body: bytes,
        signature: str | None,
    ) -> tuple[WebhookOutcome, str | None]:
        """Steps 1-7. Returns the outcome and, once paid, the order's referral code."""
        # 1. Authenticity
        if not gateway.webhook_configured:
            logger.error("%s webhook secret not configured", gateway.name)
            return WebhookOutcome(WebhookCode.NOT_CONFIGURED, 500, "Webhook not configured"), None

        if not gateway.verify_signature(raw_body, signature):
            logger.warning("Invalid %s webhook signature", gateway.name)
            return WebhookOutcome(WebhookCode.INVALID_SIGNATURE, 401, "Invalid signature"), None

        # 2. Payload
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return (
                WebhookOutcome(WebhookCode.MALFORMED_PAYLOAD, 400, "Body is not valid JSON"),
                None,
            )
        if not isinstance(payload, dict):
            return (
                WebhookOutcome(WebhookCode.MALFORMED_PAYLOAD, 400, "Body is not a JSON object"),
                None,
            )
        try:
            notification = gateway.parse_notification(payload)
        except MalformedNotificationError as e:
            return WebhookOutcome(WebhookCode.MALFORMED_PAYLOAD, 400, str(e)), None

        ref = notification.transaction_ref
        if notification.status != gateway.success_status:
            logger.info(
                "%s webhook for %s reports status %r, no action",
                gateway.name,
                ref,
                notification.status,
            )
            return (
                WebhookOutcome(WebhookCode.ACKNOWLEDGED, 200, "Notification acknowledged"),
                None,
            )

        # 3. Idempotency
        async with self.session_factory() as session:
            if await is_already_processed(session, ref):
                logger.info("Transaction %s already processed", ref)
                return (
                    WebhookOutcome(
                        WebhookCode.ALREADY_PROCESSED, 200, "Transaction already processed"
                    ),
                    None,
                )

        # 4. Authoritative verification; no database session held across the call
        verification = await gateway.verify_transaction(ref)
        if not verification.verified or verification.amount_cents is None:
            if verification.retriable:
                logger.error(
                    "%s verification unavailable for %s: %s", gateway.name, ref, verification.error
                )
                return (
                    WebhookOutcome(
                        WebhookCode.GATEWAY_UNAVAILABLE,
                        500,
                        verification.error or "Gateway unavailable",
                    ),
                    None,
                )
            logger.warning(
                "%s verification failed for %s: %s (status=%s)",
                gateway.name,
                ref,
                verification.error,
                verification.status,
            )
            return (
                WebhookOutcome(
                    WebhookCode.VERIFICATION_FAILED,
                    400,
                    verification.error or "Payment verification failed",
                ),
                None,
            )

        async with self.session_factory() as session:
            # 5. Order
            result = await session.execute(select(Order).where(Order.transaction_ref == ref))
            order = result.scalar_one_or_none()
            if order is None:
                logger.error("No order for verified %s transaction %s", gateway.name, ref)
                return WebhookOutcome(WebhookCode.ORDER_NOT_FOUND, 400, "Order not found"), None
            if order.status != OrderStatus.PENDING.value:
                return (
                    WebhookOutcome(
                        WebhookCode.ALREADY_PROCESSED,
                        200,
                        "Transaction already processed",
                        order_id=order.id,
                    ),
                    None,
                )

            # 6. Amount
            if not within_tolerance(
                order.total_cents,
                verification.amount_cents,
                self.config.amount_tolerance_cents,
            ):
                logger.error(
                    "Amount mismatch for order %s (%s): expected %d cents, gateway reported %d",
                    order.order_number,
                    ref,
                    order.total_cents,
                    verification.amount_cents,
                )
                return (
                    WebhookOutcome(
                        WebhookCode.AMOUNT_MISMATCH,
                        400,
                        "Payment amount does not match order total",
                        order_id=order.id,
                    ),
                    None,
                )

            # 7. Transition
            order_id = order.id
            order_number = order.order_number
            referral_code = order.referral_code
            if not await mark_paid(session, order_id):
                await session.rollback()
                logger.info("Order %s was paid by a concurrent delivery", order_number)
                return (
                    WebhookOutcome(
                        WebhookCode.ALREADY_PROCESSED,
                        200,
                        "Transaction already processed",
                        order_id=order_id,
                    ),
                    None,
                )
            await session.commit()
            logger.info(
                "Order %s paid via %s (%s, %d cents)",
                order_number,
                gateway.name,
                ref,
                verification.amount_cents,
            )

        paid = WebhookOutcome(WebhookCode.PROCESSED, 200, "Payment verified", order_id=order_id)
        return paid, referral_code

    async def _apply_commission(
        self, outcome: WebhookOutcome, referral_code: str, time_left: float
    ) -> WebhookOutcome:
        """Step 8. The payment is already committed; nothing here changes that."""
        order_id = outcome.order_id
        try:
            commission_id = await asyncio.wait_for(
                self._record_commission(order_id, referral_code),
                timeout=max(time_left, 0),
            )
        except asyncio.TimeoutError:
            logger.error("Commission for order %s ran past the webhook deadline", order_id)
            return replace(outcome, commission_error="Commission recording timed out")
        except CommissionError as e:
            logger.warning("No commission for order %s: %s", order_id, e)
            return replace(outcome, commission_error=str(e))
        except SQLAlchemyError as e:
            logger.error("Commission write failed for order %s: %s", order_id, e)
            return replace(outcome, commission_error=str(e))
        except Exception as e:
            logger.exception("Unexpected error recording commission for order %s", order_id)
            return replace(outcome, commission_error=str(e) or type(e).__name__)
        return replace(outcome, commission_id=commission_id)

    async def _record_commission(self, order_id: UUID, referral_code: str) -> UUID:
        # Closing the session rolls back anything left uncommitted
        async with self.session_factory() as session:
            referral = await self.commission_engine.record_commission(
                session, order_id, referral_code
            )
            await session.commit()
            return referral.id
