"""Tests for the webhook reconciliation pipeline.

Tests verify:
1. A verified payment moves PENDING -> PAID exactly once
2. Unsigned or tampered deliveries change nothing
3. Amount tolerance boundary (+-10 cents accepted, +-11 rejected)
4. Gateway faults ask for a retry, genuine failures do not
5. Commission problems never undo a payment
6. Concurrent duplicate deliveries produce one transition and one commission
"""

import asyncio
import json

import httpx
import pytest
from hypothesis import given, strategies as st
from sqlalchemy import func, select

from order_payments.config import GatewayConfig, ReconciliationConfig
from order_payments.gateways import ChapaGateway, StubGateway
from order_payments.gateways.chapa import sign_hmac_sha256
from order_payments.models import AmbassadorReferral, OrderStatus, SystemSetting
from order_payments.services.reconciliation import (
    ReconciliationEngine,
    WebhookCode,
    within_tolerance,
)


async def _referral_count(session_factory) -> int:
    async with session_factory() as s:
        return await s.scalar(select(func.count()).select_from(AmbassadorReferral))


class TestHappyPath:
    async def test_verified_payment_marks_order_paid(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(total_cents=100000, transaction_ref="TX-1")
        stub_gateway.register_transaction("TX-1", 100000)
        body, signature = stub_gateway.build_webhook("TX-1")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert outcome.http_status == 200
        assert outcome.order_id == order.id
        paid = await fetch_order(order.id)
        assert paid.status == OrderStatus.PAID.value
        assert paid.paid_at is not None

    async def test_referred_order_records_commission(
        self, reconciliation_engine, stub_gateway, make_order, ambassador, session_factory
    ):
        await make_order(total_cents=100000, transaction_ref="TX-2", referral_code="AMB-HAN-4821")
        stub_gateway.register_transaction("TX-2", 100000)
        body, signature = stub_gateway.build_webhook("TX-2")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert outcome.commission_id is not None
        assert outcome.commission_error is None
        async with session_factory() as s:
            referral = await s.get(AmbassadorReferral, outcome.commission_id)
            assert referral.commission_cents == 5000
            assert referral.ambassador_id == ambassador.id


class TestIdempotence:
    async def test_redelivery_is_a_no_op(
        self, reconciliation_engine, stub_gateway, make_order, ambassador, session_factory
    ):
        await make_order(transaction_ref="TX-3", referral_code="AMB-HAN-4821")
        stub_gateway.register_transaction("TX-3", 100000)
        body, signature = stub_gateway.build_webhook("TX-3")

        first = await reconciliation_engine.process_webhook(stub_gateway, body, signature)
        second = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert first.code == WebhookCode.PROCESSED
        assert second.code == WebhookCode.ALREADY_PROCESSED
        assert second.http_status == 200
        assert await _referral_count(session_factory) == 1
        # The duplicate is answered before the gateway is asked again
        assert stub_gateway.verify_calls == ["TX-3"]

    async def test_order_past_paid_is_already_processed(
        self, reconciliation_engine, stub_gateway, make_order
    ):
        await make_order(transaction_ref="TX-4", status=OrderStatus.SHIPPED)
        stub_gateway.register_transaction("TX-4", 100000)
        body, signature = stub_gateway.build_webhook("TX-4")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.ALREADY_PROCESSED

    async def test_concurrent_duplicates_pay_once(
        self, session_factory, commission_engine, make_order, ambassador, fetch_order
    ):
        """Both deliveries pass the idempotency check before either writes."""

        class BarrierGateway(StubGateway):
            def __init__(self, parties: int):
                super().__init__()
                self.parties = parties
                self.arrived = 0
                self.release = asyncio.Event()

            async def verify_transaction(self, transaction_ref):
                result = await super().verify_transaction(transaction_ref)
                self.arrived += 1
                if self.arrived >= self.parties:
                    self.release.set()
                await asyncio.wait_for(self.release.wait(), timeout=5)
                return result

        gateway = BarrierGateway(parties=2)
        engine = ReconciliationEngine(session_factory, commission_engine, ReconciliationConfig())
        order = await make_order(transaction_ref="TX-5", referral_code="AMB-HAN-4821")
        gateway.register_transaction("TX-5", 100000)
        body, signature = gateway.build_webhook("TX-5")

        outcomes = await asyncio.gather(
            engine.process_webhook(gateway, body, signature),
            engine.process_webhook(gateway, body, signature),
        )

        codes = sorted(o.code.value for o in outcomes)
        assert codes == ["ALREADY_PROCESSED", "PROCESSED"]
        assert all(o.http_status == 200 for o in outcomes)
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value
        assert await _referral_count(session_factory) == 1


class TestAuthenticity:
    async def test_invalid_signature_rejected(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(transaction_ref="TX-6")
        stub_gateway.register_transaction("TX-6", 100000)
        body, _ = stub_gateway.build_webhook("TX-6")

        outcome = await reconciliation_engine.process_webhook(
            stub_gateway, body, sign_hmac_sha256(body, "attacker-secret")
        )

        assert outcome.code == WebhookCode.INVALID_SIGNATURE
        assert outcome.http_status == 401
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value
        assert stub_gateway.verify_calls == []

    async def test_missing_signature_rejected(self, reconciliation_engine, stub_gateway):
        body, _ = stub_gateway.build_webhook("TX-6")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, None)

        assert outcome.http_status == 401

    async def test_tampered_body_rejected(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(transaction_ref="TX-7")
        stub_gateway.register_transaction("TX-7", 100000)
        _, signature = stub_gateway.build_webhook("TX-7", status="failed")
        forged = json.dumps({"tx_ref": "TX-7", "status": "success"}).encode()

        outcome = await reconciliation_engine.process_webhook(stub_gateway, forged, signature)

        assert outcome.code == WebhookCode.INVALID_SIGNATURE
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value

    async def test_unconfigured_secret(self, reconciliation_engine):
        gateway = StubGateway(webhook_secret="")
        body = b'{"tx_ref":"TX-8","status":"success"}'

        outcome = await reconciliation_engine.process_webhook(gateway, body, "anything")

        assert outcome.code == WebhookCode.NOT_CONFIGURED
        assert outcome.http_status == 500


class TestPayload:
    async def test_malformed_json(self, reconciliation_engine, stub_gateway):
        body = b"{not json"
        outcome = await reconciliation_engine.process_webhook(
            stub_gateway, body, stub_gateway.sign(body)
        )
        assert outcome.code == WebhookCode.MALFORMED_PAYLOAD
        assert outcome.http_status == 400

    async def test_missing_reference(self, reconciliation_engine, stub_gateway):
        body = b'{"status":"success"}'
        outcome = await reconciliation_engine.process_webhook(
            stub_gateway, body, stub_gateway.sign(body)
        )
        assert outcome.code == WebhookCode.MALFORMED_PAYLOAD

    async def test_non_success_status_acknowledged(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(transaction_ref="TX-9")
        body, signature = stub_gateway.build_webhook("TX-9", status="failed")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.ACKNOWLEDGED
        assert outcome.http_status == 200
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value
        assert stub_gateway.verify_calls == []


class TestVerification:
    async def test_gateway_outage_asks_for_retry(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(transaction_ref="TX-10")
        stub_gateway.register_transaction("TX-10", 100000)
        stub_gateway.simulate_outage()
        body, signature = stub_gateway.build_webhook("TX-10")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.GATEWAY_UNAVAILABLE
        assert outcome.http_status == 500
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value

    async def test_self_reported_success_not_trusted(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(transaction_ref="TX-11")
        stub_gateway.register_transaction("TX-11", 100000, status="failed")
        body, signature = stub_gateway.build_webhook("TX-11")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.VERIFICATION_FAILED
        assert outcome.http_status == 400
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value

    async def test_unknown_order(self, reconciliation_engine, stub_gateway, caplog):
        stub_gateway.register_transaction("TX-GHOST", 100000)
        body, signature = stub_gateway.build_webhook("TX-GHOST")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.ORDER_NOT_FOUND
        assert outcome.http_status == 400
        assert "TX-GHOST" in caplog.text


class TestAmountTolerance:
    @pytest.mark.parametrize("delta", [-10, -1, 0, 1, 10])
    async def test_within_tolerance_accepted(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order, delta
    ):
        order = await make_order(total_cents=100000, transaction_ref="TX-TOL")
        stub_gateway.register_transaction("TX-TOL", 100000 + delta)
        body, signature = stub_gateway.build_webhook("TX-TOL")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value

    @pytest.mark.parametrize("delta", [-11, 11, -100000, 5000])
    async def test_outside_tolerance_rejected(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order, caplog, delta
    ):
        order = await make_order(total_cents=100000, transaction_ref="TX-TOL")
        stub_gateway.register_transaction("TX-TOL", 100000 + delta)
        body, signature = stub_gateway.build_webhook("TX-TOL")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.AMOUNT_MISMATCH
        assert outcome.http_status == 400
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value
        assert "expected 100000 cents" in caplog.text

    @given(
        expected=st.integers(min_value=0, max_value=10**9),
        delta=st.integers(min_value=-50, max_value=50),
    )
    def test_tolerance_is_symmetric(self, expected, delta):
        accepted = within_tolerance(expected, expected + delta, 10)
        assert accepted == within_tolerance(expected, expected - delta, 10)
        assert accepted == (abs(delta) <= 10)


class TestCommissionIsolation:
    async def test_self_referral_still_paid(
        self, reconciliation_engine, stub_gateway, make_order, ambassador, fetch_order,
        session_factory,
    ):
        order = await make_order(
            transaction_ref="TX-SELF", referral_code="AMB-HAN-4821", customer_id=ambassador.id
        )
        stub_gateway.register_transaction("TX-SELF", 100000)
        body, signature = stub_gateway.build_webhook("TX-SELF")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert outcome.commission_id is None
        assert "cannot earn commission" in outcome.commission_error
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value
        assert await _referral_count(session_factory) == 0

    async def test_invalid_code_still_paid(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(transaction_ref="TX-BADCODE", referral_code="AMB-NOPE")
        stub_gateway.register_transaction("TX-BADCODE", 100000)
        body, signature = stub_gateway.build_webhook("TX-BADCODE")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert outcome.commission_error is not None
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value

    async def test_out_of_range_setting_still_paid(
        self, reconciliation_engine, stub_gateway, make_order, ambassador, fetch_order,
        session, settings_store, session_factory,
    ):
        # Ambassador without an own rate falls back to a corrupt setting
        ambassador.commission_rate_bp = None
        row = await session.get(SystemSetting, "commission_rate_bp")
        row.value = "20000"
        await session.commit()
        settings_store.clear_cache()

        order = await make_order(transaction_ref="TX-RATE", referral_code="AMB-HAN-4821")
        stub_gateway.register_transaction("TX-RATE", 100000)
        body, signature = stub_gateway.build_webhook("TX-RATE")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert outcome.http_status == 200
        assert "out of range" in outcome.commission_error
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value
        assert await _referral_count(session_factory) == 0

    async def test_unexpected_commission_error_still_paid(
        self, reconciliation_engine, commission_engine, stub_gateway, make_order, ambassador,
        fetch_order, caplog,
    ):
        order = await make_order(transaction_ref="TX-CRASH", referral_code="AMB-HAN-4821")
        stub_gateway.register_transaction("TX-CRASH", 100000)

        async def crash(session, order_id, referral_code, referral_source="direct_link"):
            raise RuntimeError("ledger offline")

        commission_engine.record_commission = crash
        body, signature = stub_gateway.build_webhook("TX-CRASH")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert outcome.http_status == 200
        assert outcome.commission_error == "ledger offline"
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value
        assert "Unexpected error recording commission" in caplog.text


class TestFailureContainment:
    async def test_unexpected_error_is_internal(
        self, reconciliation_engine, stub_gateway, make_order, fetch_order
    ):
        order = await make_order(transaction_ref="TX-BOOM")

        async def explode(ref):
            raise RuntimeError("boom")

        stub_gateway.verify_transaction = explode
        body, signature = stub_gateway.build_webhook("TX-BOOM")

        outcome = await reconciliation_engine.process_webhook(stub_gateway, body, signature)

        assert outcome.code == WebhookCode.INTERNAL_ERROR
        assert outcome.http_status == 500
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value

    async def test_deadline(self, session_factory, commission_engine, make_order, fetch_order):
        gateway = StubGateway()
        order = await make_order(transaction_ref="TX-SLOW")

        async def hang(ref):
            await asyncio.sleep(5)

        gateway.verify_transaction = hang
        engine = ReconciliationEngine(
            session_factory,
            commission_engine,
            ReconciliationConfig(webhook_timeout_seconds=0.1),
        )
        body, signature = gateway.build_webhook("TX-SLOW")

        outcome = await engine.process_webhook(gateway, body, signature)

        assert outcome.code == WebhookCode.TIMEOUT
        assert outcome.http_status == 500
        assert (await fetch_order(order.id)).status == OrderStatus.PENDING.value

    async def test_slow_commission_does_not_fail_paid_order(
        self, session_factory, commission_engine, make_order, ambassador, fetch_order
    ):
        gateway = StubGateway()
        order = await make_order(transaction_ref="TX-SLOWCOM", referral_code="AMB-HAN-4821")
        gateway.register_transaction("TX-SLOWCOM", 100000)

        async def hang(session, order_id, referral_code, referral_source="direct_link"):
            await asyncio.sleep(5)

        commission_engine.record_commission = hang
        engine = ReconciliationEngine(
            session_factory,
            commission_engine,
            ReconciliationConfig(webhook_timeout_seconds=0.3),
        )
        body, signature = gateway.build_webhook("TX-SLOWCOM")

        outcome = await engine.process_webhook(gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert outcome.http_status == 200
        assert outcome.commission_error == "Commission recording timed out"
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value

        # Redelivery is acknowledged, not retried into a 500
        again = await engine.process_webhook(gateway, body, signature)
        assert again.code == WebhookCode.ALREADY_PROCESSED


class TestChapaEndToEnd:
    """TX-1: a 1000.00 ETB order paid through Chapa."""

    async def test_chapa_webhook_to_paid_order(
        self, session_factory, commission_engine, make_order, ambassador, fetch_order
    ):
        def chapa_api(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/transaction/verify/TX-1"
            return httpx.Response(
                200,
                json={
                    "message": "Payment details",
                    "status": "success",
                    "data": {
                        "status": "success",
                        "amount": "1000.00",
                        "currency": "ETB",
                        "tx_ref": "TX-1",
                    },
                },
            )

        gateway = ChapaGateway(
            GatewayConfig(
                name="chapa",
                base_url="https://api.chapa.test",
                secret_key="CHASECK_TEST",
                webhook_secret="chapa-webhook-secret",
            ),
            transport=httpx.MockTransport(chapa_api),
        )
        engine = ReconciliationEngine(session_factory, commission_engine, ReconciliationConfig())
        order = await make_order(
            total_cents=100000, transaction_ref="TX-1", referral_code="AMB-HAN-4821"
        )
        body = json.dumps({"tx_ref": "TX-1", "status": "success", "amount": "1.00"}).encode()
        signature = sign_hmac_sha256(body, "chapa-webhook-secret")

        outcome = await engine.process_webhook(gateway, body, signature)

        assert outcome.code == WebhookCode.PROCESSED
        assert (await fetch_order(order.id)).status == OrderStatus.PAID.value
        async with session_factory() as s:
            referral = await s.get(AmbassadorReferral, outcome.commission_id)
            assert referral.commission_cents == 5000

        again = await engine.process_webhook(gateway, body, signature)
        assert again.code == WebhookCode.ALREADY_PROCESSED
