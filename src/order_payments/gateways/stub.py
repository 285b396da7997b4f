"""Stub gateway for local development and testing.

Signs and verifies like Chapa (HMAC-SHA256) and answers verification
queries from an in-memory table instead of the network.
"""

from __future__ import annotations

import json
from typing import Any

from order_payments.gateways.base import (
    InitializationResult,
    MalformedNotificationError,
    Notification,
    VerificationResult,
)
from order_payments.gateways.chapa import sign_hmac_sha256, verify_hmac_signature


class StubGateway:
    """In-memory gateway.

    In production this is replaced by ChapaGateway or TelebirrGateway.
    """

    name = "stub"
    success_status = "success"
    signature_header = "X-Stub-Signature"

    def __init__(self, webhook_secret: str = "stub-webhook-secret"):
        self.webhook_secret = webhook_secret
        self._transactions: dict[str, dict[str, Any]] = {}
        self._unavailable = False
        self.verify_calls: list[str] = []

    @property
    def webhook_configured(self) -> bool:
        return bool(self.webhook_secret)

    def verify_signature(
        self,
        raw_payload: bytes,
        signature: str | None,
        secret: str | None = None,
    ) -> bool:
        return verify_hmac_signature(raw_payload, signature, secret or self.webhook_secret)

    def parse_notification(self, payload: dict[str, Any]) -> Notification:
        ref = payload.get("tx_ref")
        if not ref or not isinstance(ref, str):
            raise MalformedNotificationError("notification has no tx_ref")
        return Notification(transaction_ref=ref, status=str(payload.get("status", "")), raw=payload)

    async def verify_transaction(self, transaction_ref: str) -> VerificationResult:
        self.verify_calls.append(transaction_ref)
        if self._unavailable:
            return VerificationResult.unavailable("Stub gateway unavailable")

        record = self._transactions.get(transaction_ref)
        if record is None:
            return VerificationResult.rejected("Transaction not found")
        if record["status"] != self.success_status:
            return VerificationResult.rejected(
                "Payment not confirmed by gateway", status=record["status"]
            )
        return VerificationResult(
            verified=True,
            amount_cents=record["amount_cents"],
            status=record["status"],
        )

    async def initialize_payment(self, *, transaction_ref: str, **kwargs: Any) -> InitializationResult:
        self._transactions.setdefault(
            transaction_ref,
            {"amount_cents": kwargs.get("amount_cents", 0), "status": "pending"},
        )
        return InitializationResult(
            success=True, checkout_url=f"https://checkout.stub.local/{transaction_ref}"
        )

    # Simulation helpers

    def register_transaction(
        self, transaction_ref: str, amount_cents: int, status: str = "success"
    ) -> None:
        """Record what the provider would report for a transaction."""
        self._transactions[transaction_ref] = {"amount_cents": amount_cents, "status": status}

    def simulate_outage(self, unavailable: bool = True) -> None:
        """Make verification fail as if the provider timed out."""
        self._unavailable = unavailable

    def sign(self, raw_payload: bytes) -> str:
        return sign_hmac_sha256(raw_payload, self.webhook_secret)

    def build_webhook(self, transaction_ref: str, status: str = "success", **extra: Any) -> tuple[bytes, str]:
        """Return (body, signature) for a webhook delivery."""
        body = json.dumps({"tx_ref": transaction_ref, "status": status, **extra}).encode("utf-8")
        return body, self.sign(body)
