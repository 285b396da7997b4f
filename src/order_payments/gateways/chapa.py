"""Chapa gateway adapter.

Webhooks are signed with HMAC-SHA256 over the raw request body using the
merchant's webhook secret. Transactions are confirmed with
GET /v1/transaction/verify/{tx_ref}, authenticated with the secret key.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any
from urllib.parse import quote

import httpx

from order_payments.config import GatewayConfig
from order_payments.gateways.base import (
    InitializationResult,
    MalformedNotificationError,
    Notification,
    VerificationResult,
    to_major_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)


def sign_hmac_sha256(raw_payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of raw_payload, the format Chapa sends."""
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


def verify_hmac_signature(raw_payload: bytes, signature: str | None, secret: str | None) -> bool:
    """Constant-time comparison of an HMAC-SHA256 hex signature."""
    if not signature or not secret:
        return False
    try:
        expected = sign_hmac_sha256(raw_payload, secret)
        return hmac.compare_digest(
            signature.strip().lower().encode("ascii"), expected.encode("ascii")
        )
    except (UnicodeError, TypeError, ValueError):
        return False


class ChapaGateway:
    """Chapa adapter.

    Args:
        config: Endpoint and credentials. secret_key authenticates outbound
            calls, webhook_secret authenticates inbound webhooks.
        transport: Optional httpx transport, for tests.
    """

    name = "chapa"
    success_status = "success"
    signature_header = "X-Chapa-Signature"

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._transport = transport

    @property
    def webhook_configured(self) -> bool:
        return bool(self.config.webhook_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            transport=self._transport,
        )

    def verify_signature(
        self,
        raw_payload: bytes,
        signature: str | None,
        secret: str | None = None,
    ) -> bool:
        return verify_hmac_signature(raw_payload, signature, secret or self.config.webhook_secret)

    def parse_notification(self, payload: dict[str, Any]) -> Notification:
        tx_ref = payload.get("tx_ref") or payload.get("trx_ref")
        if not tx_ref or not isinstance(tx_ref, str):
            raise MalformedNotificationError("Chapa notification has no tx_ref")
        return Notification(
            transaction_ref=tx_ref,
            status=str(payload.get("status", "")),
            raw=payload,
        )

    async def verify_transaction(self, transaction_ref: str) -> VerificationResult:
        """Confirm a transaction with Chapa (server-to-server)."""
        if not self.config.has_credentials:
            logger.error("Chapa secret key not configured")
            return VerificationResult.unavailable("Payment gateway not configured")

        try:
            async with self._client() as client:
                response = await client.get(
                    f"/v1/transaction/verify/{quote(transaction_ref, safe='')}",
                    headers={"Authorization": f"Bearer {self.config.secret_key}"},
                )
        except httpx.TimeoutException:
            logger.error("Chapa verification timed out for %s", transaction_ref)
            return VerificationResult.unavailable("Verification timed out")
        except httpx.HTTPError as e:
            logger.error("Chapa verification transport error for %s: %s", transaction_ref, e)
            return VerificationResult.unavailable(f"Verification failed: {e}")

        if response.status_code >= 500:
            return VerificationResult.unavailable(
                f"Chapa returned HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            return VerificationResult.rejected(f"Chapa returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return VerificationResult.unavailable("Chapa returned a non-JSON body")
        if not isinstance(body, dict):
            return VerificationResult.unavailable("Chapa returned an unexpected body")

        data = body.get("data") or {}
        if not isinstance(data, dict):
            return VerificationResult.unavailable("Chapa returned an unexpected data field")
        status = data.get("status")
        if body.get("status") != "success" or status != "success":
            return VerificationResult.rejected("Payment not confirmed by gateway", status=status)

        reported_ref = data.get("tx_ref")
        if reported_ref is not None and reported_ref != transaction_ref:
            logger.error(
                "Chapa verification answered for %s when asked for %s",
                reported_ref,
                transaction_ref,
            )
            return VerificationResult.rejected("Transaction reference mismatch", status=status)

        try:
            amount_cents = to_minor_units(data.get("amount"))
        except ValueError as e:
            return VerificationResult.rejected(f"Unusable amount from gateway: {e}", status=status)

        return VerificationResult(verified=True, amount_cents=amount_cents, status=status)

    async def initialize_payment(
        self,
        *,
        transaction_ref: str,
        amount_cents: int,
        currency: str,
        customer: dict[str, str],
        callback_url: str,
        return_url: str,
        description: str,
    ) -> InitializationResult:
        """Open a Chapa hosted checkout for an existing pending order."""
        if not self.config.has_credentials:
            logger.error("Chapa secret key not configured")
            return InitializationResult(success=False, error="Payment gateway not configured")

        payload = {
            "amount": to_major_units(amount_cents),
            "currency": currency,
            "email": customer.get("email"),
            "first_name": customer.get("first_name"),
            "last_name": customer.get("last_name"),
            "phone_number": customer.get("phone"),
            "tx_ref": transaction_ref,
            "callback_url": callback_url,
            "return_url": return_url,
            "customization": {"title": "Checkout", "description": description},
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    "/v1/transaction/initialize",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.config.secret_key}"},
                )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Chapa initialization failed for %s: %s", transaction_ref, e)
            return InitializationResult(success=False, error=str(e))

        checkout_url = (body.get("data") or {}).get("checkout_url")
        if response.status_code != 200 or body.get("status") != "success" or not checkout_url:
            return InitializationResult(
                success=False,
                error=str(body.get("message") or f"HTTP {response.status_code}"),
            )
        return InitializationResult(success=True, checkout_url=checkout_url)
