"""Telebirr gateway adapter.

Webhooks carry a base64 RSA signature (PKCS#1 v1.5, SHA-256) over the raw
request body, checked against Telebirr's public key. Transactions are
confirmed with POST /v1/payment/query using the app id and app key.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from order_payments.config import GatewayConfig
from order_payments.gateways.base import (
    InitializationResult,
    MalformedNotificationError,
    Notification,
    VerificationResult,
    to_minor_units,
)

logger = logging.getLogger(__name__)


def verify_rsa_signature(raw_payload: bytes, signature: str | None, public_key_pem: str | None) -> bool:
    """Verify a base64 RSA-SHA256 signature. Malformed input is a failure."""
    if not signature or not public_key_pem:
        return False
    try:
        key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
        if not isinstance(key, rsa.RSAPublicKey):
            logger.error("Telebirr public key is not an RSA key")
            return False
        decoded = base64.b64decode(signature.strip(), validate=True)
        key.verify(decoded, raw_payload, padding.PKCS1v15(), hashes.SHA256())
        return True
    except InvalidSignature:
        return False
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.warning("Telebirr signature could not be checked: %s", e)
        return False


class TelebirrGateway:
    """Telebirr adapter.

    config.webhook_secret holds the PEM public key, config.secret_key the app
    key and config.app_id the application id.
    """

    name = "telebirr"
    success_status = "SUCCESS"
    signature_header = "X-Telebirr-Signature"

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

    def verify_signature(
        self,
        raw_payload: bytes,
        signature: str | None,
        secret: str | None = None,
    ) -> bool:
        return verify_rsa_signature(raw_payload, signature, secret or self.config.webhook_secret)

    def parse_notification(self, payload: dict[str, Any]) -> Notification:
        ref = payload.get("transactionRef") or payload.get("outTradeNo")
        if not ref or not isinstance(ref, str):
            raise MalformedNotificationError("Telebirr notification has no transactionRef")
        return Notification(transaction_ref=ref, status=str(payload.get("status", "")), raw=payload)

    async def verify_transaction(self, transaction_ref: str) -> VerificationResult:
        """Confirm a transaction with Telebirr (server-to-server)."""
        if not self.config.app_id or not self.config.secret_key:
            logger.error("Telebirr credentials not configured")
            return VerificationResult.unavailable("Payment gateway not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/v1/payment/query",
                    json={"transactionRef": transaction_ref, "appId": self.config.app_id},
                    headers={"X-APP-Key": self.config.secret_key},
                )
        except httpx.TimeoutException:
            logger.error("Telebirr verification timed out for %s", transaction_ref)
            return VerificationResult.unavailable("Verification timed out")
        except httpx.HTTPError as e:
            logger.error("Telebirr verification transport error for %s: %s", transaction_ref, e)
            return VerificationResult.unavailable(f"Verification failed: {e}")

        if response.status_code >= 500:
            return VerificationResult.unavailable(
                f"Telebirr returned HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            return VerificationResult.rejected(f"Telebirr returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return VerificationResult.unavailable("Telebirr returned a non-JSON body")
        if not isinstance(body, dict):
            return VerificationResult.unavailable("Telebirr returned an unexpected body")

        status = body.get("status")
        if status != self.success_status:
            return VerificationResult.rejected("Payment not confirmed by gateway", status=status)

        reported_ref = body.get("transactionRef") or body.get("outTradeNo")
        if reported_ref is not None and reported_ref != transaction_ref:
            logger.error(
                "Telebirr verification answered for %s when asked for %s",
                reported_ref,
                transaction_ref,
            )
            return VerificationResult.rejected("Transaction reference mismatch", status=status)

        try:
            amount_cents = to_minor_units(body.get("amount"))
        except ValueError as e:
            return VerificationResult.rejected(f"Unusable amount from gateway: {e}", status=status)

        return VerificationResult(verified=True, amount_cents=amount_cents, status=status)

    async def initialize_payment(self, **kwargs: Any) -> InitializationResult:
        # Telebirr checkout is opened by the mobile app, not by this service.
        return InitializationResult(
            success=False, error="Hosted checkout is not available for Telebirr"
        )
