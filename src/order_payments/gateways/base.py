"""Base protocol and types for mobile-money gateway adapters.

All gateway adapters must implement the GatewayAdapter protocol. The
reconciliation engine uses them without knowing provider-specific details;
the inbound route decides which adapter handles a delivery.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol


class MalformedNotificationError(ValueError):
    """Webhook body is authentic but does not carry the fields we need."""


@dataclass(frozen=True)
class Notification:
    """The fields of a webhook body the pipeline reads.

    amount and status are provider claims. They are never used to move an
    order; only the server-to-server verification result is.
    """

    transaction_ref: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    """Result of the authoritative transaction query.

    retriable distinguishes infrastructure faults (timeout, 5xx, missing
    credentials) from a genuine non-success payment status.
    """

    verified: bool
    amount_cents: int | None = None
    status: str | None = None
    error: str | None = None
    retriable: bool = False

    @classmethod
    def unavailable(cls, error: str) -> VerificationResult:
        return cls(verified=False, error=error, retriable=True)

    @classmethod
    def rejected(cls, error: str, status: str | None = None) -> VerificationResult:
        return cls(verified=False, status=status, error=error, retriable=False)


@dataclass(frozen=True)
class InitializationResult:
    """Result of opening a hosted checkout with the provider."""

    success: bool
    checkout_url: str | None = None
    error: str | None = None


class GatewayAdapter(Protocol):
    """Protocol for mobile-money gateway adapters.

    Each provider has its own adapter implementing this protocol.
    """

    name: str
    success_status: str
    signature_header: str

    @property
    def webhook_configured(self) -> bool:
        """Whether a webhook secret or key is available to check signatures."""
        ...

    def verify_signature(
        self,
        raw_payload: bytes,
        signature: str | None,
        secret: str | None = None,
    ) -> bool:
        """Check that raw_payload was signed by the provider.

        Args:
            raw_payload: Request body exactly as received, before parsing.
            signature: Value of the provider's signature header.
            secret: Shared secret or public key. Defaults to the configured one.

        Returns:
            True only for a valid signature. Any error yields False.
        """
        ...

    def parse_notification(self, payload: dict[str, Any]) -> Notification:
        """Extract the transaction reference and self-reported status."""
        ...

    async def verify_transaction(self, transaction_ref: str) -> VerificationResult:
        """Ask the provider for the authoritative state of a transaction.

        Uses server-held credentials only and a bounded timeout.
        """
        ...

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
        """Open a hosted checkout for an order that already exists."""
        ...


def to_minor_units(amount: Any) -> int:
    """Convert a major-unit amount reported by a provider into cents.

    Raises:
        ValueError: If the amount is missing or not a number.
    """
    if amount is None or isinstance(amount, bool):
        raise ValueError("amount is missing")
    try:
        major = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"amount is not numeric: {amount!r}") from e
    if not major.is_finite():
        raise ValueError(f"amount is not finite: {amount!r}")
    return int((major * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(amount_cents: int) -> str:
    """Format cents as a major-unit string for provider requests."""
    return str((Decimal(amount_cents) / 100).quantize(Decimal("0.01")))
