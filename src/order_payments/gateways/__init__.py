"""Mobile-money gateway adapters."""

from order_payments.gateways.base import (
    GatewayAdapter,
    InitializationResult,
    MalformedNotificationError,
    Notification,
    VerificationResult,
    to_minor_units,
)
from order_payments.gateways.chapa import ChapaGateway
from order_payments.gateways.telebirr import TelebirrGateway
from order_payments.gateways.stub import StubGateway

__all__ = [
    "GatewayAdapter",
    "InitializationResult",
    "MalformedNotificationError",
    "Notification",
    "VerificationResult",
    "to_minor_units",
    "ChapaGateway",
    "TelebirrGateway",
    "StubGateway",
]
