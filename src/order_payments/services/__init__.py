"""Business services."""

from order_payments.services.ambassadors import (
    AmbassadorError,
    AmbassadorService,
    ApplicationNotFound,
    ApplicationReviewError,
    DuplicateApplication,
    InvalidCustomCode,
    NotAnAmbassador,
    ReferralCodeUnavailable,
)
from order_payments.services.commission import (
    CommissionEngine,
    CommissionError,
    DuplicateCommission,
    EarningsSummary,
    InvalidReferralCode,
    ReferralCodeValidation,
    SelfReferralRejected,
    SweepResult,
    compute_commission_cents,
)
from order_payments.services.idempotency import is_already_processed, mark_paid
from order_payments.services.order_service import (
    CartLine,
    InsufficientStockError,
    OrderCreationError,
    OrderNotFoundError,
    OrderService,
    OrderValidationError,
    PendingOrder,
    ProductUnavailableError,
)
from order_payments.services.reconciliation import (
    ReconciliationEngine,
    WebhookCode,
    WebhookOutcome,
)
from order_payments.services.settings_store import (
    DEFAULT_SETTINGS,
    SettingEntry,
    SettingNotFoundError,
    SettingsStore,
    SettingValueError,
)
from order_payments.services.state_machine import InvalidTransitionError, OrderStateMachine

__all__ = [
    "AmbassadorError",
    "AmbassadorService",
    "ApplicationNotFound",
    "ApplicationReviewError",
    "DuplicateApplication",
    "InvalidCustomCode",
    "NotAnAmbassador",
    "ReferralCodeUnavailable",
    "CommissionEngine",
    "CommissionError",
    "DuplicateCommission",
    "EarningsSummary",
    "InvalidReferralCode",
    "ReferralCodeValidation",
    "SelfReferralRejected",
    "SweepResult",
    "compute_commission_cents",
    "is_already_processed",
    "mark_paid",
    "CartLine",
    "InsufficientStockError",
    "OrderCreationError",
    "OrderNotFoundError",
    "OrderService",
    "OrderValidationError",
    "PendingOrder",
    "ProductUnavailableError",
    "ReconciliationEngine",
    "WebhookCode",
    "WebhookOutcome",
    "DEFAULT_SETTINGS",
    "SettingEntry",
    "SettingNotFoundError",
    "SettingsStore",
    "SettingValueError",
    "InvalidTransitionError",
    "OrderStateMachine",
]
