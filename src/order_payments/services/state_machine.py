"""Order state machine with transition validation."""

from __future__ import annotations

from order_payments.models.orders import OrderStatus

_PENDING = OrderStatus.PENDING.value
_PAID = OrderStatus.PAID.value
_FULFILLING = OrderStatus.FULFILLING.value
_SHIPPED = OrderStatus.SHIPPED.value
_DELIVERED = OrderStatus.DELIVERED.value
_CANCELLED = OrderStatus.CANCELLED.value
_REFUNDED = OrderStatus.REFUNDED.value


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class OrderStateMachine:
    """State machine for order status transitions.

    Allowed transitions:
    - PENDING → PAID (reconciliation engine only)
    - PAID → FULFILLING → SHIPPED → DELIVERED
    - any non-delivered, non-terminal state → CANCELLED | REFUNDED

    DELIVERED, CANCELLED and REFUNDED are terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        _PENDING: [_PAID, _CANCELLED, _REFUNDED],
        _PAID: [_FULFILLING, _CANCELLED, _REFUNDED],
        _FULFILLING: [_SHIPPED, _CANCELLED, _REFUNDED],
        _SHIPPED: [_DELIVERED, _CANCELLED, _REFUNDED],
        _DELIVERED: [],
        _CANCELLED: [],
        _REFUNDED: [],
    }

    # Transitions only the reconciliation engine may perform
    ENGINE_ONLY = {(_PENDING, _PAID)}

    TERMINAL = {_DELIVERED, _CANCELLED, _REFUNDED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def validate_staff_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition requested by operational staff."""
        cls.validate_transition(from_status, to_status)
        if (from_status, to_status) in cls.ENGINE_ONLY:
            raise InvalidTransitionError(
                from_status, to_status, "orders are marked paid only by verified payments"
            )

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
