"""Customer, ambassador and commission records.

Customers and ambassadors share one identity table; an ambassador is a user
with is_ambassador set and a unique ambassador_code.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_payments.models.base import Base, TimestampMixin
from order_payments.models.orders import Order


class ApplicationStatus(str, Enum):
    """Ambassador application status values."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class User(TimestampMixin, Base):
    """Platform user. Issued by the auth collaborator; read-only here."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_ambassador: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ambassador_code: Mapped[str | None] = mapped_column(
        String(40), nullable=True, unique=True
    )
    commission_rate_bp: Mapped[int | None] = mapped_column(Integer, nullable=True, default=500)

    __table_args__ = (
        CheckConstraint(
            "commission_rate_bp IS NULL OR (commission_rate_bp >= 0 AND commission_rate_bp <= 10000)",
            name="users_commission_rate_ck",
        ),
    )


class AmbassadorApplication(TimestampMixin, Base):
    """Ambassador program application. A rejected one disqualifies the user's code."""

    __tablename__ = "ambassador_applications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ApplicationStatus.PENDING.value
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ambassador_applications_status_ck",
        ),
        Index("ambassador_applications_by_user", "user_id", "status"),
    )


class AmbassadorReferral(TimestampMixin, Base):
    """Commission earned by an ambassador on one paid order.

    Append-only. The rate is a snapshot of the ambassador's rate when the
    record was created. Whether the commission is withdrawable is derived
    from created_at and the hold period, never stored.
    """

    __tablename__ = "ambassador_referrals"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    ambassador_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), nullable=False)
    referral_code_used: Mapped[str] = mapped_column(String(40), nullable=False)
    referral_source: Mapped[str] = mapped_column(
        String(32), nullable=False, default="direct_link"
    )
    commission_rate_bp: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("order_id", name="ambassador_referrals_order_uq"),
        CheckConstraint(
            "ambassador_id <> customer_id", name="ambassador_referrals_no_self_ck"
        ),
        CheckConstraint("commission_cents >= 0", name="ambassador_referrals_amount_ck"),
        Index("ambassador_referrals_by_ambassador", "ambassador_id", "created_at"),
    )

    order: Mapped["Order"] = relationship("Order")
    customer: Mapped["User"] = relationship("User", foreign_keys=[customer_id])
