"""Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Common
# ============================================================================


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str
    code: str | None = None


class WebhookResponse(BaseModel):
    """Answer to a gateway webhook delivery."""

    success: bool
    code: str
    message: str
    order_id: UUID | None = None


# ============================================================================
# Order schemas
# ============================================================================


class CartItem(BaseModel):
    """One cart line. Prices are never accepted from the client."""

    product_id: UUID
    quantity: int = Field(gt=0)


class OrderCreate(BaseModel):
    """Checkout request."""

    items: list[CartItem] = Field(min_length=1)
    referral_code: str | None = Field(default=None, max_length=40)
    gateway: str = "chapa"


class OrderCreated(BaseModel):
    """Checkout response."""

    order_id: UUID
    order_number: str
    transaction_ref: str
    total_cents: int
    checkout_url: str | None = None


class OrderResponse(BaseModel):
    """Order summary for reporting."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_id: UUID
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    status: str
    transaction_ref: str
    gateway: str | None = None
    referral_code: str | None = None
    paid_at: datetime | None = None
    created_at: datetime


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    limit: int
    offset: int


# ============================================================================
# Affiliate schemas
# ============================================================================


class ReferralCodeResponse(BaseModel):
    valid: bool
    ambassador_id: UUID | None = None
    ambassador_name: str | None = None
    discount_percent: int = 0
    error: str | None = None


class ReferralResponse(BaseModel):
    """Commission record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    customer_id: UUID
    referral_code_used: str
    referral_source: str
    commission_rate_bp: int
    commission_cents: int
    created_at: datetime


class EarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    referral_id: UUID
    order_id: UUID
    commission_cents: int
    commission_rate_bp: int
    created_at: datetime
    available_at: datetime
    status: str


class EarningsResponse(BaseModel):
    """Ambassador earnings split by hold status."""

    model_config = ConfigDict(from_attributes=True)

    ambassador_id: UUID
    total_cents: int
    pending_cents: int
    available_cents: int
    hold_days: int
    referrals: list[EarningResponse]


class ApplicationCreate(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class ApplicationReview(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ApplicationResponse(BaseModel):
    """Ambassador program application."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    status: str
    notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    created_at: datetime


class CustomCodeUpdate(BaseModel):
    code: str = Field(min_length=3, max_length=20)


class AmbassadorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str | None = None
    name: str | None = None
    is_ambassador: bool
    ambassador_code: str | None = None
    commission_rate_bp: int | None = None


# ============================================================================
# Settings schemas
# ============================================================================


class SettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: str
    description: str | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None
    is_default: bool = False


class SettingsListResponse(BaseModel):
    items: list[SettingResponse]
    degraded: bool = False


class SettingUpdate(BaseModel):
    value: Any
    description: str | None = None


class SettingsBatchUpdate(BaseModel):
    settings: dict[str, Any] = Field(min_length=1)


class SettingsBatchResponse(BaseModel):
    updated: dict[str, str]
