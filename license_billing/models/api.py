"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELED = "canceled"
    PAUSED = "paused"
    PAYMENT_RECEIVED_BUT_LICENSE_FAILED = "payment_received_but_license_failed"


class InvoiceStatus(str, Enum):
    """Invoice states. Anything other than PENDING is terminal."""

    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELED = "canceled"


class InviteCodeType(str, Enum):
    """Invite code kinds."""

    INVITE = "INVITE"
    REFERRAL = "REFERRAL"
    PARTNER = "PARTNER"


class InviteCodeStatus(str, Enum):
    """Invite code administrative status."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    EXPIRED = "EXPIRED"


class InviteRejectionKind(str, Enum):
    """Reasons an invite code is refused, in evaluation order."""

    NOT_FOUND = "NOT_FOUND"
    NOT_ACTIVE = "NOT_ACTIVE"
    EXPIRED = "EXPIRED"
    LIMIT_REACHED = "LIMIT_REACHED"


class ReconciliationOutcome(str, Enum):
    """What a payment webhook did to local state."""

    ACTIVATED = "activated"
    LICENSE_FAILED = "license_failed"
    ALREADY_PROCESSED = "already_processed"
    PAYMENT_FAILED = "payment_failed"
    INTERMEDIATE = "intermediate"
    INVOICE_NOT_FOUND = "invoice_not_found"
    LATE_PAYMENT = "late_payment"
    IGNORED = "ignored"


# ============================================================================
# Webhook Models
# ============================================================================


class NowPaymentsWebhookPayload(BaseModel):
    """
    NOWPayments IPN body.

    Only the consumed fields are declared; the gateway sends many more.
    payment_id and invoice_id arrive as numbers and are coerced to strings.
    """

    model_config = ConfigDict(extra="ignore")

    payment_id: str | None = None
    payment_status: str | None = None
    order_id: str | None = None
    invoice_id: str | None = None
    price_amount: Decimal | None = None
    price_currency: str | None = None

    @field_validator("payment_id", "invoice_id", "order_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: object) -> str | None:
        """Gateway identifiers may be JSON numbers."""
        if v is None or v == "":
            return None
        return str(v)


class WebhookAckResponse(BaseModel):
    """Acknowledgement body returned to the payment gateway."""

    status: Literal["ok", "ignored"] = "ok"
    outcome: ReconciliationOutcome
    message: str


# ============================================================================
# Summary Models
# ============================================================================


class PlanSummary(BaseModel):
    """Plan fields exposed alongside subscriptions and invoices."""

    code: str
    name: str
    price_usd: Decimal
    duration_days: int | None
    max_requests_per_day: int | None = None


class InviteCodeSummary(BaseModel):
    """Invite code fields exposed alongside subscriptions."""

    id: UUID
    code: str
    type: InviteCodeType
    status: InviteCodeStatus


class PaymentInfo(BaseModel):
    """Gateway-side payment reference for an invoice."""

    provider: str | None = None
    payment_id: str | None = None
    payment_url: str | None = None


# ============================================================================
# Admin Subscription Models
# ============================================================================


class SubscriptionPatchRequest(BaseModel):
    """
    PATCH /api/admin/subscriptions/{id} request body.

    Every field is optional but at least one must be present. invite_code
    sent as null or blank clears the link; omitted leaves it unchanged.
    """

    model_config = ConfigDict(extra="forbid")

    status: SubscriptionStatus | None = None
    expires_at: AwareDatetime | None = None
    add_days: int | None = Field(None, gt=0, le=36500)
    invite_code: str | None = Field(None, max_length=100)
    max_requests: int | None = Field(None, ge=0)


class SubscriptionResponse(BaseModel):
    """Subscription with its resolved plan and invite code."""

    id: UUID
    user_email: str
    product_code: str
    status: SubscriptionStatus
    license_key: str | None
    starts_at: datetime | None
    expires_at: datetime | None
    plan: PlanSummary
    invite_code: InviteCodeSummary | None
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    """Page metadata for list endpoints."""

    page: int
    limit: int
    total: int
    total_pages: int


class SubscriptionListResponse(BaseModel):
    """GET /api/admin/subscriptions response."""

    subscriptions: list[SubscriptionResponse]
    pagination: Pagination


# ============================================================================
# Admin Invite Code Models
# ============================================================================


class InviteCodeCreateRequest(BaseModel):
    """POST /api/admin/invite-codes request body."""

    code: str = Field(..., min_length=1, max_length=100)
    type: InviteCodeType = InviteCodeType.INVITE
    status: InviteCodeStatus = InviteCodeStatus.ACTIVE
    max_uses: int | None = Field(None, ge=0)
    expires_at: AwareDatetime | None = None
    revenue_share_percent: Decimal | None = None
    owner_email: str | None = Field(None, max_length=255)
    notes: str | None = None


class InviteCodeUpdateRequest(BaseModel):
    """PATCH /api/admin/invite-codes/{id} request body."""

    model_config = ConfigDict(extra="forbid")

    status: InviteCodeStatus | None = None
    max_uses: int | None = Field(None, ge=0)
    expires_at: AwareDatetime | None = None
    revenue_share_percent: Decimal | None = None
    owner_email: str | None = Field(None, max_length=255)
    notes: str | None = None


class InviteCodeResponse(BaseModel):
    """Full invite code representation for admins."""

    id: UUID
    code: str
    type: InviteCodeType
    status: InviteCodeStatus
    max_uses: int | None
    used_count: int
    expires_at: datetime | None
    revenue_share_percent: Decimal | None
    owner_email: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Public Invite Validation Models
# ============================================================================


class InviteValidateRequest(BaseModel):
    """POST /api/invite/validate request body."""

    code: str = Field(..., max_length=100)


class InviteValidateResponse(BaseModel):
    """Successful invite validation."""

    ok: Literal[True] = True
    code: str
    type: InviteCodeType
    status: InviteCodeStatus
    max_uses: int | None
    used_count: int
    expires_at: datetime | None


class InviteValidateError(BaseModel):
    """Rejected invite validation."""

    ok: Literal[False] = False
    error: str
    reason: InviteRejectionKind


# ============================================================================
# Billing Models
# ============================================================================


class CreateSubscriptionRequest(BaseModel):
    """POST /api/billing/create-subscription request body."""

    plan_code: str = Field(..., min_length=1, max_length=100)
    user_email: str = Field(..., min_length=3, max_length=255)
    product_code: str = Field(..., min_length=1, max_length=100)
    invite_code: str = Field(..., max_length=100)
    success_redirect_url: str | None = Field(None, max_length=2048)
    cancel_redirect_url: str | None = Field(None, max_length=2048)


class CreateSubscriptionResponse(BaseModel):
    """POST /api/billing/create-subscription response."""

    subscription_id: UUID
    invoice_id: UUID
    plan: PlanSummary
    payment: PaymentInfo


class SubscriptionStatusResponse(BaseModel):
    """GET /api/billing/subscription-status response."""

    id: UUID
    status: SubscriptionStatus
    plan_code: str
    license_key: str | None
    expires_at: datetime | None
    user_email: str


class InvoiceResponse(BaseModel):
    """GET /api/billing/invoice/{id} response."""

    invoice_id: UUID
    status: InvoiceStatus
    amount_usd: Decimal
    plan_code: str
    subscription_id: UUID
    paid_at: datetime | None
    payment: PaymentInfo


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
