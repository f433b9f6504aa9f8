"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from license_billing.models.api import (
    InviteCodeStatus,
    InviteCodeType,
    InviteRejectionKind,
    InvoiceStatus,
    ReconciliationOutcome,
    SubscriptionStatus,
)


class PaymentStatusBucket(str, Enum):
    """Coarse classification of a gateway payment_status."""

    SUCCESS = "success"
    FINAL_FAILURE = "final_failure"
    INTERMEDIATE = "intermediate"


@dataclass(frozen=True)
class PaymentNotification:
    """A verified, parsed payment webhook."""

    provider_payment_id: str
    payment_status: str
    order_id: str | None
    provider_invoice_id: str | None
    price_amount: Decimal | None
    price_currency: str | None

    def __post_init__(self) -> None:
        """Validate required gateway fields."""
        if not self.provider_payment_id:
            raise ValueError("provider_payment_id cannot be empty")
        if not self.payment_status:
            raise ValueError("payment_status cannot be empty")


@dataclass(frozen=True)
class ExpirationWindow:
    """Validity window of a subscription. expires_at None means lifetime."""

    starts_at: datetime
    expires_at: datetime | None

    def __post_init__(self) -> None:
        """Validate window ordering."""
        if self.expires_at is not None and self.expires_at < self.starts_at:
            raise ValueError(
                f"expires_at {self.expires_at.isoformat()} precedes "
                f"starts_at {self.starts_at.isoformat()}"
            )


@dataclass(frozen=True)
class ReconciliationResult:
    """Result of reconciling one webhook delivery."""

    outcome: ReconciliationOutcome
    message: str
    invoice_id: UUID | None = None
    subscription_id: UUID | None = None


@dataclass(frozen=True)
class PlanData:
    """Immutable plan snapshot."""

    plan_id: UUID
    code: str
    name: str
    price_usd: Decimal
    duration_days: int | None
    max_requests_per_day: int | None


@dataclass(frozen=True)
class InviteCodeData:
    """Immutable invite code snapshot."""

    invite_code_id: UUID
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


@dataclass(frozen=True)
class InviteCodeAccepted:
    """The code may be used to create a subscription."""

    invite: InviteCodeData


@dataclass(frozen=True)
class InviteCodeRejected:
    """The code was refused; kind is machine-readable."""

    kind: InviteRejectionKind
    message: str


InviteCodeValidation = InviteCodeAccepted | InviteCodeRejected


@dataclass(frozen=True)
class SubscriptionDetails:
    """Subscription with its resolved plan and invite code."""

    subscription_id: UUID
    user_email: str
    product_code: str
    status: SubscriptionStatus
    license_key: str | None
    starts_at: datetime | None
    expires_at: datetime | None
    plan: PlanData
    invite_code: InviteCodeData | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class SubscriptionPage:
    """One page of subscriptions for the admin listing."""

    subscriptions: list[SubscriptionDetails]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        """Number of pages at the current limit."""
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class InvoiceData:
    """Immutable invoice snapshot."""

    invoice_id: UUID
    subscription_id: UUID
    plan_code: str
    amount_usd: Decimal
    status: InvoiceStatus
    payment_provider: str | None
    provider_payment_id: str | None
    provider_invoice_url: str | None
    paid_at: datetime | None


@dataclass(frozen=True)
class GatewayInvoice:
    """Invoice created on the payment gateway."""

    provider_invoice_id: str
    invoice_url: str

    def __post_init__(self) -> None:
        """Both fields are required to redirect the customer."""
        if not self.provider_invoice_id or not self.invoice_url:
            raise ValueError("Gateway invoice requires an id and an invoice_url")


@dataclass(frozen=True)
class CreatedSubscription:
    """Pending subscription and invoice created at checkout."""

    subscription_id: UUID
    invoice_id: UUID
    plan: PlanData
    payment_provider: str | None
    provider_payment_id: str | None
    payment_url: str | None
