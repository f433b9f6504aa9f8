"""
Billing Routes - customer-facing checkout and status endpoints.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.api.dependencies import get_payment_gateway
from license_billing.config import get_settings
from license_billing.db.session import get_read_db, get_write_db
from license_billing.exceptions import (
    AccessDeniedError,
    InputValidationError,
    ResourceNotFoundError,
)
from license_billing.models.api import (
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    InvoiceResponse,
    PaymentInfo,
    PlanSummary,
    SubscriptionStatusResponse,
)
from license_billing.models.domain import PlanData
from license_billing.services.nowpayments import NowPaymentsClient
from license_billing.services.subscriptions import SubscriptionService

router = APIRouter(prefix="/api/billing", tags=["billing"])


def plan_summary(plan: PlanData) -> PlanSummary:
    """Build the public plan summary."""
    return PlanSummary(
        code=plan.code,
        name=plan.name,
        price_usd=plan.price_usd,
        duration_days=plan.duration_days,
        max_requests_per_day=plan.max_requests_per_day,
    )


@router.post(
    "/create-subscription",
    response_model=CreateSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    request: CreateSubscriptionRequest,
    db: AsyncSession = Depends(get_write_db),
    gateway: NowPaymentsClient = Depends(get_payment_gateway),
) -> CreateSubscriptionResponse:
    """
    Create a pending subscription and invoice, and a hosted NOWPayments invoice.

    A valid invite code is required.
    """
    settings = get_settings()
    service = SubscriptionService(db)

    try:
        created = await service.create_subscription(
            request,
            gateway=gateway,
            default_success_url=settings.default_success_url,
            default_cancel_url=settings.default_cancel_url,
        )
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": exc.reason, "message": exc.message},
        ) from exc
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan not found: {exc.identifier}",
        ) from exc

    return CreateSubscriptionResponse(
        subscription_id=created.subscription_id,
        invoice_id=created.invoice_id,
        plan=plan_summary(created.plan),
        payment=PaymentInfo(
            provider=created.payment_provider,
            payment_id=created.provider_payment_id,
            payment_url=created.payment_url,
        ),
    )


@router.get("/subscription-status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    subscription_id: UUID = Query(..., alias="subscriptionId"),
    email: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_read_db),
) -> SubscriptionStatusResponse:
    """
    Subscription status and license key for the checkout landing page.

    The caller must supply the subscription's email address.
    """
    service = SubscriptionService(db)

    try:
        details = await service.get_subscription_status(subscription_id, email)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        ) from exc
    except AccessDeniedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email does not match subscription",
        ) from exc

    return SubscriptionStatusResponse(
        id=details.subscription_id,
        status=details.status,
        plan_code=details.plan.code,
        license_key=details.license_key,
        expires_at=details.expires_at,
        user_email=details.user_email,
    )


@router.get("/invoice/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_read_db),
) -> InvoiceResponse:
    """Invoice details."""
    service = SubscriptionService(db)

    try:
        invoice = await service.get_invoice(invoice_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Invoice not found: {invoice_id}",
        ) from exc

    return InvoiceResponse(
        invoice_id=invoice.invoice_id,
        status=invoice.status,
        amount_usd=invoice.amount_usd,
        plan_code=invoice.plan_code,
        subscription_id=invoice.subscription_id,
        paid_at=invoice.paid_at,
        payment=PaymentInfo(
            provider=invoice.payment_provider,
            payment_id=invoice.provider_payment_id,
            payment_url=invoice.provider_invoice_url,
        ),
    )
