"""
Subscription Service - checkout, status lookups and admin listing.

Checkout creates a pending subscription and invoice gated by an invite code,
then asks the gateway for a hosted invoice. Activation happens later, in the
payment reconciler.
"""

import re
from datetime import UTC, datetime
from uuid import UUID, uuid4

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.db.models import InviteCode, Invoice, Plan, Subscription
from license_billing.exceptions import (
    AccessDeniedError,
    InputValidationError,
    PaymentProviderError,
    ResourceNotFoundError,
)
from license_billing.models.api import CreateSubscriptionRequest, InvoiceStatus, SubscriptionStatus
from license_billing.models.domain import (
    CreatedSubscription,
    InviteCodeData,
    InviteCodeRejected,
    InvoiceData,
    PlanData,
    SubscriptionDetails,
    SubscriptionPage,
)
from license_billing.observability import get_logger, mask_secret
from license_billing.services.invite_codes import InviteCodeService, invite_to_domain
from license_billing.services.nowpayments import NowPaymentsClient

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_PAGE_SIZE = 100


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def plan_to_domain(plan: Plan) -> PlanData:
    """Convert ORM plan to domain model."""
    return PlanData(
        plan_id=plan.id,
        code=plan.code,
        name=plan.name,
        price_usd=plan.price_usd,
        duration_days=plan.duration_days,
        max_requests_per_day=plan.max_requests_per_day,
    )


def subscription_to_details(
    subscription: Subscription, plan: Plan, invite: InviteCode | None
) -> SubscriptionDetails:
    """Convert ORM subscription (with plan and invite) to domain model."""
    invite_data: InviteCodeData | None = invite_to_domain(invite) if invite is not None else None
    return SubscriptionDetails(
        subscription_id=subscription.id,
        user_email=subscription.user_email,
        product_code=subscription.product_code,
        status=SubscriptionStatus(subscription.status),
        license_key=subscription.license_key,
        starts_at=subscription.starts_at,
        expires_at=subscription.expires_at,
        plan=plan_to_domain(plan),
        invite_code=invite_data,
        created_at=subscription.created_at,
        updated_at=subscription.updated_at,
    )


def _with_checkout_params(url: str, subscription_id: UUID, email: str) -> str:
    """Append subscriptionId and email so the landing page can poll status."""
    return str(
        httpx.URL(url).copy_merge_params({"subscriptionId": str(subscription_id), "email": email})
    )


def _validate_redirect_url(field: str, url: str | None) -> None:
    if url is None:
        return
    if not url.startswith("http"):
        raise InputValidationError("INVALID_REDIRECT_URL", f"{field} must be a valid HTTP(S) URL")
    try:
        httpx.URL(url)
    except httpx.InvalidURL as e:
        raise InputValidationError(
            "INVALID_REDIRECT_URL", f"{field} must be a valid HTTP(S) URL"
        ) from e


class SubscriptionService:
    """Subscription checkout and read paths."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize subscription service with database session."""
        self.session = session

    async def create_subscription(
        self,
        request: CreateSubscriptionRequest,
        gateway: NowPaymentsClient,
        default_success_url: str,
        default_cancel_url: str,
    ) -> CreatedSubscription:
        """
        Create a pending subscription and invoice, then a gateway invoice.

        Gateway failure is not fatal: the pending invoice is returned without a
        payment link and can be paid once the gateway recovers.

        Raises:
            InputValidationError: rejected invite code, bad email or redirect URL
            ResourceNotFoundError: unknown plan code
        """
        validation = await InviteCodeService(self.session).validate(request.invite_code)
        if isinstance(validation, InviteCodeRejected):
            raise InputValidationError(validation.kind.value, validation.message)

        if not EMAIL_PATTERN.match(request.user_email):
            raise InputValidationError("INVALID_EMAIL", "Invalid email format")

        _validate_redirect_url("success_redirect_url", request.success_redirect_url)
        _validate_redirect_url("cancel_redirect_url", request.cancel_redirect_url)

        plan = await self._find_plan_by_code(request.plan_code)
        if plan is None:
            raise ResourceNotFoundError("Plan", request.plan_code)

        subscription = Subscription(
            id=uuid4(),
            user_email=request.user_email,
            product_code=request.product_code,
            plan_id=plan.id,
            invite_code_id=validation.invite.invite_code_id,
            status=SubscriptionStatus.PENDING_PAYMENT.value,
        )
        invoice = Invoice(
            id=uuid4(),
            subscription_id=subscription.id,
            plan_id=plan.id,
            amount_usd=plan.price_usd,
            status=InvoiceStatus.PENDING.value,
        )
        self.session.add(subscription)
        self.session.add(invoice)
        await self.session.commit()

        logger.info(
            "subscription_created",
            subscription_id=str(subscription.id),
            invoice_id=str(invoice.id),
            plan_code=plan.code,
            user_email=mask_secret(request.user_email),
        )

        success_url = _with_checkout_params(
            request.success_redirect_url or default_success_url, subscription.id, request.user_email
        )
        cancel_url = _with_checkout_params(
            request.cancel_redirect_url or default_cancel_url, subscription.id, request.user_email
        )

        try:
            gateway_invoice = await gateway.create_invoice(
                amount_usd=plan.price_usd,
                order_id=str(invoice.id),
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=request.user_email,
            )
        except PaymentProviderError as e:
            logger.error(
                "subscription_gateway_invoice_failed",
                invoice_id=str(invoice.id),
                error=e.message,
            )
            return CreatedSubscription(
                subscription_id=subscription.id,
                invoice_id=invoice.id,
                plan=plan_to_domain(plan),
                payment_provider=None,
                provider_payment_id=None,
                payment_url=None,
            )

        invoice.payment_provider = gateway.PROVIDER_NAME
        invoice.provider_payment_id = gateway_invoice.provider_invoice_id
        invoice.provider_invoice_url = gateway_invoice.invoice_url
        await self.session.commit()

        return CreatedSubscription(
            subscription_id=subscription.id,
            invoice_id=invoice.id,
            plan=plan_to_domain(plan),
            payment_provider=gateway.PROVIDER_NAME,
            provider_payment_id=gateway_invoice.provider_invoice_id,
            payment_url=gateway_invoice.invoice_url,
        )

    async def get_subscription(self, subscription_id: UUID) -> SubscriptionDetails:
        """Load a subscription with its plan and invite code."""
        row = await self._find_with_relations(subscription_id)
        if row is None:
            raise ResourceNotFoundError("Subscription", str(subscription_id))
        subscription, plan, invite = row
        return subscription_to_details(subscription, plan, invite)

    async def get_subscription_status(
        self, subscription_id: UUID, email: str
    ) -> SubscriptionDetails:
        """
        Status lookup for the checkout landing page.

        The caller must know the subscription's email; a mismatch is refused
        rather than reported as not-found.
        """
        details = await self.get_subscription(subscription_id)
        if details.user_email.lower() != email.strip().lower():
            raise AccessDeniedError("Email does not match subscription")
        return details

    async def get_invoice(self, invoice_id: UUID) -> InvoiceData:
        """Load an invoice with its plan code."""
        stmt = select(Invoice, Plan.code).join(Plan, Invoice.plan_id == Plan.id).where(
            Invoice.id == invoice_id
        )
        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            raise ResourceNotFoundError("Invoice", str(invoice_id))

        invoice, plan_code = row
        return InvoiceData(
            invoice_id=invoice.id,
            subscription_id=invoice.subscription_id,
            plan_code=plan_code,
            amount_usd=invoice.amount_usd,
            status=InvoiceStatus(invoice.status),
            payment_provider=invoice.payment_provider,
            provider_payment_id=invoice.provider_payment_id,
            provider_invoice_url=invoice.provider_invoice_url,
            paid_at=invoice.paid_at,
        )

    async def list_subscriptions(self, page: int, limit: int) -> SubscriptionPage:
        """Newest-first page of subscriptions for operators."""
        if page < 1:
            raise InputValidationError("INVALID_PAGE", "Page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InputValidationError(
                "INVALID_LIMIT", f"Limit must be between 1 and {MAX_PAGE_SIZE}"
            )

        total_result = await self.session.execute(
            select(func.count()).select_from(Subscription)
        )
        total = int(total_result.scalar_one())

        stmt = (
            select(Subscription, Plan, InviteCode)
            .join(Plan, Subscription.plan_id == Plan.id)
            .outerjoin(InviteCode, Subscription.invite_code_id == InviteCode.id)
            .order_by(Subscription.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(stmt)

        return SubscriptionPage(
            subscriptions=[
                subscription_to_details(subscription, plan, invite)
                for subscription, plan, invite in result.all()
            ],
            page=page,
            limit=limit,
            total=total,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_plan_by_code(self, code: str) -> Plan | None:
        """Find plan by code."""
        stmt = select(Plan).where(Plan.code == code)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_with_relations(
        self, subscription_id: UUID
    ) -> tuple[Subscription, Plan, InviteCode | None] | None:
        """Find subscription joined with plan and optional invite code."""
        stmt = (
            select(Subscription, Plan, InviteCode)
            .join(Plan, Subscription.plan_id == Plan.id)
            .outerjoin(InviteCode, Subscription.invite_code_id == InviteCode.id)
            .where(Subscription.id == subscription_id)
        )
        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return row[0], row[1], row[2]
