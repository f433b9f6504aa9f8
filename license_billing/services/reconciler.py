"""
Payment Reconciler - turns payment webhooks into invoice/subscription state.

Webhooks are delivered at least once and possibly concurrently. Exactly-once
effect comes from a compare-and-swap on the invoice status: only the delivery
whose UPDATE ... WHERE status = 'pending' matches a row performs side effects.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.db.models import Invoice, Plan, Subscription
from license_billing.exceptions import DataIntegrityError, LicenseServiceError
from license_billing.models.api import InvoiceStatus, ReconciliationOutcome, SubscriptionStatus
from license_billing.models.domain import (
    PaymentNotification,
    PaymentStatusBucket,
    ReconciliationResult,
)
from license_billing.models.license import LicenseUpsertRequest
from license_billing.observability import get_logger, mask_secret, metrics, trace_operation
from license_billing.services.expiration import compute_expiration
from license_billing.services.invite_codes import InviteCodeService
from license_billing.services.license_sync import LicenseSyncClient

logger = get_logger(__name__)

SUCCESS_STATUSES = frozenset({"finished", "confirmed"})
FINAL_FAILURE_STATUSES = frozenset({"failed", "expired", "refunded"})


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def classify_payment_status(payment_status: str) -> PaymentStatusBucket:
    """Map a gateway payment_status onto success / final failure / intermediate."""
    status = payment_status.strip().lower()
    if status in SUCCESS_STATUSES:
        return PaymentStatusBucket.SUCCESS
    if status in FINAL_FAILURE_STATUSES:
        return PaymentStatusBucket.FINAL_FAILURE
    return PaymentStatusBucket.INTERMEDIATE


def _parse_order_id(order_id: str | None) -> UUID | None:
    """order_id is our invoice id; anything that isn't a UUID is foreign."""
    if not order_id:
        return None
    try:
        return UUID(order_id)
    except ValueError:
        return None


class PaymentReconciler:
    """
    Applies one verified payment notification.

    Business outcomes are returned as ReconciliationResult so the webhook can
    acknowledge them; only integrity and infrastructure failures raise.
    """

    def __init__(self, session: AsyncSession, license_client: LicenseSyncClient) -> None:
        """Initialize reconciler with database session and license client."""
        self.session = session
        self.license_client = license_client
        self.invite_codes = InviteCodeService(session)

    async def reconcile(self, notification: PaymentNotification) -> ReconciliationResult:
        """Reconcile a payment notification into local state."""
        with trace_operation(
            "payment_reconciliation",
            payment_id=notification.provider_payment_id,
            payment_status=notification.payment_status,
            order_id=notification.order_id,
        ) as span:
            result = await self._reconcile(notification)
            span.set_attribute("outcome", result.outcome.value)

        metrics.record_webhook(result.outcome.value)
        return result

    async def _reconcile(self, notification: PaymentNotification) -> ReconciliationResult:
        invoice = await self._find_invoice(notification)
        if invoice is None:
            logger.warning(
                "webhook_invoice_not_found",
                order_id=notification.order_id,
                payment_id=notification.provider_payment_id,
                invoice_id=notification.provider_invoice_id,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.INVOICE_NOT_FOUND, message="Invoice not found"
            )

        bucket = classify_payment_status(notification.payment_status)

        if bucket == PaymentStatusBucket.INTERMEDIATE:
            logger.info(
                "webhook_intermediate_status",
                invoice_id=str(invoice.id),
                payment_status=notification.payment_status,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.INTERMEDIATE,
                message=f"Status: {notification.payment_status}",
                invoice_id=invoice.id,
                subscription_id=invoice.subscription_id,
            )

        if bucket == PaymentStatusBucket.FINAL_FAILURE:
            return await self._apply_failure(invoice, notification.payment_status)

        return await self._apply_success(invoice, notification)

    async def _apply_failure(self, invoice: Invoice, payment_status: str) -> ReconciliationResult:
        """Close a pending invoice after a final gateway failure. Subscription untouched."""
        target = (
            InvoiceStatus.EXPIRED
            if payment_status.strip().lower() == "expired"
            else InvoiceStatus.CANCELED
        )

        if invoice.status != InvoiceStatus.PENDING.value:
            logger.info(
                "webhook_failure_on_closed_invoice",
                invoice_id=str(invoice.id),
                invoice_status=invoice.status,
                payment_status=payment_status,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.PAYMENT_FAILED,
                message=f"Invoice already {invoice.status}",
                invoice_id=invoice.id,
                subscription_id=invoice.subscription_id,
            )

        transitioned = await self._transition_pending_invoice(invoice.id, target, paid_at=None)
        await self.session.commit()

        if transitioned:
            logger.info(
                "webhook_invoice_failed",
                invoice_id=str(invoice.id),
                invoice_status=target.value,
                payment_status=payment_status,
            )
        else:
            logger.info("webhook_invoice_failure_lost_race", invoice_id=str(invoice.id))

        return ReconciliationResult(
            outcome=ReconciliationOutcome.PAYMENT_FAILED,
            message="Payment failed",
            invoice_id=invoice.id,
            subscription_id=invoice.subscription_id,
        )

    async def _apply_success(
        self, invoice: Invoice, notification: PaymentNotification
    ) -> ReconciliationResult:
        """Mark the invoice paid, activate the subscription and issue the license."""
        if invoice.status == InvoiceStatus.PAID.value:
            logger.info("webhook_already_processed", invoice_id=str(invoice.id))
            return ReconciliationResult(
                outcome=ReconciliationOutcome.ALREADY_PROCESSED,
                message="Already processed",
                invoice_id=invoice.id,
                subscription_id=invoice.subscription_id,
            )

        if invoice.status != InvoiceStatus.PENDING.value:
            # Terminal invoices are never reopened; an operator has to remediate
            logger.error(
                "webhook_late_payment",
                invoice_id=str(invoice.id),
                invoice_status=invoice.status,
                payment_id=notification.provider_payment_id,
                price_amount=str(notification.price_amount),
                price_currency=notification.price_currency,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.LATE_PAYMENT,
                message=f"Payment received for {invoice.status} invoice",
                invoice_id=invoice.id,
                subscription_id=invoice.subscription_id,
            )

        now = _utc_now()
        claimed = await self._transition_pending_invoice(invoice.id, InvoiceStatus.PAID, paid_at=now)
        if not claimed:
            await self.session.rollback()
            logger.info("webhook_invoice_claimed_elsewhere", invoice_id=str(invoice.id))
            return ReconciliationResult(
                outcome=ReconciliationOutcome.ALREADY_PROCESSED,
                message="Already processed",
                invoice_id=invoice.id,
                subscription_id=invoice.subscription_id,
            )

        subscription = await self._lock_subscription(invoice.subscription_id)
        if subscription is None:
            await self.session.rollback()
            raise DataIntegrityError(
                f"Invoice {invoice.id} references missing subscription {invoice.subscription_id}"
            )

        plan = await self._get_plan(subscription.plan_id)
        if plan is None:
            await self.session.rollback()
            raise DataIntegrityError(
                f"Subscription {subscription.id} references missing plan {subscription.plan_id}"
            )

        first_activation = subscription.starts_at is None
        window = compute_expiration(plan, subscription.starts_at, subscription.expires_at, now)

        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.starts_at = window.starts_at
        subscription.expires_at = window.expires_at

        if first_activation and subscription.invite_code_id is not None:
            await self.invite_codes.increment_usage(subscription.invite_code_id)

        # Payment and activation are durable before the license authority is called
        await self.session.commit()

        logger.info(
            "webhook_invoice_paid",
            invoice_id=str(invoice.id),
            subscription_id=str(subscription.id),
            first_activation=first_activation,
            expires_at=window.expires_at.isoformat() if window.expires_at else None,
        )

        try:
            grant = await self.license_client.create_or_extend(
                LicenseUpsertRequest(
                    user_email=subscription.user_email,
                    plan_code=plan.code,
                    starts_at=window.starts_at,
                    expires_at=window.expires_at,
                    max_requests_per_day=plan.max_requests_per_day,
                )
            )
        except LicenseServiceError as e:
            subscription.status = SubscriptionStatus.PAYMENT_RECEIVED_BUT_LICENSE_FAILED.value
            await self.session.commit()
            logger.error(
                "webhook_license_failed",
                subscription_id=str(subscription.id),
                user_email=mask_secret(subscription.user_email),
                error=e.message,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.LICENSE_FAILED,
                message="Payment received but license issuance failed",
                invoice_id=invoice.id,
                subscription_id=subscription.id,
            )

        subscription.license_key = grant.license_key
        await self.session.commit()

        logger.info(
            "webhook_subscription_activated",
            subscription_id=str(subscription.id),
            license_key=mask_secret(grant.license_key),
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.ACTIVATED,
            message="Subscription activated",
            invoice_id=invoice.id,
            subscription_id=subscription.id,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_invoice(self, notification: PaymentNotification) -> Invoice | None:
        """
        Find the invoice a notification refers to.

        Order: our invoice id (order_id), then the gateway payment id, then the
        gateway invoice id stored at checkout.
        """
        invoice_id = _parse_order_id(notification.order_id)
        if invoice_id is not None:
            invoice = await self.session.get(Invoice, invoice_id)
            if invoice is not None:
                return invoice

        for provider_id in (notification.provider_payment_id, notification.provider_invoice_id):
            if not provider_id:
                continue
            stmt = select(Invoice).where(Invoice.provider_payment_id == provider_id)
            result = await self.session.execute(stmt)
            invoice = result.scalars().first()
            if invoice is not None:
                return invoice

        return None

    async def _transition_pending_invoice(
        self, invoice_id: UUID, target: InvoiceStatus, paid_at: datetime | None
    ) -> bool:
        """Compare-and-swap pending -> target. True only for the winning caller."""
        values: dict[str, object] = {"status": target.value, "updated_at": _utc_now()}
        if paid_at is not None:
            values["paid_at"] = paid_at

        stmt = (
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status == InvoiceStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def _lock_subscription(self, subscription_id: UUID) -> Subscription | None:
        """Lock subscription row for update (SELECT FOR UPDATE)."""
        stmt = select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_plan(self, plan_id: UUID) -> Plan | None:
        """Load a plan by id."""
        return await self.session.get(Plan, plan_id)
