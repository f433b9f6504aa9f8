"""
Webhook Routes - NOWPayments IPN endpoint.

Every business outcome is acknowledged with 200 so the gateway stops
retrying. Only a bad signature (401) or an internal failure (500) is
reported as an error; a 500 makes the gateway redeliver.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.api.dependencies import get_license_client
from license_billing.config import get_settings
from license_billing.db.session import get_write_db
from license_billing.exceptions import AuthenticationError, DataIntegrityError
from license_billing.models.api import (
    NowPaymentsWebhookPayload,
    ReconciliationOutcome,
    WebhookAckResponse,
)
from license_billing.models.domain import PaymentNotification
from license_billing.observability import get_logger, log_context, metrics
from license_billing.services.license_sync import LicenseSyncClient
from license_billing.services.reconciler import PaymentReconciler
from license_billing.services.signature import require_valid_signature

logger = get_logger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "x-nowpayments-sig"


@router.post("/nowpayments", response_model=WebhookAckResponse)
async def nowpayments_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    license_client: LicenseSyncClient = Depends(get_license_client),
) -> WebhookAckResponse:
    """
    Handle a NOWPayments payment notification.

    The signature is computed over the raw body, so it is read before any
    parsing happens.
    """
    raw_body = await request.body()

    try:
        require_valid_signature(
            raw_body, request.headers.get(SIGNATURE_HEADER), get_settings().nowpayments_ipn_secret
        )
    except AuthenticationError as exc:
        metrics.webhook_signature_failures_total.inc()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        ) from exc

    try:
        payload = NowPaymentsWebhookPayload.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.error("webhook_payload_invalid", errors=exc.errors(include_context=False))
        metrics.record_error("ValidationError", "nowpayments_webhook")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Invalid webhook payload",
        ) from exc

    if not payload.payment_id or not payload.payment_status:
        logger.warning(
            "webhook_missing_required_fields",
            order_id=payload.order_id,
            has_payment_id=bool(payload.payment_id),
            has_payment_status=bool(payload.payment_status),
        )
        metrics.record_webhook(ReconciliationOutcome.IGNORED.value)
        return WebhookAckResponse(
            status="ignored",
            outcome=ReconciliationOutcome.IGNORED,
            message="Missing required fields: payment_id, payment_status",
        )

    notification = PaymentNotification(
        provider_payment_id=payload.payment_id,
        payment_status=payload.payment_status,
        order_id=payload.order_id,
        provider_invoice_id=payload.invoice_id,
        price_amount=payload.price_amount,
        price_currency=payload.price_currency,
    )

    with log_context(payment_id=notification.provider_payment_id, order_id=notification.order_id):
        logger.info(
            "webhook_received",
            payment_status=notification.payment_status,
            price_amount=str(notification.price_amount),
            price_currency=notification.price_currency,
        )

        reconciler = PaymentReconciler(db, license_client)
        try:
            result = await reconciler.reconcile(notification)

        except DataIntegrityError as exc:
            logger.error("webhook_data_integrity_error", error=exc.message)
            metrics.record_error("DataIntegrityError", "nowpayments_webhook")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Database integrity error",
            ) from exc

        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("webhook_database_error", error=str(exc), exc_info=True)
            metrics.record_error(type(exc).__name__, "nowpayments_webhook")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Database error",
            ) from exc

    return WebhookAckResponse(outcome=result.outcome, message=result.message)
