"""
Subscription Admin Service - operator-initiated subscription changes.

Local changes always win: the license authority is told afterwards through
the non-raising update path, so an unreachable authority never blocks an
operator.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.db.models import Plan, Subscription
from license_billing.exceptions import (
    DataIntegrityError,
    InputValidationError,
    LicenseServiceError,
    ResourceNotFoundError,
)
from license_billing.models.api import SubscriptionPatchRequest, SubscriptionStatus
from license_billing.models.domain import SubscriptionDetails
from license_billing.models.license import LicenseUpdateRequest, LicenseUpsertRequest
from license_billing.observability import get_logger, mask_secret, metrics
from license_billing.services.expiration import extend_expiration
from license_billing.services.invite_codes import InviteCodeService, normalize_invite_code
from license_billing.services.license_sync import LicenseSyncClient
from license_billing.services.subscriptions import SubscriptionService

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset(
    {SubscriptionStatus.PAYMENT_RECEIVED_BUT_LICENSE_FAILED.value, SubscriptionStatus.ACTIVE.value}
)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class SubscriptionAdminService:
    """Applies admin patches and manual license re-issuance."""

    def __init__(self, session: AsyncSession, license_client: LicenseSyncClient) -> None:
        """Initialize admin service with database session and license client."""
        self.session = session
        self.license_client = license_client
        self.invite_codes = InviteCodeService(session)
        self.subscriptions = SubscriptionService(session)

    async def update_subscription(
        self, subscription_id: UUID, patch: SubscriptionPatchRequest
    ) -> SubscriptionDetails:
        """
        Apply a partial update to one subscription.

        add_days wins over expires_at and extends from the current expiry (or
        now). invite_code sent as null or blank clears the link. Only the
        license-relevant fields the operator supplied are forwarded to the
        license authority.

        Raises:
            InputValidationError: empty patch or null status
            ResourceNotFoundError: unknown subscription or invite code
        """
        fields = patch.model_fields_set
        if not fields:
            raise InputValidationError("NO_FIELDS", "At least one field must be provided")

        subscription = await self._lock_subscription(subscription_id)
        if subscription is None:
            raise ResourceNotFoundError("Subscription", str(subscription_id))

        forwarded: dict[str, Any] = {}

        if "status" in fields:
            if patch.status is None:
                raise InputValidationError("INVALID_STATUS", "status cannot be null")
            subscription.status = patch.status.value
            forwarded["status"] = patch.status.value

        if patch.add_days is not None:
            subscription.expires_at = extend_expiration(
                subscription.expires_at, patch.add_days, _utc_now()
            )
            forwarded["add_days"] = patch.add_days
        elif "expires_at" in fields:
            subscription.expires_at = patch.expires_at
            forwarded["expires_at"] = patch.expires_at

        if "invite_code" in fields:
            normalized = normalize_invite_code(patch.invite_code)
            if not normalized:
                subscription.invite_code_id = None
            else:
                invite = await self.invite_codes.find_by_code(normalized)
                if invite is None:
                    raise ResourceNotFoundError("InviteCode", normalized)
                subscription.invite_code_id = invite.invite_code_id

        if "max_requests" in fields:
            forwarded["max_requests"] = patch.max_requests

        await self.session.commit()
        metrics.admin_subscription_updates_total.inc()

        logger.info(
            "admin_subscription_updated",
            subscription_id=str(subscription_id),
            fields=sorted(fields),
            status=subscription.status,
            expires_at=subscription.expires_at.isoformat() if subscription.expires_at else None,
        )

        await self.license_client.update_from_subscription(
            LicenseUpdateRequest(
                subscription_id=subscription.id,
                user_email=subscription.user_email,
                license_key=subscription.license_key,
                **forwarded,
            )
        )

        return await self.subscriptions.get_subscription(subscription_id)

    async def retry_license_issuance(self, subscription_id: UUID) -> SubscriptionDetails:
        """
        Re-issue the license for a paid subscription whose issuance failed.

        Uses the stored window as-is; nothing is recomputed or extended. If a
        concurrent retry stored a key first, that key is kept.

        Raises:
            ResourceNotFoundError: unknown subscription
            InputValidationError: subscription is not in a retryable state
            LicenseServiceError: the authority refused again
        """
        subscription = await self._lock_subscription(subscription_id)
        if subscription is None:
            raise ResourceNotFoundError("Subscription", str(subscription_id))

        retryable = subscription.status in RETRYABLE_STATUSES and (
            subscription.status != SubscriptionStatus.ACTIVE.value
            or subscription.license_key is None
        )
        if not retryable or subscription.starts_at is None:
            raise InputValidationError(
                "NOT_RETRYABLE",
                f"Subscription in status {subscription.status} does not need license issuance",
            )

        plan = await self.session.get(Plan, subscription.plan_id)
        if plan is None:
            raise DataIntegrityError(
                f"Subscription {subscription.id} references missing plan {subscription.plan_id}"
            )

        # Release the row lock before the outbound call
        await self.session.commit()

        try:
            grant = await self.license_client.create_or_extend(
                LicenseUpsertRequest(
                    user_email=subscription.user_email,
                    plan_code=plan.code,
                    starts_at=subscription.starts_at,
                    expires_at=subscription.expires_at,
                    max_requests_per_day=plan.max_requests_per_day,
                )
            )
        except LicenseServiceError as e:
            logger.error(
                "admin_license_retry_failed", subscription_id=str(subscription_id), error=e.message
            )
            raise

        # A concurrent retry may have stored a key while the lock was released
        current = await self._lock_subscription(subscription_id)
        if current is None or current.license_key is not None:
            await self.session.rollback()
            logger.warning(
                "admin_license_retry_superseded",
                subscription_id=str(subscription_id),
                license_key=mask_secret(grant.license_key),
            )
            return await self.subscriptions.get_subscription(subscription_id)

        current.license_key = grant.license_key
        current.status = SubscriptionStatus.ACTIVE.value
        await self.session.commit()

        logger.info(
            "admin_license_retry_succeeded",
            subscription_id=str(subscription_id),
            license_key=mask_secret(grant.license_key),
        )
        return await self.subscriptions.get_subscription(subscription_id)

    async def _lock_subscription(self, subscription_id: UUID) -> Subscription | None:
        """Lock subscription row for update (SELECT FOR UPDATE)."""
        stmt = select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
