"""
Invite Code Service - validation, usage accounting and admin management.

Validation is read-only and returns a typed result; only a successful first
activation consumes a use (see increment_usage).
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.db.models import InviteCode
from license_billing.exceptions import InputValidationError, ResourceNotFoundError
from license_billing.models.api import (
    InviteCodeCreateRequest,
    InviteCodeStatus,
    InviteCodeType,
    InviteCodeUpdateRequest,
    InviteRejectionKind,
)
from license_billing.models.domain import (
    InviteCodeAccepted,
    InviteCodeData,
    InviteCodeRejected,
    InviteCodeValidation,
)
from license_billing.observability import get_logger, metrics

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def normalize_invite_code(code: str | None) -> str:
    """Trim and lower-case a user-supplied code."""
    return (code or "").strip().lower()


def invite_to_domain(invite: InviteCode) -> InviteCodeData:
    """Convert ORM invite code to domain model."""
    return InviteCodeData(
        invite_code_id=invite.id,
        code=invite.code,
        type=InviteCodeType(invite.type),
        status=InviteCodeStatus(invite.status),
        max_uses=invite.max_uses,
        used_count=invite.used_count,
        expires_at=invite.expires_at,
        revenue_share_percent=invite.revenue_share_percent,
        owner_email=invite.owner_email,
        notes=invite.notes,
        created_at=invite.created_at,
        updated_at=invite.updated_at,
    )


def evaluate_invite_code(
    invite: InviteCodeData | None, normalized: str, now: datetime
) -> InviteCodeValidation:
    """
    Decide whether an invite code may be used.

    Checks run in a fixed order so that a code failing several of them always
    reports the same kind: NOT_FOUND, NOT_ACTIVE, EXPIRED, LIMIT_REACHED.
    """
    if not normalized:
        return InviteCodeRejected(InviteRejectionKind.NOT_FOUND, "Invite code is required")

    if invite is None:
        return InviteCodeRejected(InviteRejectionKind.NOT_FOUND, "Invite code is invalid")

    if invite.status != InviteCodeStatus.ACTIVE:
        return InviteCodeRejected(InviteRejectionKind.NOT_ACTIVE, "Invite code is not active")

    if invite.expires_at is not None and invite.expires_at < now:
        return InviteCodeRejected(InviteRejectionKind.EXPIRED, "Invite code has expired")

    if invite.max_uses is not None and invite.used_count >= invite.max_uses:
        return InviteCodeRejected(
            InviteRejectionKind.LIMIT_REACHED, "Invite code usage limit has been reached"
        )

    return InviteCodeAccepted(invite)


def _validate_revenue_share(value: Decimal | None) -> None:
    if value is not None and not (Decimal(0) <= value <= Decimal(100)):
        raise InputValidationError(
            "INVALID_REVENUE_SHARE", "revenue_share_percent must be between 0 and 100"
        )


class InviteCodeService:
    """Invite code lookups, validation and admin mutations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize invite code service with database session."""
        self.session = session

    async def validate(self, code: str | None) -> InviteCodeValidation:
        """Validate a user-supplied code without consuming it."""
        normalized = normalize_invite_code(code)
        invite = await self._find_by_code(normalized) if normalized else None

        result = evaluate_invite_code(
            invite_to_domain(invite) if invite is not None else None, normalized, _utc_now()
        )

        if isinstance(result, InviteCodeRejected):
            logger.info("invite_code_rejected", code=normalized, reason=result.kind.value)
            metrics.record_invite_validation(result.kind.value)
        else:
            metrics.record_invite_validation("ok")

        return result

    async def find_by_code(self, code: str) -> InviteCodeData | None:
        """Look up a code by its normalized form, without validating it."""
        invite = await self._find_by_code(normalize_invite_code(code))
        return invite_to_domain(invite) if invite is not None else None

    async def increment_usage(self, invite_code_id: UUID) -> bool:
        """
        Consume one use of an invite code.

        Single conditional UPDATE, so concurrent activations can never push
        used_count past max_uses. Returns False when the code is exhausted or
        gone. Does not commit.
        """
        stmt = (
            update(InviteCode)
            .where(
                InviteCode.id == invite_code_id,
                or_(InviteCode.max_uses.is_(None), InviteCode.used_count < InviteCode.max_uses),
            )
            .values(used_count=InviteCode.used_count + 1, updated_at=_utc_now())
        )
        result = await self.session.execute(stmt)
        incremented = result.rowcount == 1

        if not incremented:
            logger.warning("invite_code_increment_skipped", invite_code_id=str(invite_code_id))

        return incremented

    async def create_invite_code(self, request: InviteCodeCreateRequest) -> InviteCodeData:
        """Create a new invite code. The code is stored normalized."""
        normalized = normalize_invite_code(request.code)
        if not normalized:
            raise InputValidationError("INVALID_CODE", "Invite code cannot be blank")

        _validate_revenue_share(request.revenue_share_percent)

        if await self._find_by_code(normalized) is not None:
            raise InputValidationError("DUPLICATE_CODE", f"Invite code already exists: {normalized}")

        invite = InviteCode(
            code=normalized,
            type=request.type.value,
            status=request.status.value,
            max_uses=request.max_uses,
            used_count=0,
            expires_at=request.expires_at,
            revenue_share_percent=request.revenue_share_percent,
            owner_email=request.owner_email,
            notes=request.notes,
        )
        self.session.add(invite)

        try:
            await self.session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent create of the same code
            await self.session.rollback()
            raise InputValidationError(
                "DUPLICATE_CODE", f"Invite code already exists: {normalized}"
            ) from e

        await self.session.commit()
        await self.session.refresh(invite)

        logger.info("invite_code_created", code=normalized, type=invite.type)
        return invite_to_domain(invite)

    async def update_invite_code(
        self, invite_code_id: UUID, request: InviteCodeUpdateRequest
    ) -> InviteCodeData:
        """Apply an admin update. Only fields present in the request change."""
        invite = await self._lock_by_id(invite_code_id)
        if invite is None:
            raise ResourceNotFoundError("InviteCode", str(invite_code_id))

        changes = request.model_fields_set
        if not changes:
            raise InputValidationError("NO_FIELDS", "At least one field must be provided")

        if "max_uses" in changes and request.max_uses is not None:
            if request.max_uses < invite.used_count:
                raise InputValidationError(
                    "MAX_USES_BELOW_USED",
                    f"max_uses ({request.max_uses}) cannot be below used_count "
                    f"({invite.used_count})",
                )

        if "revenue_share_percent" in changes:
            _validate_revenue_share(request.revenue_share_percent)

        if "status" in changes:
            if request.status is None:
                raise InputValidationError("INVALID_STATUS", "status cannot be null")
            invite.status = request.status.value
        if "max_uses" in changes:
            invite.max_uses = request.max_uses
        if "expires_at" in changes:
            invite.expires_at = request.expires_at
        if "revenue_share_percent" in changes:
            invite.revenue_share_percent = request.revenue_share_percent
        if "owner_email" in changes:
            invite.owner_email = request.owner_email
        if "notes" in changes:
            invite.notes = request.notes

        await self.session.commit()
        await self.session.refresh(invite)

        logger.info(
            "invite_code_updated", invite_code_id=str(invite_code_id), fields=sorted(changes)
        )
        return invite_to_domain(invite)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_by_code(self, normalized: str) -> InviteCode | None:
        """Find invite code by normalized code."""
        stmt = select(InviteCode).where(InviteCode.code == normalized)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_by_id(self, invite_code_id: UUID) -> InviteCode | None:
        """Lock invite code row for update (SELECT FOR UPDATE)."""
        stmt = select(InviteCode).where(InviteCode.id == invite_code_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
