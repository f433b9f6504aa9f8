"""
Admin API routes for managing subscriptions and invite codes.

Protected by the static admin token (X-Admin-Token or Bearer).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.api.admin_dependencies import require_admin_token
from license_billing.api.billing_routes import plan_summary
from license_billing.api.dependencies import get_license_client
from license_billing.db.session import get_read_db, get_write_db
from license_billing.exceptions import (
    DataIntegrityError,
    InputValidationError,
    LicenseServiceError,
    ResourceNotFoundError,
)
from license_billing.models.api import (
    InviteCodeCreateRequest,
    InviteCodeResponse,
    InviteCodeSummary,
    InviteCodeUpdateRequest,
    Pagination,
    SubscriptionListResponse,
    SubscriptionPatchRequest,
    SubscriptionResponse,
)
from license_billing.models.domain import InviteCodeData, SubscriptionDetails
from license_billing.services.invite_codes import InviteCodeService
from license_billing.services.license_sync import LicenseSyncClient
from license_billing.services.subscription_admin import SubscriptionAdminService
from license_billing.services.subscriptions import SubscriptionService

router = APIRouter(
    prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin_token)]
)


# ============================================================================
# Response Builders
# ============================================================================


def subscription_response(details: SubscriptionDetails) -> SubscriptionResponse:
    """Build the admin subscription representation."""
    invite = details.invite_code
    return SubscriptionResponse(
        id=details.subscription_id,
        user_email=details.user_email,
        product_code=details.product_code,
        status=details.status,
        license_key=details.license_key,
        starts_at=details.starts_at,
        expires_at=details.expires_at,
        plan=plan_summary(details.plan),
        invite_code=(
            InviteCodeSummary(
                id=invite.invite_code_id, code=invite.code, type=invite.type, status=invite.status
            )
            if invite is not None
            else None
        ),
        created_at=details.created_at,
        updated_at=details.updated_at,
    )


def invite_code_response(invite: InviteCodeData) -> InviteCodeResponse:
    """Build the admin invite code representation."""
    return InviteCodeResponse(
        id=invite.invite_code_id,
        code=invite.code,
        type=invite.type,
        status=invite.status,
        max_uses=invite.max_uses,
        used_count=invite.used_count,
        expires_at=invite.expires_at,
        revenue_share_percent=invite.revenue_share_percent,
        owner_email=invite.owner_email,
        notes=invite.notes,
        created_at=invite.created_at,
        updated_at=invite.updated_at,
    )


def _validation_error(exc: InputValidationError, status_code: int) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"reason": exc.reason, "message": exc.message},
    )


# ============================================================================
# Subscriptions
# ============================================================================


@router.get("/subscriptions", response_model=SubscriptionListResponse)
async def list_subscriptions(
    page: int = Query(1),
    limit: int = Query(50),
    db: AsyncSession = Depends(get_read_db),
) -> SubscriptionListResponse:
    """Newest-first paginated subscription list."""
    service = SubscriptionService(db)

    try:
        result = await service.list_subscriptions(page, limit)
    except InputValidationError as exc:
        raise _validation_error(exc, status.HTTP_400_BAD_REQUEST) from exc

    return SubscriptionListResponse(
        subscriptions=[subscription_response(s) for s in result.subscriptions],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: UUID,
    patch: SubscriptionPatchRequest,
    db: AsyncSession = Depends(get_write_db),
    license_client: LicenseSyncClient = Depends(get_license_client),
) -> SubscriptionResponse:
    """
    Apply an operator change (pause, cancel, extend, relink invite).

    Succeeds even when the license authority cannot be updated.
    """
    service = SubscriptionAdminService(db, license_client)

    try:
        details = await service.update_subscription(subscription_id, patch)
    except InputValidationError as exc:
        raise _validation_error(exc, status.HTTP_422_UNPROCESSABLE_ENTITY) from exc
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    return subscription_response(details)


@router.post(
    "/subscriptions/{subscription_id}/retry-license", response_model=SubscriptionResponse
)
async def retry_license(
    subscription_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    license_client: LicenseSyncClient = Depends(get_license_client),
) -> SubscriptionResponse:
    """Re-issue the license for a paid subscription whose issuance failed."""
    service = SubscriptionAdminService(db, license_client)

    try:
        details = await service.retry_license_issuance(subscription_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InputValidationError as exc:
        raise _validation_error(exc, status.HTTP_409_CONFLICT) from exc
    except LicenseServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc
    except DataIntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    return subscription_response(details)


# ============================================================================
# Invite Codes
# ============================================================================


@router.post(
    "/invite-codes", response_model=InviteCodeResponse, status_code=status.HTTP_201_CREATED
)
async def create_invite_code(
    request: InviteCodeCreateRequest,
    db: AsyncSession = Depends(get_write_db),
) -> InviteCodeResponse:
    """Create an invite, referral or partner code."""
    service = InviteCodeService(db)

    try:
        invite = await service.create_invite_code(request)
    except InputValidationError as exc:
        code = (
            status.HTTP_409_CONFLICT
            if exc.reason == "DUPLICATE_CODE"
            else status.HTTP_422_UNPROCESSABLE_ENTITY
        )
        raise _validation_error(exc, code) from exc

    return invite_code_response(invite)


@router.patch("/invite-codes/{invite_code_id}", response_model=InviteCodeResponse)
async def update_invite_code(
    invite_code_id: UUID,
    request: InviteCodeUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
) -> InviteCodeResponse:
    """Change status, limits, expiry or revenue share of an invite code."""
    service = InviteCodeService(db)

    try:
        invite = await service.update_invite_code(invite_code_id, request)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InputValidationError as exc:
        raise _validation_error(exc, status.HTTP_422_UNPROCESSABLE_ENTITY) from exc

    return invite_code_response(invite)
