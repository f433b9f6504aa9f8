"""
Public Routes - invite code pre-check and health.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from license_billing.db.session import get_read_db
from license_billing.models.api import (
    HealthResponse,
    InviteValidateError,
    InviteValidateRequest,
    InviteValidateResponse,
)
from license_billing.models.domain import InviteCodeRejected
from license_billing.services.invite_codes import InviteCodeService

router = APIRouter(tags=["public"])


@router.post(
    "/api/invite/validate",
    response_model=InviteValidateResponse,
    responses={400: {"model": InviteValidateError}},
)
async def validate_invite_code(
    request: InviteValidateRequest,
    db: AsyncSession = Depends(get_read_db),
) -> InviteValidateResponse | JSONResponse:
    """
    Check an invite code before checkout.

    Never consumes a use.
    """
    result = await InviteCodeService(db).validate(request.code)

    if isinstance(result, InviteCodeRejected):
        body = InviteValidateError(error=result.message, reason=result.kind)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json")
        )

    invite = result.invite
    return InviteValidateResponse(
        code=invite.code,
        type=invite.type,
        status=invite.status,
        max_uses=invite.max_uses,
        used_count=invite.used_count,
        expires_at=invite.expires_at,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
