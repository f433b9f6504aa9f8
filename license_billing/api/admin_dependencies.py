"""
Admin authentication dependencies for protecting admin routes.

Operators authenticate with the static ADMIN_API_TOKEN, sent either as
X-Admin-Token or as Authorization: Bearer.
"""

import secrets

from fastapi import Header, HTTPException, status

from license_billing.config import get_settings
from license_billing.exceptions import AuthenticationError
from license_billing.observability import get_logger

logger = get_logger(__name__)


def _extract_token(x_admin_token: str | None, authorization: str | None) -> str | None:
    if x_admin_token:
        return x_admin_token.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer ") :].strip()
    return None


def verify_admin_token(token: str | None, expected: str | None) -> None:
    """
    Compare a presented admin token against the configured one in constant time.

    Raises:
        AuthenticationError: If no token is configured, none was sent, or it differs
    """
    if not expected:
        logger.error("admin_auth_not_configured")
        raise AuthenticationError("Admin API is not configured")

    if not token:
        logger.warning("admin_auth_no_token")
        raise AuthenticationError("Not authenticated")

    if not secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("admin_auth_invalid_token")
        raise AuthenticationError("Invalid admin token")


async def require_admin_token(
    x_admin_token: str | None = Header(None),
    authorization: str | None = Header(None),
) -> None:
    """
    Require a valid admin token.

    Raises:
        HTTPException(401): If the token is missing, wrong, or no token is configured
    """
    try:
        verify_admin_token(
            _extract_token(x_admin_token, authorization), get_settings().admin_api_token
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
