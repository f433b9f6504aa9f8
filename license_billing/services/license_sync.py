"""
License Sync Client - keeps the external license authority in step with billing.

Two calls with deliberately different failure contracts:
- create_or_extend raises LicenseServiceError on any failure, because issuance
  gates the customer's entitlement.
- update_from_subscription never raises. Admin changes must succeed locally
  even when the authority is down; drift is logged.
"""

import time

import httpx

from license_billing.config import Settings
from license_billing.exceptions import LicenseServiceError
from license_billing.models.license import (
    LicenseGrant,
    LicenseUpdateRequest,
    LicenseUpsertRequest,
    LicenseUpsertResponse,
)
from license_billing.observability import get_logger, mask_secret, metrics

logger = get_logger(__name__)


class LicenseSyncClient:
    """HTTP client for the license authority's admin API."""

    UPSERT_PATH = "/admin/license/upsert"
    UPDATE_PATH = "/admin/license/update"

    def __init__(
        self,
        base_url: str,
        admin_token: str,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.admin_token = admin_token
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "LicenseSyncClient":
        """Build a client from application settings."""
        return cls(
            base_url=settings.license_service_base_url,
            admin_token=settings.license_service_admin_token,
            timeout_seconds=settings.license_service_timeout_seconds,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    @property
    def is_configured(self) -> bool:
        """Both base URL and admin token are required for any call."""
        return bool(self.base_url and self.admin_token)

    async def create_or_extend(self, request: LicenseUpsertRequest) -> LicenseGrant:
        """
        Create a license or extend an existing one.

        Raises:
            LicenseServiceError: not configured, transport failure, non-2xx
                response, or a response without a license key
        """
        if not self.is_configured:
            raise LicenseServiceError("License service configuration is missing")

        started = time.perf_counter()
        success = False
        try:
            response = await self.http_client.post(
                f"{self.base_url}{self.UPSERT_PATH}",
                json=request.model_dump(mode="json", by_alias=True),
                headers={"Authorization": f"Bearer {self.admin_token}"},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            parsed = LicenseUpsertResponse.model_validate(response.json())
            success = True

        except httpx.HTTPStatusError as e:
            logger.error(
                "license_upsert_failed",
                status=e.response.status_code,
                text=e.response.text[:500],
                user_email=mask_secret(request.user_email),
            )
            raise LicenseServiceError(
                f"License authority returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "license_upsert_transport_error",
                error=str(e),
                error_type=type(e).__name__,
                user_email=mask_secret(request.user_email),
            )
            raise LicenseServiceError(f"License authority unreachable: {e}") from e
        except ValueError as e:
            # pydantic ValidationError and JSON decode errors
            logger.error("license_upsert_malformed_response", error=str(e))
            raise LicenseServiceError(f"Malformed license authority response: {e}") from e
        finally:
            metrics.record_license_call("upsert", success, time.perf_counter() - started)

        grant = LicenseGrant(
            license_key=parsed.license_key,
            plan=parsed.plan or request.plan_code,
            expires_at=parsed.expires_at if parsed.expires_at is not None else request.expires_at,
            limit_per_day=(
                parsed.limit_per_day
                if parsed.limit_per_day is not None
                else request.max_requests_per_day
            ),
        )

        logger.info(
            "license_upserted",
            user_email=mask_secret(request.user_email),
            plan=grant.plan,
            license_key=mask_secret(grant.license_key),
            expires_at=grant.expires_at.isoformat() if grant.expires_at else None,
        )
        return grant

    async def update_from_subscription(self, request: LicenseUpdateRequest) -> None:
        """
        Push an admin-side subscription change to the authority.

        Never raises. Skipped when the client is unconfigured or the
        subscription has no license key yet.
        """
        subscription_id = str(request.subscription_id)

        if not self.is_configured:
            logger.info("license_update_skipped_unconfigured", subscription_id=subscription_id)
            return

        if not request.license_key:
            logger.info("license_update_skipped_no_key", subscription_id=subscription_id)
            return

        body = request.to_wire()
        started = time.perf_counter()
        success = False
        try:
            response = await self.http_client.post(
                f"{self.base_url}{self.UPDATE_PATH}",
                json=body,
                headers={"X-Admin-Token": self.admin_token},
                timeout=self.timeout_seconds,
            )
            if response.is_success:
                success = True
                logger.info(
                    "license_update_succeeded",
                    subscription_id=subscription_id,
                    fields=sorted(body),
                    status_code=response.status_code,
                )
            else:
                logger.error(
                    "license_update_failed",
                    subscription_id=subscription_id,
                    status_code=response.status_code,
                    text=response.text[:500],
                    license_key=mask_secret(request.license_key),
                )
        except Exception as e:
            logger.error(
                "license_update_error",
                subscription_id=subscription_id,
                error=str(e),
                error_type=type(e).__name__,
                license_key=mask_secret(request.license_key),
            )
        finally:
            metrics.record_license_call("update", success, time.perf_counter() - started)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
