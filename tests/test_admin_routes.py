"""
Tests for the admin API: token auth, subscription and invite code management.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from license_billing.api.admin_dependencies import verify_admin_token
from license_billing.exceptions import (
    AuthenticationError,
    DataIntegrityError,
    InputValidationError,
    LicenseServiceError,
    ResourceNotFoundError,
)
from license_billing.models.api import SubscriptionStatus
from license_billing.models.domain import SubscriptionDetails, SubscriptionPage

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _details(plan_data, invite_data=None, **overrides) -> SubscriptionDetails:
    fields = {
        "subscription_id": uuid4(),
        "user_email": "buyer@example.com",
        "product_code": "shadow_intern",
        "status": SubscriptionStatus.ACTIVE,
        "license_key": "LIC-1",
        "starts_at": NOW,
        "expires_at": NOW + timedelta(days=30),
        "plan": plan_data,
        "invite_code": invite_data,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return SubscriptionDetails(**fields)


@pytest.fixture
def admin_service():
    """Patch the admin service used by the routes."""
    with patch("license_billing.api.admin_routes.SubscriptionAdminService") as mock_cls:
        yield mock_cls.return_value


@pytest.fixture
def invite_service():
    """Patch the invite code service used by the routes."""
    with patch("license_billing.api.admin_routes.InviteCodeService") as mock_cls:
        yield mock_cls.return_value


# ============================================================================
# Authentication
# ============================================================================


class TestVerifyAdminToken:
    """Token comparison independent of HTTP."""

    def test_matching_token(self):
        verify_admin_token("secret-token", "secret-token")

    @pytest.mark.parametrize(
        "token,expected,message",
        [
            ("anything", "", "Admin API is not configured"),
            (None, "secret-token", "Not authenticated"),
            ("", "secret-token", "Not authenticated"),
            ("wrong", "secret-token", "Invalid admin token"),
        ],
    )
    def test_rejections(self, token, expected, message):
        with pytest.raises(AuthenticationError) as exc_info:
            verify_admin_token(token, expected)

        assert exc_info.value.message == message


class TestAdminAuth:
    """Every admin route requires the token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/admin/subscriptions"),
            ("PATCH", f"/api/admin/subscriptions/{uuid4()}"),
            ("POST", f"/api/admin/subscriptions/{uuid4()}/retry-license"),
            ("POST", "/api/admin/invite-codes"),
            ("PATCH", f"/api/admin/invite-codes/{uuid4()}"),
        ],
    )
    def test_missing_token(self, client: TestClient, method, path):
        """No credentials is a 401 with a Bearer challenge."""
        response = client.request(method, path, json={})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_token(self, client: TestClient):
        response = client.get("/api/admin/subscriptions", headers={"X-Admin-Token": "nope"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid admin token"

    def test_bearer_token_accepted(
        self, client: TestClient, admin_headers: dict[str, str], db_session: AsyncMock
    ):
        """Authorization: Bearer works as well as X-Admin-Token."""
        count_result = MagicMock()
        count_result.scalar_one.return_value = 0
        rows_result = MagicMock()
        rows_result.all.return_value = []
        db_session.execute.side_effect = [count_result, rows_result]

        response = client.get(
            "/api/admin/subscriptions",
            headers={"Authorization": f"Bearer {admin_headers['X-Admin-Token']}"},
        )

        assert response.status_code == 200


# ============================================================================
# Subscriptions
# ============================================================================


class TestListSubscriptions:
    """GET /api/admin/subscriptions."""

    def test_page(self, client: TestClient, admin_headers: dict[str, str], plan_data, invite_data):
        details = _details(plan_data, invite_data)
        page = SubscriptionPage(subscriptions=[details], page=2, limit=10, total=11)

        with patch("license_billing.api.admin_routes.SubscriptionService") as mock_cls:
            mock_cls.return_value.list_subscriptions = AsyncMock(return_value=page)
            response = client.get(
                "/api/admin/subscriptions?page=2&limit=10", headers=admin_headers
            )

        assert response.status_code == 200
        data = response.json()
        assert data["pagination"] == {"page": 2, "limit": 10, "total": 11, "total_pages": 2}
        item = data["subscriptions"][0]
        assert item["id"] == str(details.subscription_id)
        assert item["plan"]["code"] == "pro_monthly"
        assert item["invite_code"]["code"] == "friends2026"
        mock_cls.return_value.list_subscriptions.assert_awaited_once_with(2, 10)

    def test_invalid_limit(self, client: TestClient, admin_headers: dict[str, str]):
        response = client.get("/api/admin/subscriptions?limit=500", headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "INVALID_LIMIT"


class TestPatchSubscription:
    """PATCH /api/admin/subscriptions/{id}."""

    def test_update(
        self, client: TestClient, admin_headers: dict[str, str], admin_service, plan_data
    ):
        details = _details(plan_data, status=SubscriptionStatus.PAUSED)
        admin_service.update_subscription = AsyncMock(return_value=details)

        response = client.patch(
            f"/api/admin/subscriptions/{details.subscription_id}",
            json={"status": "paused", "add_days": 7},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "paused"
        sent = admin_service.update_subscription.call_args.args[1]
        assert sent.model_fields_set == {"status", "add_days"}

    def test_empty_body(self, client: TestClient, admin_headers: dict[str, str], admin_service):
        admin_service.update_subscription = AsyncMock(
            side_effect=InputValidationError("NO_FIELDS", "At least one field must be provided")
        )

        response = client.patch(
            f"/api/admin/subscriptions/{uuid4()}", json={}, headers=admin_headers
        )

        assert response.status_code == 422
        assert response.json()["detail"]["reason"] == "NO_FIELDS"

    def test_unknown_field_rejected(self, client: TestClient, admin_headers: dict[str, str]):
        """Typos are refused instead of silently ignored."""
        response = client.patch(
            f"/api/admin/subscriptions/{uuid4()}",
            json={"expires": "2027-01-01T00:00:00Z"},
            headers=admin_headers,
        )

        assert response.status_code == 422

    def test_naive_expires_at_rejected(self, client: TestClient, admin_headers: dict[str, str]):
        """An expiry without a UTC offset never reaches the service."""
        response = client.patch(
            f"/api/admin/subscriptions/{uuid4()}",
            json={"expires_at": "2027-01-01T00:00:00"},
            headers=admin_headers,
        )

        assert response.status_code == 422

    @pytest.mark.parametrize("add_days", [0, -5])
    def test_non_positive_add_days(
        self, client: TestClient, admin_headers: dict[str, str], add_days
    ):
        response = client.patch(
            f"/api/admin/subscriptions/{uuid4()}",
            json={"add_days": add_days},
            headers=admin_headers,
        )

        assert response.status_code == 422

    def test_not_found(self, client: TestClient, admin_headers: dict[str, str], admin_service):
        admin_service.update_subscription = AsyncMock(
            side_effect=ResourceNotFoundError("Subscription", "x")
        )

        response = client.patch(
            f"/api/admin/subscriptions/{uuid4()}", json={"status": "canceled"}, headers=admin_headers
        )

        assert response.status_code == 404


class TestRetryLicense:
    """POST /api/admin/subscriptions/{id}/retry-license."""

    def test_success(
        self, client: TestClient, admin_headers: dict[str, str], admin_service, plan_data
    ):
        details = _details(plan_data, license_key="LIC-NEW")
        admin_service.retry_license_issuance = AsyncMock(return_value=details)

        response = client.post(
            f"/api/admin/subscriptions/{details.subscription_id}/retry-license",
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["license_key"] == "LIC-NEW"

    @pytest.mark.parametrize(
        "error,status_code",
        [
            (ResourceNotFoundError("Subscription", "x"), 404),
            (InputValidationError("NOT_RETRYABLE", "nothing to do"), 409),
            (LicenseServiceError("License service returned 503", status_code=503), 502),
            (DataIntegrityError("missing plan"), 500),
        ],
    )
    def test_error_mapping(
        self, client: TestClient, admin_headers: dict[str, str], admin_service, error, status_code
    ):
        admin_service.retry_license_issuance = AsyncMock(side_effect=error)

        response = client.post(
            f"/api/admin/subscriptions/{uuid4()}/retry-license", headers=admin_headers
        )

        assert response.status_code == status_code


# ============================================================================
# Invite Codes
# ============================================================================


class TestInviteCodes:
    """POST and PATCH /api/admin/invite-codes."""

    def test_create(
        self, client: TestClient, admin_headers: dict[str, str], invite_service, invite_data
    ):
        invite_service.create_invite_code = AsyncMock(return_value=invite_data)

        response = client.post(
            "/api/admin/invite-codes",
            json={"code": "FRIENDS2026", "type": "REFERRAL", "max_uses": 10},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json()["code"] == "friends2026"
        assert response.json()["used_count"] == 3
        sent = invite_service.create_invite_code.call_args.args[0]
        assert sent.type.value == "REFERRAL"

    @pytest.mark.parametrize(
        "reason,status_code",
        [("DUPLICATE_CODE", 409), ("INVALID_REVENUE_SHARE", 422), ("INVALID_CODE", 422)],
    )
    def test_create_rejected(
        self, client: TestClient, admin_headers: dict[str, str], invite_service, reason, status_code
    ):
        invite_service.create_invite_code = AsyncMock(
            side_effect=InputValidationError(reason, "refused")
        )

        response = client.post(
            "/api/admin/invite-codes", json={"code": "friends2026"}, headers=admin_headers
        )

        assert response.status_code == status_code
        assert response.json()["detail"]["reason"] == reason

    def test_update(
        self, client: TestClient, admin_headers: dict[str, str], invite_service, invite_data
    ):
        invite_service.update_invite_code = AsyncMock(return_value=invite_data)

        response = client.patch(
            f"/api/admin/invite-codes/{invite_data.invite_code_id}",
            json={"status": "PAUSED", "revenue_share_percent": "12.5"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        sent = invite_service.update_invite_code.call_args.args[1]
        assert sent.revenue_share_percent == Decimal("12.5")
        assert sent.model_fields_set == {"status", "revenue_share_percent"}

    def test_update_not_found(
        self, client: TestClient, admin_headers: dict[str, str], invite_service
    ):
        invite_service.update_invite_code = AsyncMock(
            side_effect=ResourceNotFoundError("InviteCode", "x")
        )

        response = client.patch(
            f"/api/admin/invite-codes/{uuid4()}", json={"max_uses": 5}, headers=admin_headers
        )

        assert response.status_code == 404

    def test_update_below_used_count(
        self, client: TestClient, admin_headers: dict[str, str], invite_service
    ):
        invite_service.update_invite_code = AsyncMock(
            side_effect=InputValidationError("MAX_USES_BELOW_USED", "too low")
        )

        response = client.patch(
            f"/api/admin/invite-codes/{uuid4()}", json={"max_uses": 1}, headers=admin_headers
        )

        assert response.status_code == 422
