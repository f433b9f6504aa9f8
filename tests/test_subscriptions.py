"""
Tests for SubscriptionService: checkout, status lookups and listing.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit
from uuid import uuid4

import pytest

from license_billing.db.models import Invoice, Subscription
from license_billing.exceptions import (
    AccessDeniedError,
    InputValidationError,
    PaymentProviderError,
    ResourceNotFoundError,
)
from license_billing.models.api import (
    CreateSubscriptionRequest,
    InviteRejectionKind,
    InvoiceStatus,
    SubscriptionStatus,
)
from license_billing.models.domain import GatewayInvoice, InviteCodeAccepted, InviteCodeRejected
from license_billing.services.subscriptions import SubscriptionService

SUCCESS_URL = "https://shop.test/success"
CANCEL_URL = "https://shop.test/cancel"


def _request(**overrides) -> CreateSubscriptionRequest:
    fields = {
        "plan_code": "pro_monthly",
        "user_email": "buyer@example.com",
        "product_code": "shadow_intern",
        "invite_code": "FRIENDS2026",
    }
    fields.update(overrides)
    return CreateSubscriptionRequest(**fields)


@pytest.fixture
def service(db_session: AsyncMock) -> SubscriptionService:
    return SubscriptionService(db_session)


@pytest.fixture
def accepted_invite(invite_data):
    """Patch invite validation to accept the code."""
    with patch("license_billing.services.subscriptions.InviteCodeService") as mock_cls:
        mock_cls.return_value.validate = AsyncMock(return_value=InviteCodeAccepted(invite_data))
        yield mock_cls


def _added(db_session: AsyncMock, model: type) -> list:
    return [call.args[0] for call in db_session.add.call_args_list if isinstance(call.args[0], model)]


# ============================================================================
# create_subscription
# ============================================================================


class TestCreateSubscriptionValidation:
    """Checks that refuse checkout before anything is written."""

    @pytest.mark.asyncio
    async def test_rejected_invite_code(
        self, service: SubscriptionService, db_session: AsyncMock, payment_gateway: AsyncMock
    ):
        """The rejection kind becomes the error reason."""
        with patch("license_billing.services.subscriptions.InviteCodeService") as mock_cls:
            mock_cls.return_value.validate = AsyncMock(
                return_value=InviteCodeRejected(InviteRejectionKind.EXPIRED, "Invite code has expired")
            )
            with pytest.raises(InputValidationError) as exc_info:
                await service.create_subscription(
                    _request(), payment_gateway, SUCCESS_URL, CANCEL_URL
                )

        assert exc_info.value.reason == "EXPIRED"
        db_session.add.assert_not_called()
        payment_gateway.create_invoice.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", ["not-an-email", "a@b", "two words@example.com"])
    async def test_invalid_email(
        self, service: SubscriptionService, payment_gateway: AsyncMock, accepted_invite, email
    ):
        """Malformed emails are refused."""
        with pytest.raises(InputValidationError) as exc_info:
            await service.create_subscription(
                _request(user_email=email), payment_gateway, SUCCESS_URL, CANCEL_URL
            )

        assert exc_info.value.reason == "INVALID_EMAIL"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field", ["success_redirect_url", "cancel_redirect_url"]
    )
    async def test_invalid_redirect_url(
        self, service: SubscriptionService, payment_gateway: AsyncMock, accepted_invite, field
    ):
        """Redirects must be HTTP(S) URLs."""
        with pytest.raises(InputValidationError) as exc_info:
            await service.create_subscription(
                _request(**{field: "javascript:alert(1)"}), payment_gateway, SUCCESS_URL, CANCEL_URL
            )

        assert exc_info.value.reason == "INVALID_REDIRECT_URL"

    @pytest.mark.asyncio
    async def test_unknown_plan(
        self, service: SubscriptionService, db_session: AsyncMock, payment_gateway: AsyncMock,
        accepted_invite,
    ):
        """An unknown plan code is a not-found error."""
        with patch.object(service, "_find_plan_by_code", new_callable=AsyncMock, return_value=None):
            with pytest.raises(ResourceNotFoundError) as exc_info:
                await service.create_subscription(
                    _request(plan_code="gold"), payment_gateway, SUCCESS_URL, CANCEL_URL
                )

        assert exc_info.value.resource == "Plan"
        assert exc_info.value.identifier == "gold"
        db_session.add.assert_not_called()


class TestCreateSubscription:
    """Successful and degraded checkout."""

    @pytest.mark.asyncio
    async def test_creates_pending_rows_and_gateway_invoice(
        self,
        service: SubscriptionService,
        db_session: AsyncMock,
        payment_gateway: AsyncMock,
        accepted_invite,
        invite_data,
        make_plan,
    ):
        """Pending subscription and invoice are stored and linked to the gateway."""
        plan = make_plan(price_usd=Decimal("19.99"))
        payment_gateway.create_invoice.return_value = GatewayInvoice(
            provider_invoice_id="5077125051", invoice_url="https://nowpayments.io/payment/?iid=5077125051"
        )

        with patch.object(service, "_find_plan_by_code", new_callable=AsyncMock, return_value=plan):
            created = await service.create_subscription(
                _request(), payment_gateway, SUCCESS_URL, CANCEL_URL
            )

        subscription = _added(db_session, Subscription)[0]
        invoice = _added(db_session, Invoice)[0]
        assert subscription.status == SubscriptionStatus.PENDING_PAYMENT.value
        assert subscription.invite_code_id == invite_data.invite_code_id
        assert subscription.plan_id == plan.id
        assert invoice.status == InvoiceStatus.PENDING.value
        assert invoice.amount_usd == Decimal("19.99")
        assert invoice.subscription_id == subscription.id
        assert invoice.payment_provider == "nowpayments"
        assert invoice.provider_payment_id == "5077125051"
        assert db_session.commit.await_count == 2

        assert created.subscription_id == subscription.id
        assert created.invoice_id == invoice.id
        assert created.payment_url == "https://nowpayments.io/payment/?iid=5077125051"
        assert created.plan.code == "pro_monthly"

        kwargs = payment_gateway.create_invoice.call_args.kwargs
        assert kwargs["order_id"] == str(invoice.id)
        assert kwargs["amount_usd"] == Decimal("19.99")
        assert kwargs["customer_email"] == "buyer@example.com"
        success = urlsplit(kwargs["success_url"])
        assert f"{success.scheme}://{success.netloc}{success.path}" == SUCCESS_URL
        assert parse_qs(success.query) == {
            "subscriptionId": [str(subscription.id)],
            "email": ["buyer@example.com"],
        }
        assert kwargs["cancel_url"].startswith(CANCEL_URL)

    @pytest.mark.asyncio
    async def test_caller_redirects_override_defaults(
        self, service: SubscriptionService, payment_gateway: AsyncMock, accepted_invite, make_plan
    ):
        """Explicit redirects keep their own query string."""
        payment_gateway.create_invoice.return_value = GatewayInvoice(
            provider_invoice_id="1", invoice_url="https://nowpayments.io/payment/?iid=1"
        )

        with patch.object(
            service, "_find_plan_by_code", new_callable=AsyncMock, return_value=make_plan()
        ):
            await service.create_subscription(
                _request(success_redirect_url="https://app.test/done?ref=mail"),
                payment_gateway,
                SUCCESS_URL,
                CANCEL_URL,
            )

        success = urlsplit(payment_gateway.create_invoice.call_args.kwargs["success_url"])
        assert success.netloc == "app.test"
        assert parse_qs(success.query)["ref"] == ["mail"]
        assert "subscriptionId" in parse_qs(success.query)

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_pending_invoice(
        self,
        service: SubscriptionService,
        db_session: AsyncMock,
        payment_gateway: AsyncMock,
        accepted_invite,
        make_plan,
    ):
        """A gateway outage returns the pending rows without a payment link."""
        payment_gateway.create_invoice.side_effect = PaymentProviderError("gateway down")

        with patch.object(
            service, "_find_plan_by_code", new_callable=AsyncMock, return_value=make_plan()
        ):
            created = await service.create_subscription(
                _request(), payment_gateway, SUCCESS_URL, CANCEL_URL
            )

        invoice = _added(db_session, Invoice)[0]
        assert created.payment_url is None
        assert created.payment_provider is None
        assert created.provider_payment_id is None
        assert invoice.status == InvoiceStatus.PENDING.value
        db_session.commit.assert_awaited_once()


# ============================================================================
# Read paths
# ============================================================================


class TestSubscriptionStatus:
    """Landing-page status lookups."""

    @pytest.mark.asyncio
    async def test_matching_email_case_insensitive(
        self, service: SubscriptionService, make_subscription, make_plan
    ):
        """Email comparison ignores case and surrounding whitespace."""
        subscription = make_subscription(
            status=SubscriptionStatus.ACTIVE, license_key="LIC-1"
        )

        with patch.object(
            service,
            "_find_with_relations",
            new_callable=AsyncMock,
            return_value=(subscription, make_plan(), None),
        ):
            details = await service.get_subscription_status(
                subscription.id, "  Buyer@Example.COM "
            )

        assert details.status == SubscriptionStatus.ACTIVE
        assert details.license_key == "LIC-1"
        assert details.plan.code == "pro_monthly"
        assert details.invite_code is None

    @pytest.mark.asyncio
    async def test_email_mismatch_denied(
        self, service: SubscriptionService, make_subscription, make_plan
    ):
        """A different email cannot read the subscription."""
        subscription = make_subscription()

        with patch.object(
            service,
            "_find_with_relations",
            new_callable=AsyncMock,
            return_value=(subscription, make_plan(), None),
        ):
            with pytest.raises(AccessDeniedError):
                await service.get_subscription_status(subscription.id, "someone@example.com")

    @pytest.mark.asyncio
    async def test_unknown_subscription(self, service: SubscriptionService):
        """Missing rows raise ResourceNotFoundError."""
        with pytest.raises(ResourceNotFoundError):
            await service.get_subscription_status(uuid4(), "buyer@example.com")

    @pytest.mark.asyncio
    async def test_invite_code_resolved(
        self, service: SubscriptionService, make_subscription, make_plan, make_invite
    ):
        """The linked invite code is included in the details."""
        invite = make_invite()
        subscription = make_subscription(invite_code_id=invite.id)

        with patch.object(
            service,
            "_find_with_relations",
            new_callable=AsyncMock,
            return_value=(subscription, make_plan(), invite),
        ):
            details = await service.get_subscription(subscription.id)

        assert details.invite_code is not None
        assert details.invite_code.code == "friends2026"


class TestGetInvoice:
    """Invoice lookups."""

    @pytest.mark.asyncio
    async def test_found(self, service: SubscriptionService, db_session: AsyncMock, make_invoice):
        """The invoice is returned with its plan code."""
        invoice = make_invoice(status=InvoiceStatus.PAID)
        db_session.execute.return_value.one_or_none.return_value = (invoice, "pro_monthly")

        data = await service.get_invoice(invoice.id)

        assert data.invoice_id == invoice.id
        assert data.status == InvoiceStatus.PAID
        assert data.plan_code == "pro_monthly"
        assert data.provider_payment_id == "4821337"

    @pytest.mark.asyncio
    async def test_not_found(self, service: SubscriptionService):
        """Unknown invoices raise ResourceNotFoundError."""
        with pytest.raises(ResourceNotFoundError) as exc_info:
            await service.get_invoice(uuid4())

        assert exc_info.value.resource == "Invoice"


class TestListSubscriptions:
    """Admin listing."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "page,limit,reason",
        [(0, 20, "INVALID_PAGE"), (1, 0, "INVALID_LIMIT"), (1, 101, "INVALID_LIMIT")],
    )
    async def test_invalid_pagination(self, service: SubscriptionService, page, limit, reason):
        """Page must be positive and limit within 1..100."""
        with pytest.raises(InputValidationError) as exc_info:
            await service.list_subscriptions(page, limit)

        assert exc_info.value.reason == reason

    @pytest.mark.asyncio
    async def test_page_of_results(
        self, service: SubscriptionService, db_session: AsyncMock, make_subscription, make_plan
    ):
        """Rows are converted and the total drives the page count."""
        plan = make_plan()
        rows = [(make_subscription(plan_id=plan.id), plan, None) for _ in range(2)]

        count_result = MagicMock()
        count_result.scalar_one.return_value = 42
        rows_result = MagicMock()
        rows_result.all.return_value = rows
        db_session.execute.side_effect = [count_result, rows_result]

        page = await service.list_subscriptions(page=3, limit=20)

        assert page.total == 42
        assert page.total_pages == 3
        assert page.page == 3
        assert len(page.subscriptions) == 2
        assert db_session.execute.await_count == 2
