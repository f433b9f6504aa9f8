"""
NOWPayments gateway client - hosted invoice creation.

The customer picks the cryptocurrency on the hosted invoice page, so no
pay_currency is sent.
"""

from decimal import Decimal

import httpx

from license_billing.config import Settings
from license_billing.exceptions import PaymentProviderError
from license_billing.models.domain import GatewayInvoice
from license_billing.observability import get_logger

logger = get_logger(__name__)


class NowPaymentsClient:
    """Minimal NOWPayments REST client."""

    PROVIDER_NAME = "nowpayments"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.nowpayments.io/v1",
        ipn_callback_url: str = "",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.ipn_callback_url = ipn_callback_url
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "NowPaymentsClient":
        """Build a client from application settings."""
        return cls(
            api_key=settings.nowpayments_api_key,
            base_url=settings.nowpayments_base_url,
            ipn_callback_url=settings.ipn_callback_url,
            timeout_seconds=settings.nowpayments_timeout_seconds,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def create_invoice(
        self,
        amount_usd: Decimal,
        order_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
    ) -> GatewayInvoice:
        """
        Create a hosted invoice.

        Raises:
            PaymentProviderError: missing API key, transport failure, non-2xx,
                or a response without id / invoice_url
        """
        if not self.api_key:
            raise PaymentProviderError("NOWPAYMENTS_API_KEY is not configured")

        payload: dict[str, object] = {
            "price_amount": float(amount_usd),
            "price_currency": "usd",
            "order_id": order_id,
            "ipn_callback_url": self.ipn_callback_url,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "order_description": f"Subscription {order_id}",
        }
        if customer_email:
            payload["customer_email"] = customer_email

        logger.info(
            "nowpayments_invoice_creating",
            order_id=order_id,
            price_amount=str(amount_usd),
            ipn_callback_url=self.ipn_callback_url,
        )

        try:
            response = await self.http_client.post(
                f"{self.base_url}/invoice",
                json=payload,
                headers={"x-api-key": self.api_key},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "nowpayments_invoice_failed",
                status=e.response.status_code,
                text=e.response.text[:500],
                order_id=order_id,
            )
            raise PaymentProviderError(
                f"NOWPayments returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("nowpayments_invoice_transport_error", error=str(e), order_id=order_id)
            raise PaymentProviderError(f"NOWPayments unreachable: {e}") from e
        except ValueError as e:
            raise PaymentProviderError("NOWPayments returned a non-JSON body") from e

        if not isinstance(data, dict) or not data.get("id") or not data.get("invoice_url"):
            raise PaymentProviderError("NOWPayments response missing id or invoice_url")

        invoice = GatewayInvoice(
            provider_invoice_id=str(data["id"]), invoice_url=str(data["invoice_url"])
        )
        logger.info(
            "nowpayments_invoice_created",
            order_id=order_id,
            provider_invoice_id=invoice.provider_invoice_id,
        )
        return invoice

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
