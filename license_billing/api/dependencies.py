"""
FastAPI Dependencies - outbound clients shared across requests.

NO DICTIONARIES - All dependencies return typed objects.
"""

from license_billing.config import get_settings
from license_billing.services.license_sync import LicenseSyncClient
from license_billing.services.nowpayments import NowPaymentsClient

# Lazily created so every request shares one connection pool per upstream
_license_client: LicenseSyncClient | None = None
_payment_gateway: NowPaymentsClient | None = None


def get_license_client() -> LicenseSyncClient:
    """FastAPI dependency for the license authority client."""
    global _license_client
    if _license_client is None:
        _license_client = LicenseSyncClient.from_settings(get_settings())
    return _license_client


def get_payment_gateway() -> NowPaymentsClient:
    """FastAPI dependency for the NOWPayments client."""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = NowPaymentsClient.from_settings(get_settings())
    return _payment_gateway


async def close_clients() -> None:
    """Close outbound HTTP clients (for graceful shutdown)."""
    global _license_client, _payment_gateway

    if _license_client:
        await _license_client.close()
        _license_client = None

    if _payment_gateway:
        await _payment_gateway.close()
        _payment_gateway = None
