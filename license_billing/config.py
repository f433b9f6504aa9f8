"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 10
    database_pool_recycle: int = 3600
    database_command_timeout: float = 10.0  # asyncpg per-statement timeout (seconds)

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 4000
    api_title: str = "License Billing API"
    api_version: str = "0.1.0"
    api_description: str = "Crypto subscription billing and license synchronization"

    # Admin API - static token (X-Admin-Token or Authorization: Bearer)
    admin_api_token: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "license-billing-api"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Payment Gateway - NOWPayments
    nowpayments_api_key: str = ""
    nowpayments_ipn_secret: str = ""  # HMAC-SHA512 secret for x-nowpayments-sig
    nowpayments_base_url: str = "https://api.nowpayments.io/v1"
    nowpayments_timeout_seconds: float = 10.0
    billing_public_base_url: str = ""  # Used to build the IPN callback URL
    default_success_url: str = "https://shadowintern.xyz/billing/success"
    default_cancel_url: str = "https://shadowintern.xyz/billing/cancel"

    # License Authority
    license_service_base_url: str = ""
    license_service_admin_token: str = ""
    license_service_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.license_service_timeout_seconds <= 0 or self.nowpayments_timeout_seconds <= 0:
            errors.append("Outbound HTTP timeouts must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def license_service_configured(self) -> bool:
        """Whether both the license authority URL and admin token are set."""
        return bool(self.license_service_base_url and self.license_service_admin_token)

    @property
    def ipn_callback_url(self) -> str:
        """Webhook URL handed to NOWPayments when creating invoices."""
        base = self.billing_public_base_url.rstrip("/")
        return f"{base}/api/webhooks/nowpayments"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
