"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class BillingError(Exception):
    """Base exception for all billing errors."""

    pass


class AuthenticationError(BillingError):
    """Raised when a webhook signature or admin token is missing or invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class ResourceNotFoundError(BillingError):
    """Raised when an invoice, subscription, plan or invite code doesn't exist."""

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class InputValidationError(BillingError):
    """
    Raised when caller-supplied data is malformed or out of range.

    `reason` is a machine-readable code (e.g. "EXPIRED", "NO_FIELDS").
    """

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(f"Validation failed ({reason}): {message}")


class AccessDeniedError(BillingError):
    """Raised when a caller may not read the requested resource."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Access denied: {message}")


class LicenseServiceError(BillingError):
    """Raised when the external license authority call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"License service error: {message}")


class PaymentProviderError(BillingError):
    """Raised when payment gateway operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class DataIntegrityError(BillingError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")

