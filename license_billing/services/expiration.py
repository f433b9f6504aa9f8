"""
Subscription Expiration - validity window arithmetic.

Pure functions, no I/O.
"""

from datetime import datetime, timedelta
from typing import Protocol

from license_billing.models.domain import ExpirationWindow


class PlanDuration(Protocol):
    """Anything carrying a plan duration in days (None = lifetime)."""

    duration_days: int | None


def _add_days(moment: datetime, days: int | None) -> datetime | None:
    if days is None:
        return None
    return moment + timedelta(days=days)


def compute_expiration(
    plan: PlanDuration,
    current_starts_at: datetime | None,
    current_expires_at: datetime | None,
    now: datetime,
) -> ExpirationWindow:
    """
    Compute the window after a successful payment.

    - First purchase: the window starts now.
    - Renewal of a still-running window: keep starts_at and stack the plan
      duration on top of the current expiry.
    - Renewal after lapse: start over from now.

    A lifetime plan always yields expires_at None.
    """
    if current_starts_at is None:
        return ExpirationWindow(starts_at=now, expires_at=_add_days(now, plan.duration_days))

    if current_expires_at is not None and current_expires_at > now:
        return ExpirationWindow(
            starts_at=current_starts_at,
            expires_at=_add_days(current_expires_at, plan.duration_days),
        )

    return ExpirationWindow(starts_at=now, expires_at=_add_days(now, plan.duration_days))


def extend_expiration(current_expires_at: datetime | None, days: int, now: datetime) -> datetime:
    """Push an expiry forward by days, from the current expiry or from now if unset."""
    base = current_expires_at if current_expires_at is not None else now
    return base + timedelta(days=days)
