"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Plan(Base):
    """
    ORM model for plans table.

    Catalog of purchasable subscription plans. A NULL duration means lifetime.
    """

    __tablename__ = "plans"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_requests_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("price_usd >= 0", name="ck_plan_price_non_negative"),
        CheckConstraint(
            "duration_days IS NULL OR duration_days > 0", name="ck_plan_duration_positive"
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Plan(code={self.code}, duration_days={self.duration_days})>"


class InviteCode(Base):
    """
    ORM model for invite_codes table.

    Codes are stored normalized (trimmed, lower-cased). used_count only grows.
    """

    __tablename__ = "invite_codes"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="INVITE")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revenue_share_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    owner_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("type IN ('INVITE', 'REFERRAL', 'PARTNER')", name="ck_invite_type"),
        CheckConstraint("status IN ('ACTIVE', 'PAUSED', 'EXPIRED')", name="ck_invite_status"),
        CheckConstraint("used_count >= 0", name="ck_invite_used_count_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR used_count <= max_uses", name="ck_invite_used_within_max"
        ),
        CheckConstraint(
            "revenue_share_percent IS NULL OR "
            "(revenue_share_percent >= 0 AND revenue_share_percent <= 100)",
            name="ck_invite_revenue_share_range",
        ),
        Index("idx_invite_codes_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<InviteCode(code={self.code}, status={self.status}, "
            f"used={self.used_count}/{self.max_uses})>"
        )


class Subscription(Base):
    """
    ORM model for subscriptions table.

    One row per purchased entitlement. license_key caches the key issued by the
    license authority; the authority owns the license record itself.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    plan_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False
    )
    invite_code_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("invite_codes.id", ondelete="SET NULL"), nullable=True
    )
    license_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending_payment")
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_payment', 'active', 'expired', 'canceled', 'paused', "
            "'payment_received_but_license_failed')",
            name="ck_subscription_status",
        ),
        Index("idx_subscriptions_user_email", "user_email"),
        Index("idx_subscriptions_status", "status"),
        Index("idx_subscriptions_created_at", "created_at"),
        Index(
            "idx_subscriptions_invite_code_id",
            "invite_code_id",
            postgresql_where=(invite_code_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Subscription(id={self.id}, status={self.status}, expires_at={self.expires_at})>"


class Invoice(Base):
    """
    ORM model for invoices table.

    Status is terminal once it leaves 'pending'. Renewals create new rows.
    """

    __tablename__ = "invoices"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    subscription_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False
    )
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_provider: Mapped[str] = mapped_column(String(50), nullable=False, default="nowpayments")
    provider_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_invoice_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'expired', 'canceled')", name="ck_invoice_status"
        ),
        CheckConstraint("amount_usd >= 0", name="ck_invoice_amount_non_negative"),
        Index(
            "idx_invoices_provider_payment_id",
            "provider_payment_id",
            postgresql_where=(provider_payment_id.isnot(None)),
        ),
        Index("idx_invoices_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Invoice(id={self.id}, status={self.status}, amount={self.amount_usd})>"
