"""initial schema

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create plans, invite codes, subscriptions and invoices."""

    # ========================================================================
    # Create plans table
    # ========================================================================
    op.create_table(
        'plans',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_usd', sa.Numeric(10, 2), nullable=False),
        sa.Column('duration_days', sa.Integer(), nullable=True),
        sa.Column('max_requests_per_day', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.UniqueConstraint('code', name='uq_plans_code'),
        sa.CheckConstraint('price_usd >= 0', name='ck_plan_price_non_negative'),
        sa.CheckConstraint('duration_days IS NULL OR duration_days > 0', name='ck_plan_duration_positive'),
    )

    # ========================================================================
    # Create invite_codes table
    # ========================================================================
    op.create_table(
        'invite_codes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(100), nullable=False),
        sa.Column('type', sa.String(20), nullable=False, server_default='INVITE'),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revenue_share_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('owner_email', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.UniqueConstraint('code', name='uq_invite_codes_code'),
        sa.CheckConstraint("type IN ('INVITE', 'REFERRAL', 'PARTNER')", name='ck_invite_type'),
        sa.CheckConstraint("status IN ('ACTIVE', 'PAUSED', 'EXPIRED')", name='ck_invite_status'),
        sa.CheckConstraint('used_count >= 0', name='ck_invite_used_count_non_negative'),
        sa.CheckConstraint('max_uses IS NULL OR used_count <= max_uses', name='ck_invite_used_within_max'),
        sa.CheckConstraint(
            'revenue_share_percent IS NULL OR (revenue_share_percent >= 0 AND revenue_share_percent <= 100)',
            name='ck_invite_revenue_share_range',
        ),
    )

    op.create_index('idx_invite_codes_status', 'invite_codes', ['status'])

    # ========================================================================
    # Create subscriptions table
    # ========================================================================
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('product_code', sa.String(100), nullable=False),
        sa.Column('plan_id', UUID(as_uuid=True), nullable=False),
        sa.Column('invite_code_id', UUID(as_uuid=True), nullable=True),
        sa.Column('license_key', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='pending_payment'),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint(
            "status IN ('pending_payment', 'active', 'expired', 'canceled', 'paused', "
            "'payment_received_but_license_failed')",
            name='ck_subscription_status',
        ),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], name='fk_subscriptions_plan', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(
            ['invite_code_id'], ['invite_codes.id'], name='fk_subscriptions_invite_code', ondelete='SET NULL'
        ),
    )

    op.create_index('idx_subscriptions_user_email', 'subscriptions', ['user_email'])
    op.create_index('idx_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('idx_subscriptions_created_at', 'subscriptions', ['created_at'])
    op.create_index(
        'idx_subscriptions_invite_code_id', 'subscriptions', ['invite_code_id'],
        postgresql_where=sa.text('invite_code_id IS NOT NULL'),
    )

    # ========================================================================
    # Create invoices table
    # ========================================================================
    op.create_table(
        'invoices',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('subscription_id', UUID(as_uuid=True), nullable=False),
        sa.Column('plan_id', UUID(as_uuid=True), nullable=False),
        sa.Column('amount_usd', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_provider', sa.String(50), nullable=False, server_default='nowpayments'),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('provider_invoice_url', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("status IN ('pending', 'paid', 'expired', 'canceled')", name='ck_invoice_status'),
        sa.CheckConstraint('amount_usd >= 0', name='ck_invoice_amount_non_negative'),
        sa.ForeignKeyConstraint(
            ['subscription_id'], ['subscriptions.id'], name='fk_invoices_subscription', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], name='fk_invoices_plan', ondelete='RESTRICT'),
    )

    op.create_index('ix_invoices_subscription_id', 'invoices', ['subscription_id'])
    op.create_index('idx_invoices_status', 'invoices', ['status'])
    op.create_index(
        'idx_invoices_provider_payment_id', 'invoices', ['provider_payment_id'],
        postgresql_where=sa.text('provider_payment_id IS NOT NULL'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('invoices')
    op.drop_table('subscriptions')
    op.drop_table('invite_codes')
    op.drop_table('plans')
