"""ledger_baseline

Revision ID: 5c1e0a7d9b42
Revises: 
Create Date: 2026-10-19 09:12:41.118204

Production-safe migration: only creates tables that do not exist yet.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '5c1e0a7d9b42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE_SUBSCRIPTION = "status IN ('trialing', 'active')"


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if not table_exists('accounts'):
        op.create_table('accounts',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('full_name', sa.String(), nullable=True),
            sa.Column('role', sa.String(), nullable=False),
            sa.Column('parent_account_id', sa.Integer(), nullable=True),
            sa.Column('is_verified', sa.Boolean(), nullable=False),
            sa.Column('verified_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['parent_account_id'], ['accounts.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_accounts_id'), 'accounts', ['id'], unique=False)
        op.create_index(op.f('ix_accounts_email'), 'accounts', ['email'], unique=True)
        op.create_index(op.f('ix_accounts_parent_account_id'), 'accounts', ['parent_account_id'], unique=False)

    if not table_exists('job_postings'):
        op.create_table('job_postings',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.Integer(), nullable=False),
            sa.Column('title', sa.String(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_job_postings_id'), 'job_postings', ['id'], unique=False)
        op.create_index(op.f('ix_job_postings_account_id'), 'job_postings', ['account_id'], unique=False)

    if not table_exists('job_applications'):
        op.create_table('job_applications',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('job_posting_id', sa.Integer(), nullable=False),
            sa.Column('applicant_account_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['job_posting_id'], ['job_postings.id'], ),
            sa.ForeignKeyConstraint(['applicant_account_id'], ['accounts.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_job_applications_id'), 'job_applications', ['id'], unique=False)
        op.create_index(op.f('ix_job_applications_job_posting_id'), 'job_applications', ['job_posting_id'], unique=False)
        op.create_index(op.f('ix_job_applications_applicant_account_id'), 'job_applications', ['applicant_account_id'], unique=False)

    if not table_exists('subscription_plans'):
        op.create_table('subscription_plans',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('plan_type', sa.String(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('price_monthly', sa.Numeric(10, 2), nullable=False),
            sa.Column('price_yearly', sa.Numeric(10, 2), nullable=False),
            sa.Column('trial_days', sa.Integer(), nullable=False),
            sa.Column('max_resume_contacts', sa.Integer(), nullable=True),
            sa.Column('max_ai_credits', sa.Integer(), nullable=True),
            sa.Column('max_job_postings', sa.Integer(), nullable=True),
            sa.Column('features', sa.JSON(), nullable=False),
            sa.Column('extra_metadata', sa.JSON(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('name')
        )
        op.create_index(op.f('ix_subscription_plans_id'), 'subscription_plans', ['id'], unique=False)
        op.create_index(op.f('ix_subscription_plans_plan_type'), 'subscription_plans', ['plan_type'], unique=True)

    if not table_exists('credit_packages'):
        op.create_table('credit_packages',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('code', sa.String(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('credit_type', sa.String(), nullable=False),
            sa.Column('credit_amount', sa.Integer(), nullable=False),
            sa.Column('bonus_credits', sa.Integer(), nullable=False),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('validity_days', sa.Integer(), nullable=True),
            sa.Column('extra_metadata', sa.JSON(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('name')
        )
        op.create_index(op.f('ix_credit_packages_id'), 'credit_packages', ['id'], unique=False)
        op.create_index(op.f('ix_credit_packages_code'), 'credit_packages', ['code'], unique=True)
        op.create_index(op.f('ix_credit_packages_credit_type'), 'credit_packages', ['credit_type'], unique=False)

    if not table_exists('credit_package_items'):
        op.create_table('credit_package_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('package_id', sa.Integer(), nullable=False),
            sa.Column('credit_type', sa.String(), nullable=False),
            sa.Column('amount', sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['package_id'], ['credit_packages.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('package_id', 'credit_type', name='uq_package_item_type')
        )
        op.create_index(op.f('ix_credit_package_items_package_id'), 'credit_package_items', ['package_id'], unique=False)

    if not table_exists('subscriptions'):
        op.create_table('subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.Integer(), nullable=False),
            sa.Column('plan_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('billing_cycle', sa.String(), nullable=False),
            sa.Column('current_period_start', sa.DateTime(), nullable=False),
            sa.Column('current_period_end', sa.DateTime(), nullable=False),
            sa.Column('canceled_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
            sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_subscriptions_account_id'), 'subscriptions', ['account_id'], unique=False)
        op.create_index('idx_subscription_account_status', 'subscriptions', ['account_id', 'status'], unique=False)
        op.create_index(
            'uq_subscription_live_account',
            'subscriptions',
            ['account_id'],
            unique=True,
            postgresql_where=sa.text(LIVE_SUBSCRIPTION),
            sqlite_where=sa.text(LIVE_SUBSCRIPTION),
        )

    if not table_exists('credit_balances'):
        op.create_table('credit_balances',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.Integer(), nullable=False),
            sa.Column('credit_type', sa.String(), nullable=False),
            sa.Column('subscription_id', sa.Integer(), nullable=True),
            sa.Column('period_start', sa.DateTime(), nullable=True),
            sa.Column('period_end', sa.DateTime(), nullable=True),
            sa.Column('allocated', sa.Integer(), nullable=True),
            sa.Column('used', sa.Integer(), nullable=False),
            sa.Column('purchased', sa.Integer(), nullable=False),
            sa.Column('total_purchased', sa.Integer(), nullable=False),
            sa.Column('purchased_used', sa.Integer(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=True),
            sa.Column('last_used_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
            sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('account_id', 'credit_type', name='uq_balance_account_type'),
            sa.CheckConstraint('purchased >= 0', name='ck_balance_purchased_non_negative'),
            sa.CheckConstraint('used >= 0', name='ck_balance_used_non_negative'),
            sa.CheckConstraint('allocated IS NULL OR used <= allocated', name='ck_balance_used_within_allocated')
        )
        op.create_index(op.f('ix_credit_balances_id'), 'credit_balances', ['id'], unique=False)
        op.create_index(op.f('ix_credit_balances_account_id'), 'credit_balances', ['account_id'], unique=False)

    if not table_exists('consumption_records'):
        op.create_table('consumption_records',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('actor_account_id', sa.Integer(), nullable=False),
            sa.Column('owner_account_id', sa.Integer(), nullable=False),
            sa.Column('action_kind', sa.String(), nullable=False),
            sa.Column('target_ref', sa.String(), nullable=False),
            sa.Column('scope', sa.String(), nullable=False),
            sa.Column('credit_type', sa.String(), nullable=False),
            sa.Column('source', sa.String(), nullable=False),
            sa.Column('amount', sa.Integer(), nullable=False),
            sa.Column('subscription_amount', sa.Integer(), nullable=False),
            sa.Column('credit_amount', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['actor_account_id'], ['accounts.id'], ),
            sa.ForeignKeyConstraint(['owner_account_id'], ['accounts.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('owner_account_id', 'target_ref', 'action_kind', name='uq_consumption_owner_target_action')
        )
        op.create_index(op.f('ix_consumption_records_id'), 'consumption_records', ['id'], unique=False)
        op.create_index(op.f('ix_consumption_records_actor_account_id'), 'consumption_records', ['actor_account_id'], unique=False)
        op.create_index('idx_consumption_owner_scope_created', 'consumption_records', ['owner_account_id', 'scope', 'created_at'], unique=False)

    if not table_exists('payment_settlements'):
        op.create_table('payment_settlements',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('payment_id', sa.String(), nullable=False),
            sa.Column('account_id', sa.Integer(), nullable=False),
            sa.Column('item_type', sa.String(), nullable=False),
            sa.Column('plan_id', sa.Integer(), nullable=True),
            sa.Column('credit_package_id', sa.Integer(), nullable=True),
            sa.Column('billing_cycle', sa.String(), nullable=True),
            sa.Column('amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('currency', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('failure_reason', sa.String(), nullable=True),
            sa.Column('subscription_id', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('settled_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
            sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ),
            sa.ForeignKeyConstraint(['credit_package_id'], ['credit_packages.id'], ),
            sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_payment_settlements_id'), 'payment_settlements', ['id'], unique=False)
        op.create_index(op.f('ix_payment_settlements_payment_id'), 'payment_settlements', ['payment_id'], unique=True)
        op.create_index(op.f('ix_payment_settlements_account_id'), 'payment_settlements', ['account_id'], unique=False)

    if not table_exists('rate_limit_counters'):
        op.create_table('rate_limit_counters',
            sa.Column('key', sa.String(), nullable=False),
            sa.Column('count', sa.Integer(), nullable=False),
            sa.Column('window_start', sa.DateTime(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('key')
        )
        op.create_index(op.f('ix_rate_limit_counters_expires_at'), 'rate_limit_counters', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_table('rate_limit_counters')
    op.drop_table('payment_settlements')
    op.drop_table('consumption_records')
    op.drop_table('credit_balances')
    op.drop_table('subscriptions')
    op.drop_table('credit_package_items')
    op.drop_table('credit_packages')
    op.drop_table('subscription_plans')
    op.drop_table('job_applications')
    op.drop_table('job_postings')
    op.drop_table('accounts')
