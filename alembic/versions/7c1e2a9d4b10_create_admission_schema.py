"""create admission and billing schema

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = '7c1e2a9d4b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)
    tables = inspector.get_table_names()

    if 'plans' not in tables:
        op.create_table(
            'plans',
            sa.Column('code', sa.String(length=32), nullable=False),
            sa.Column('name', sa.String(length=64), nullable=False),
            sa.Column('monthly_quota', sa.Integer(), nullable=False),
            sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
            sa.PrimaryKeyConstraint('code')
        )

    if 'organizations' not in tables:
        op.create_table(
            'organizations',
            sa.Column('id', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=True),
            sa.Column('plan_code', sa.String(length=32), nullable=False, server_default='free'),
            sa.Column('quota_limit', sa.Integer(), nullable=True),
            sa.Column('billing_status', sa.String(length=64), nullable=False, server_default='inactive'),
            sa.Column('provider_customer_id', sa.String(length=128), nullable=True),
            sa.Column('provider_subscription_id', sa.String(length=128), nullable=True),
            sa.Column('current_period_end', sa.DateTime(), nullable=True),
            sa.Column('canceled_at', sa.DateTime(), nullable=True),
            sa.Column('last_billing_event_at', sa.DateTime(), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['plan_code'], ['plans.code'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_organizations_plan_code'), 'organizations', ['plan_code'], unique=False)
        op.create_index(op.f('ix_organizations_billing_status'), 'organizations', ['billing_status'], unique=False)
        op.create_index(op.f('ix_organizations_provider_customer_id'), 'organizations', ['provider_customer_id'], unique=False)
        op.create_index(op.f('ix_organizations_provider_subscription_id'), 'organizations', ['provider_subscription_id'], unique=False)
        op.create_index(op.f('ix_organizations_current_period_end'), 'organizations', ['current_period_end'], unique=False)

    if 'usage_counters' not in tables:
        op.create_table(
            'usage_counters',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.String(length=64), nullable=False),
            sa.Column('period', sa.String(length=7), nullable=False),
            sa.Column('used', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('org_id', 'period', name='uq_usage_counters_org_period')
        )
        op.create_index(op.f('ix_usage_counters_org_id'), 'usage_counters', ['org_id'], unique=False)
        op.create_index(op.f('ix_usage_counters_period'), 'usage_counters', ['period'], unique=False)

    if 'webhook_events' not in tables:
        op.create_table(
            'webhook_events',
            sa.Column('id', sa.String(length=128), nullable=False),
            sa.Column('source', sa.String(length=32), nullable=False),
            sa.Column('event_type', sa.String(length=128), nullable=False),
            sa.Column('payload', sa.Text(), nullable=False),
            sa.Column('received_at', sa.DateTime(), nullable=False),
            sa.Column('dispatch_status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('dispatched_at', sa.DateTime(), nullable=True),
            sa.Column('dispatch_error', sa.Text(), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_webhook_events_source'), 'webhook_events', ['source'], unique=False)
        op.create_index(op.f('ix_webhook_events_event_type'), 'webhook_events', ['event_type'], unique=False)
        op.create_index(op.f('ix_webhook_events_dispatch_status'), 'webhook_events', ['dispatch_status'], unique=False)
        op.create_index('ix_webhook_events_received_at_id', 'webhook_events', ['received_at', 'id'], unique=False)

    if 'jobs' not in tables:
        op.create_table(
            'jobs',
            sa.Column('id', sa.String(length=64), nullable=False),
            sa.Column('org_id', sa.String(length=64), nullable=False),
            sa.Column('keyword', sa.String(length=200), nullable=False),
            sa.Column('ads_requested', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('quota_debit', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('period', sa.String(length=7), nullable=False),
            sa.Column('worker_run_id', sa.String(length=128), nullable=True),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_jobs_org_id'), 'jobs', ['org_id'], unique=False)
        op.create_index(op.f('ix_jobs_status'), 'jobs', ['status'], unique=False)
        op.create_index('ix_jobs_org_id_created_at', 'jobs', ['org_id', 'created_at'], unique=False)


def downgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)
    tables = inspector.get_table_names()

    # Reverse dependency order
    for table in ['jobs', 'webhook_events', 'usage_counters', 'organizations', 'plans']:
        if table in tables:
            op.drop_table(table)
