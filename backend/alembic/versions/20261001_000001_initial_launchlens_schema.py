"""Initial launchlens schema (attribution + launches).

Revision ID: 20261001_000001
Revises:
Create Date: 2026-10-01 09:00:00.000000

WHAT:
    Creates the attribution and launch tables:
    - accounts: scoping anchor for every business row
    - visitors / sessions / tracking_events / tracking_scripts: snippet ingestion
    - purchases: platform purchases with denormalized attribution fields
    - launches / launch_views: time-boxed campaigns and public recap views
    - sync_jobs: pollable platform import progress

WHY:
    Purchase attribution matches by (account_id, email) and
    (account_id, device_fingerprint); dashboards filter purchases by
    (account_id, purchased_at). Those paths get composite indexes.

REFERENCES:
    - launchlens/models.py
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261001_000001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # accounts
    # =========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    # =========================================================================
    # Tracking: visitors, sessions, raw events, snippet ids
    # =========================================================================
    op.create_table(
        'visitors',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('visitor_token', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('first_touch', sa.JSON(), nullable=True),
        sa.Column('device_fingerprint', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('account_id', 'visitor_token', name='uq_visitor_account_token'),
    )
    op.create_index('ix_visitors_account_email', 'visitors', ['account_id', 'email'])
    op.create_index('ix_visitors_account_fingerprint', 'visitors', ['account_id', 'device_fingerprint'])

    op.create_table(
        'sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('visitor_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('visitors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_token', sa.String(), nullable=False),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('medium', sa.String(), nullable=True),
        sa.Column('campaign', sa.String(), nullable=True),
        sa.Column('content', sa.String(), nullable=True),
        sa.Column('term', sa.String(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('landing_page', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sessions_visitor_timestamp', 'sessions', ['visitor_id', 'timestamp'])

    op.create_table(
        'tracking_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('visitor_token', sa.String(), nullable=False),
        sa.Column('session_token', sa.String(), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'tracking_scripts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id'),
                  nullable=False, unique=True),
        sa.Column('script_id', sa.String(), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    # =========================================================================
    # Launches (created before purchases for the launch_id FK)
    # =========================================================================
    op.create_table(
        'launches',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('revenue_goal', sa.Numeric(10, 2), nullable=True),
        sa.Column('sales_goal', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='upcoming'),
        sa.Column('share_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('share_token', sa.String(), nullable=True, unique=True),
        sa.Column('share_password_hash', sa.String(), nullable=True),
        sa.Column('share_expires_at', sa.DateTime(), nullable=True),
        sa.Column('cached_revenue', sa.Numeric(10, 2), nullable=True),
        sa.Column('cached_students', sa.Integer(), nullable=True),
        sa.Column('cached_conversion_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('metrics_updated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('end_date > start_date', name='valid_date_range'),
    )
    op.create_index('ix_launches_account_status', 'launches', ['account_id', 'status'])
    op.create_index('ix_launches_account_dates', 'launches', ['account_id', 'start_date', 'end_date'])

    op.create_table(
        'launch_views',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('launch_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('launches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('share_token', sa.String(), nullable=True),
        sa.Column('viewed_at', sa.DateTime(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
    )

    # =========================================================================
    # purchases
    # =========================================================================
    op.create_table(
        'purchases',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('visitor_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('visitors.id', ondelete='SET NULL'), nullable=True),
        sa.Column('launch_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('launches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('course_name', sa.String(), nullable=True),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('platform_purchase_id', sa.String(), nullable=False),
        sa.Column('first_touch_source', sa.String(), nullable=True),
        sa.Column('first_touch_medium', sa.String(), nullable=True),
        sa.Column('first_touch_campaign', sa.String(), nullable=True),
        sa.Column('last_touch_source', sa.String(), nullable=True),
        sa.Column('last_touch_medium', sa.String(), nullable=True),
        sa.Column('last_touch_campaign', sa.String(), nullable=True),
        sa.Column('attribution_status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('purchased_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('account_id', 'platform', 'platform_purchase_id', name='uq_purchase_platform_id'),
    )
    op.create_index('ix_purchases_account_purchased_at', 'purchases', ['account_id', 'purchased_at'])
    op.create_index('ix_purchases_launch_id', 'purchases', ['launch_id'])

    # =========================================================================
    # sync_jobs
    # =========================================================================
    op.create_table(
        'sync_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('total_records', sa.Integer(), nullable=True),
        sa.Column('processed_records', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('sync_jobs')
    op.drop_index('ix_purchases_launch_id', table_name='purchases')
    op.drop_index('ix_purchases_account_purchased_at', table_name='purchases')
    op.drop_table('purchases')
    op.drop_table('launch_views')
    op.drop_index('ix_launches_account_dates', table_name='launches')
    op.drop_index('ix_launches_account_status', table_name='launches')
    op.drop_table('launches')
    op.drop_table('tracking_scripts')
    op.drop_table('tracking_events')
    op.drop_index('ix_sessions_visitor_timestamp', table_name='sessions')
    op.drop_table('sessions')
    op.drop_index('ix_visitors_account_fingerprint', table_name='visitors')
    op.drop_index('ix_visitors_account_email', table_name='visitors')
    op.drop_table('visitors')
    op.drop_table('accounts')
