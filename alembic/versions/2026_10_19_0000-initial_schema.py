"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Agencies / dealerships / users
    # ========================================================================
    op.create_table(
        'agencies',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(255), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'dealerships',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('agency_id', sa.String(64), sa.ForeignKey('agencies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('website', sa.String(500), nullable=True),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(2), nullable=True),
        sa.Column('zip_code', sa.String(20), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('client_id', sa.String(255), nullable=True, unique=True),
        sa.Column('active_package_type', sa.String(20), nullable=True),
        sa.Column('pages_used_this_period', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('blogs_used_this_period', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gbp_posts_used_this_period', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('improvements_used_this_period', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_billing_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_billing_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settings', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),

        sa.CheckConstraint('pages_used_this_period >= 0', name='ck_pages_used_non_negative'),
        sa.CheckConstraint('blogs_used_this_period >= 0', name='ck_blogs_used_non_negative'),
        sa.CheckConstraint('gbp_posts_used_this_period >= 0', name='ck_gbp_posts_used_non_negative'),
        sa.CheckConstraint('improvements_used_this_period >= 0', name='ck_improvements_used_non_negative'),
    )
    op.create_index('idx_dealerships_agency_id', 'dealerships', ['agency_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='USER'),
        sa.Column('agency_id', sa.String(64), sa.ForeignKey('agencies.id', ondelete='SET NULL'), nullable=True),
        sa.Column('dealership_id', sa.String(64), sa.ForeignKey('dealerships.id', ondelete='SET NULL'), nullable=True),
        sa.Column('onboarding_completed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        *_timestamps(),

        sa.CheckConstraint("role IN ('SUPER_ADMIN', 'AGENCY_ADMIN', 'ADMIN', 'USER')", name='ck_user_role'),
    )
    op.create_index('idx_users_agency_id', 'users', ['agency_id'])
    op.create_index('idx_users_dealership_id', 'users', ['dealership_id'])

    op.create_table(
        'user_dealership_access',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dealership_id', sa.String(64), sa.ForeignKey('dealerships.id', ondelete='CASCADE'), nullable=False),
        sa.Column('access_level', sa.String(10), nullable=False, server_default='READ'),
        sa.Column('granted_by', sa.String(64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('user_id', 'dealership_id', name='uq_user_dealership_access'),
        sa.CheckConstraint("access_level IN ('READ', 'WRITE', 'ADMIN')", name='ck_access_level'),
    )

    # ========================================================================
    # Analytics connections
    # ========================================================================
    op.create_table(
        'ga4_connections',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dealership_id', sa.String(64), sa.ForeignKey('dealerships.id', ondelete='CASCADE'), nullable=True),
        sa.Column('property_id', sa.String(50), nullable=True),
        sa.Column('property_name', sa.String(255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False, server_default=''),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_ga4_connections_user_dealership', 'ga4_connections', ['user_id', 'dealership_id'])
    op.create_index('idx_ga4_connections_property_id', 'ga4_connections', ['property_id'])

    op.create_table(
        'search_console_connections',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dealership_id', sa.String(64), sa.ForeignKey('dealerships.id', ondelete='CASCADE'), nullable=True),
        sa.Column('site_url', sa.String(500), nullable=True),
        sa.Column('site_name', sa.String(255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False, server_default=''),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_sc_connections_user_dealership', 'search_console_connections', ['user_id', 'dealership_id'])
    op.create_index('idx_sc_connections_site_url', 'search_console_connections', ['site_url'])

    # ========================================================================
    # Requests / tasks
    # ========================================================================
    op.create_table(
        'requests',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agency_id', sa.String(64), sa.ForeignKey('agencies.id', ondelete='SET NULL'), nullable=True),
        sa.Column('dealership_id', sa.String(64), sa.ForeignKey('dealerships.id', ondelete='SET NULL'), nullable=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('priority', sa.String(10), nullable=False, server_default='MEDIUM'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('package_type', sa.String(20), nullable=True),
        sa.Column('target_url', sa.String(500), nullable=True),
        sa.Column('keywords', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('seoworks_task_id', sa.String(255), nullable=True),
        sa.Column('pages_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('blogs_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gbp_posts_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('improvements_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_tasks', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),

        sa.CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name='ck_request_status',
        ),
    )
    op.create_index('idx_requests_user_id', 'requests', ['user_id'])
    op.create_index('idx_requests_dealership_id', 'requests', ['dealership_id'])
    op.create_index(
        'idx_requests_seoworks_task_id', 'requests', ['seoworks_task_id'],
        postgresql_where=sa.text('seoworks_task_id IS NOT NULL'),
    )

    op.create_table(
        'tasks',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('request_id', sa.String(64), sa.ForeignKey('requests.id', ondelete='CASCADE'), nullable=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('agency_id', sa.String(64), nullable=True),
        sa.Column('dealership_id', sa.String(64), nullable=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('url', sa.String(1000), nullable=True),
        sa.Column('seoworks_task_id', sa.String(255), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_tasks_request_id', 'tasks', ['request_id'])
    op.create_index('idx_tasks_seoworks_task_id', 'tasks', ['seoworks_task_id'])

    # ========================================================================
    # Orphaned SEOWorks webhook deliveries
    # ========================================================================
    op.create_table(
        'orphaned_tasks',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('client_id', sa.String(255), nullable=True),
        sa.Column('client_email', sa.String(255), nullable=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('task_type', sa.String(100), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('completion_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deliverables', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('raw_payload', JSONB(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('linked_request_id', sa.String(64), sa.ForeignKey('requests.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),

        sa.UniqueConstraint('external_id', name='uq_orphaned_tasks_external_id'),
    )
    op.create_index('idx_orphaned_tasks_processed_client_id', 'orphaned_tasks', ['processed', 'client_id'])
    op.create_index('idx_orphaned_tasks_processed_client_email', 'orphaned_tasks', ['processed', 'client_email'])
    op.create_index('idx_orphaned_tasks_created_at', 'orphaned_tasks', ['created_at'])

    # ========================================================================
    # Archived usage
    # ========================================================================
    op.create_table(
        'monthly_usage',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('dealership_id', sa.String(64), sa.ForeignKey('dealerships.id', ondelete='CASCADE'), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('package_type', sa.String(20), nullable=True),
        sa.Column('pages_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('blogs_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gbp_posts_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('improvements_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('dealership_id', 'year', 'month', name='uq_monthly_usage_period'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('monthly_usage')
    op.drop_table('orphaned_tasks')
    op.drop_table('tasks')
    op.drop_table('requests')
    op.drop_table('search_console_connections')
    op.drop_table('ga4_connections')
    op.drop_table('user_dealership_access')
    op.drop_table('users')
    op.drop_table('dealerships')
    op.drop_table('agencies')
