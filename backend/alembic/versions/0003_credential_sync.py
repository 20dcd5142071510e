"""sync credentials, causas, folders, sync runs and portal incidents

Revision ID: 0003_credential_sync
Revises: 0002_scraping_ranges
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = '0003_credential_sync'
down_revision = '0002_scraping_ranges'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'sync_credentials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=16), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('user_name', sa.String(length=128), nullable=False),
        sa.Column('user_email', sa.String(length=255), nullable=False),
        sa.Column('cuil_masked', sa.String(length=32), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('is_valid', sa.Boolean(), nullable=False),
        sa.Column('is_valid_at', sa.DateTime(), nullable=True),
        sa.Column('sync_status', sa.String(length=16), nullable=False),
        sa.Column('last_sync', sa.DateTime(), nullable=True),
        sa.Column('last_sync_attempt', sa.DateTime(), nullable=True),
        sa.Column('consecutive_errors', sa.Integer(), nullable=False),
        sa.Column('last_error_message', sa.Text(), nullable=True),
        sa.Column('last_error_code', sa.String(length=64), nullable=True),
        sa.Column('last_error_at', sa.DateTime(), nullable=True),
        sa.Column('progress_started_at', sa.DateTime(), nullable=True),
        sa.Column('progress_current_page', sa.Integer(), nullable=True),
        sa.Column('progress_total_pages', sa.Integer(), nullable=True),
        sa.Column('progress_causas_processed', sa.Integer(), nullable=True),
        sa.Column('progress_total_expected', sa.Integer(), nullable=True),
        sa.Column('resume_page', sa.Integer(), nullable=True),
        sa.Column('resume_causas_processed', sa.Integer(), nullable=True),
        sa.Column('locked_by', sa.String(length=128), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('stats_total_causas_found', sa.Integer(), nullable=False),
        sa.Column('stats_last_causas_count', sa.Integer(), nullable=False),
        sa.Column('stats_new_causas_created', sa.Integer(), nullable=False),
        sa.Column('stats_causas_linked', sa.Integer(), nullable=False),
        sa.Column('stats_folders_created', sa.Integer(), nullable=False),
        sa.Column('stats_errors', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'user_id', name='uq_sync_credentials_provider_user'),
    )
    op.create_index('ix_sync_credentials_provider', 'sync_credentials', ['provider'])
    op.create_index('ix_sync_credentials_sync_status', 'sync_credentials', ['sync_status'])
    op.create_index('ix_sync_credentials_enabled', 'sync_credentials', ['enabled'])

    op.create_table(
        'causas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fuero', sa.String(length=8), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('is_valid', sa.Boolean(), nullable=False),
        sa.Column('last_update', sa.DateTime(), nullable=True),
        sa.Column('last_update_status', sa.String(length=16), nullable=True),
        sa.Column('skip_until', sa.DateTime(), nullable=True),
        sa.Column('created_by_credential_id', sa.Integer(), sa.ForeignKey('sync_credentials.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_causas_fuero_number_year', 'causas', ['fuero', 'number', 'year'])
    op.create_index('ix_causas_last_update', 'causas', ['last_update'])
    op.create_index('ix_causas_created_by_credential_id', 'causas', ['created_by_credential_id'])

    op.create_table(
        'credential_causa_links',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credential_id', sa.Integer(), sa.ForeignKey('sync_credentials.id', ondelete='CASCADE'), nullable=False),
        sa.Column('causa_id', sa.Integer(), sa.ForeignKey('causas.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('credential_id', 'causa_id', name='uq_credential_causa_link'),
    )
    op.create_index('ix_credential_causa_links_causa_id', 'credential_causa_links', ['causa_id'])

    op.create_table(
        'folders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('causa_id', sa.Integer(), sa.ForeignKey('causas.id', ondelete='SET NULL'), nullable=True),
        sa.Column('credential_id', sa.Integer(), sa.ForeignKey('sync_credentials.id', ondelete='SET NULL'), nullable=True),
        sa.Column('archived', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_folders_credential_id', 'folders', ['credential_id'])

    op.create_table(
        'credential_sync_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credential_id', sa.Integer(), sa.ForeignKey('sync_credentials.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('triggered_by', sa.String(length=16), nullable=False),
        sa.Column('worker_name', sa.String(length=128), nullable=True),
        sa.Column('start_page', sa.Integer(), nullable=False),
        sa.Column('last_page', sa.Integer(), nullable=True),
        sa.Column('causas_processed', sa.Integer(), nullable=False),
        sa.Column('causas_created', sa.Integer(), nullable=False),
        sa.Column('causas_linked', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        sa.Column('details_json', sa.Text(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('duration_sec', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_credential_sync_runs_credential_status', 'credential_sync_runs', ['credential_id', 'status'])

    op.create_table(
        'portal_incidents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=16), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('detected_by', sa.String(length=128), nullable=False),
        sa.Column('total_errors', sa.Integer(), nullable=False),
        sa.Column('affected_credentials_json', sa.Text(), nullable=False),
        sa.Column('affected_workers_json', sa.Text(), nullable=False),
        sa.Column('error_samples_json', sa.Text(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_portal_incidents_provider_status', 'portal_incidents', ['provider', 'status'])


def downgrade() -> None:
    op.drop_table('portal_incidents')
    op.drop_table('credential_sync_runs')
    op.drop_table('folders')
    op.drop_table('credential_causa_links')
    op.drop_table('causas')
    op.drop_table('sync_credentials')
