"""scraping worker ranges and range history

Revision ID: 0002_scraping_ranges
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = '0002_scraping_ranges'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'configuracion_scraping',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worker_id', sa.String(length=64), nullable=False),
        sa.Column('fuero', sa.String(length=8), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('range_start', sa.Integer(), nullable=False),
        sa.Column('range_end', sa.Integer(), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('is_temporary', sa.Boolean(), nullable=False),
        sa.Column('documents_processed', sa.Integer(), nullable=False),
        sa.Column('documents_found', sa.Integer(), nullable=False),
        sa.Column('total_found', sa.Integer(), nullable=False),
        sa.Column('total_not_found', sa.Integer(), nullable=False),
        sa.Column('total_errors', sa.Integer(), nullable=False),
        sa.Column('last_check', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_configuracion_scraping_worker_id', 'configuracion_scraping', ['worker_id'], unique=True)
    op.create_index('ix_configuracion_scraping_fuero_year', 'configuracion_scraping', ['fuero', 'year'])
    op.create_index('ix_configuracion_scraping_enabled', 'configuracion_scraping', ['enabled'])
    op.create_index('ix_configuracion_scraping_is_temporary', 'configuracion_scraping', ['is_temporary'])

    op.create_table(
        'configuracion_scraping_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('config_id', sa.Integer(), sa.ForeignKey('configuracion_scraping.id', ondelete='CASCADE'), nullable=False),
        sa.Column('worker_id', sa.String(length=64), nullable=False),
        sa.Column('fuero', sa.String(length=8), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('range_start', sa.Integer(), nullable=False),
        sa.Column('range_end', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('last_processed_number', sa.Integer(), nullable=True),
        sa.Column('documents_processed', sa.Integer(), nullable=False),
        sa.Column('documents_found', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('completion_email_sent', sa.Boolean(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('worker_id', 'version', name='uq_scraping_history_worker_version'),
    )
    op.create_index('ix_configuracion_scraping_history_config_id', 'configuracion_scraping_history', ['config_id'])
    op.create_index('ix_configuracion_scraping_history_completed_at', 'configuracion_scraping_history', ['completed_at'])
    op.create_index('ix_configuracion_scraping_history_fuero', 'configuracion_scraping_history', ['fuero'])


def downgrade() -> None:
    op.drop_table('configuracion_scraping_history')
    op.drop_index('ix_configuracion_scraping_is_temporary', table_name='configuracion_scraping')
    op.drop_index('ix_configuracion_scraping_enabled', table_name='configuracion_scraping')
    op.drop_index('ix_configuracion_scraping_fuero_year', table_name='configuracion_scraping')
    op.drop_index('ix_configuracion_scraping_worker_id', table_name='configuracion_scraping')
    op.drop_table('configuracion_scraping')
