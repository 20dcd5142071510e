"""audit log and auth tables

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('actor', sa.String(length=64), nullable=False),
        sa.Column('payload_json', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_log_entity_id', 'audit_log', ['entity_id'])
    op.create_table(
        'auth_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=128), nullable=False),
        sa.Column('refresh_token_hash', sa.String(length=255), nullable=False),
        sa.Column('revoked', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('rotated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('refresh_token_hash'),
    )
    op.create_index('ix_auth_sessions_username', 'auth_sessions', ['username'])
    op.create_index('ix_auth_sessions_revoked', 'auth_sessions', ['revoked'])
    op.create_table(
        'auth_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=128), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_auth_users_username', 'auth_users', ['username'], unique=True)
    op.create_table(
        'auth_user_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=128), nullable=False),
        sa.Column('failed_attempts', sa.Integer(), nullable=False),
        sa.Column('blocked_until', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_auth_user_state_username', 'auth_user_state', ['username'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_auth_user_state_username', table_name='auth_user_state')
    op.drop_table('auth_user_state')
    op.drop_index('ix_auth_users_username', table_name='auth_users')
    op.drop_table('auth_users')
    op.drop_index('ix_auth_sessions_revoked', table_name='auth_sessions')
    op.drop_index('ix_auth_sessions_username', table_name='auth_sessions')
    op.drop_table('auth_sessions')
    op.drop_index('ix_audit_log_entity_id', table_name='audit_log')
    op.drop_table('audit_log')
