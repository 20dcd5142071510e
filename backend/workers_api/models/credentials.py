from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from workers_api.db.base import Base


SYNC_PROVIDERS = ('pjn', 'scba')
SYNC_STATUSES = ('never_synced', 'pending', 'in_progress', 'completed', 'error')


class SyncCredential(Base):
    __tablename__ = 'sync_credentials'

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(16), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String(128), nullable=False, default='')
    user_email = Column(String(255), nullable=False, default='')
    cuil_masked = Column(String(32), nullable=False, default='')
    enabled = Column(Boolean, nullable=False, default=True, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    is_valid = Column(Boolean, nullable=False, default=False)
    is_valid_at = Column(DateTime, nullable=True)

    sync_status = Column(String(16), nullable=False, default='never_synced', index=True)
    last_sync = Column(DateTime, nullable=True)
    last_sync_attempt = Column(DateTime, nullable=True)
    consecutive_errors = Column(Integer, nullable=False, default=0)
    last_error_message = Column(Text, nullable=True)
    last_error_code = Column(String(64), nullable=True)
    last_error_at = Column(DateTime, nullable=True)

    # in-flight run, only meaningful while sync_status == 'in_progress'
    progress_started_at = Column(DateTime, nullable=True)
    progress_current_page = Column(Integer, nullable=True)
    progress_total_pages = Column(Integer, nullable=True)
    progress_causas_processed = Column(Integer, nullable=True)
    progress_total_expected = Column(Integer, nullable=True)
    # resume anchor, survives an interrupted run
    resume_page = Column(Integer, nullable=True)
    resume_causas_processed = Column(Integer, nullable=True)
    locked_by = Column(String(128), nullable=True)
    locked_at = Column(DateTime, nullable=True)

    stats_total_causas_found = Column(Integer, nullable=False, default=0)
    stats_last_causas_count = Column(Integer, nullable=False, default=0)
    stats_new_causas_created = Column(Integer, nullable=False, default=0)
    stats_causas_linked = Column(Integer, nullable=False, default=0)
    stats_folders_created = Column(Integer, nullable=False, default=0)
    stats_errors = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('provider', 'user_id', name='uq_sync_credentials_provider_user'),
    )


class CausaRecord(Base):
    __tablename__ = 'causas'

    id = Column(Integer, primary_key=True, index=True)
    fuero = Column(String(8), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    user_id = Column(String(64), nullable=True, index=True)
    verified = Column(Boolean, nullable=False, default=False, index=True)
    is_valid = Column(Boolean, nullable=False, default=False, index=True)
    last_update = Column(DateTime, nullable=True, index=True)
    last_update_status = Column(String(16), nullable=True)
    skip_until = Column(DateTime, nullable=True)
    created_by_credential_id = Column(Integer, ForeignKey('sync_credentials.id', ondelete='SET NULL'), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_causas_fuero_number_year', 'fuero', 'number', 'year'),
    )


class CredentialCausaLink(Base):
    __tablename__ = 'credential_causa_links'

    id = Column(Integer, primary_key=True, index=True)
    credential_id = Column(Integer, ForeignKey('sync_credentials.id', ondelete='CASCADE'), nullable=False, index=True)
    causa_id = Column(Integer, ForeignKey('causas.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('credential_id', 'causa_id', name='uq_credential_causa_link'),
    )


class Folder(Base):
    __tablename__ = 'folders'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False, default='')
    causa_id = Column(Integer, ForeignKey('causas.id', ondelete='SET NULL'), nullable=True, index=True)
    credential_id = Column(Integer, ForeignKey('sync_credentials.id', ondelete='SET NULL'), nullable=True, index=True)
    archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class CredentialSyncRun(Base):
    __tablename__ = 'credential_sync_runs'

    id = Column(Integer, primary_key=True, index=True)
    credential_id = Column(Integer, ForeignKey('sync_credentials.id', ondelete='CASCADE'), nullable=False, index=True)
    status = Column(String(16), nullable=False, default='in_progress', index=True)
    triggered_by = Column(String(16), nullable=False, default='manager')
    worker_name = Column(String(128), nullable=True)
    start_page = Column(Integer, nullable=False, default=1)
    last_page = Column(Integer, nullable=True)
    causas_processed = Column(Integer, nullable=False, default=0)
    causas_created = Column(Integer, nullable=False, default=0)
    causas_linked = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    error_code = Column(String(64), nullable=True)
    details_json = Column(Text, nullable=False, default='[]')
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)
    duration_sec = Column(Integer, nullable=True)


class PortalIncident(Base):
    __tablename__ = 'portal_incidents'

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(16), nullable=False, default='pjn', index=True)
    type = Column(String(32), nullable=False, index=True)
    status = Column(String(16), nullable=False, default='active', index=True)
    detected_by = Column(String(128), nullable=False, default='system')
    total_errors = Column(Integer, nullable=False, default=0)
    affected_credentials_json = Column(Text, nullable=False, default='[]')
    affected_workers_json = Column(Text, nullable=False, default='[]')
    error_samples_json = Column(Text, nullable=False, default='[]')
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    resolved_at = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
