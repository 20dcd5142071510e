from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship, synonym

from workers_api.db.base import Base


FUEROS = ('CIV', 'COM', 'CSS', 'CNT')


class ScrapingWorkerConfig(Base):
    """One scanning assignment: a numeric range of case numbers for a (fuero, year)."""

    __tablename__ = 'configuracion_scraping'

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(String(64), nullable=False, unique=True, index=True)
    fuero = Column(String(8), nullable=False, index=True)
    year = Column(Integer, nullable=False, index=True)
    range_start = Column(Integer, nullable=False)
    range_end = Column(Integer, nullable=False)
    # current scan position inside [range_start, range_end]
    number = Column(Integer, nullable=False)
    cursor = synonym('number')
    enabled = Column(Boolean, nullable=False, default=False, index=True)
    is_temporary = Column(Boolean, nullable=False, default=False, index=True)
    documents_processed = Column(Integer, nullable=False, default=0)
    documents_found = Column(Integer, nullable=False, default=0)
    total_found = Column(Integer, nullable=False, default=0)
    total_not_found = Column(Integer, nullable=False, default=0)
    total_errors = Column(Integer, nullable=False, default=0)
    last_check = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    range_history = relationship(
        'RangeHistoryEntry',
        back_populates='config',
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='RangeHistoryEntry.version',
    )

    __table_args__ = (
        Index('ix_configuracion_scraping_fuero_year', 'fuero', 'year'),
    )


class RangeHistoryEntry(Base):
    """Snapshot of a finished range. Written once, never updated."""

    __tablename__ = 'configuracion_scraping_history'

    id = Column(Integer, primary_key=True, index=True)
    config_id = Column(Integer, ForeignKey('configuracion_scraping.id', ondelete='CASCADE'), nullable=False, index=True)
    worker_id = Column(String(64), nullable=False, index=True)
    fuero = Column(String(8), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    range_start = Column(Integer, nullable=False)
    range_end = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False, index=True)
    last_processed_number = Column(Integer, nullable=True)
    documents_processed = Column(Integer, nullable=False, default=0)
    documents_found = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=False)
    completion_email_sent = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    config = relationship('ScrapingWorkerConfig', back_populates='range_history')

    __table_args__ = (
        UniqueConstraint('worker_id', 'version', name='uq_scraping_history_worker_version'),
    )
