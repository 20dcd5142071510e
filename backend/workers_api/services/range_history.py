from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workers_api.core.errors import ConflictError
from workers_api.models.scraping import RangeHistoryEntry, ScrapingWorkerConfig
from workers_api.repositories.pagination import order_column, paginate

logger = logging.getLogger(__name__)

HISTORY_SORT_FIELDS = {'completed_at', 'version', 'year', 'range_start', 'range_end', 'worker_id', 'fuero', 'documents_found'}


class RangeHistoryLedger:
    """Append-only record of every range a worker has finished."""

    @staticmethod
    def current_version(db: Session, worker_id: str) -> int:
        value = (
            db.query(func.max(RangeHistoryEntry.version))
            .filter(RangeHistoryEntry.worker_id == worker_id)
            .scalar()
        )
        return int(value or 0)

    @staticmethod
    def append(
        db: Session,
        config: ScrapingWorkerConfig,
        *,
        version: int | None = None,
        completed_at: datetime | None = None,
        completion_email_sent: bool = False,
    ) -> RangeHistoryEntry:
        """
        Snapshot the config's current range as the next version.

        Flushes but does not commit: the caller owns the transaction so the entry
        and the range mutation land together or not at all.
        """
        expected = RangeHistoryLedger.current_version(db, config.worker_id) + 1
        if version is not None and version != expected:
            raise ConflictError(
                'Version de historial fuera de secuencia',
                {'worker_id': config.worker_id, 'expected': expected, 'received': version},
            )
        entry = RangeHistoryEntry(
            config_id=config.id,
            worker_id=config.worker_id,
            fuero=config.fuero,
            version=expected,
            range_start=config.range_start,
            range_end=config.range_end,
            year=config.year,
            last_processed_number=config.number,
            documents_processed=int(config.documents_processed or 0),
            documents_found=int(config.documents_found or 0),
            enabled=bool(config.enabled),
            completion_email_sent=completion_email_sent,
            completed_at=completed_at or datetime.utcnow(),
        )
        db.add(entry)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ConflictError(
                'Otra escritura registro la misma version de historial',
                {'worker_id': config.worker_id, 'version': expected},
            )
        logger.info('[history:%s] appended v%s %s-%s/%s', config.worker_id, expected, config.range_start, config.range_end, config.year)
        return entry

    @staticmethod
    def list_for(db: Session, worker_id: str) -> list[RangeHistoryEntry]:
        return (
            db.query(RangeHistoryEntry)
            .filter(RangeHistoryEntry.worker_id == worker_id)
            .order_by(RangeHistoryEntry.version.desc())
            .all()
        )

    @staticmethod
    def search(
        db: Session,
        *,
        fuero: str | None = None,
        year: int | None = None,
        worker_id: str | None = None,
        sort_by: str | None = None,
        sort_order: str = 'desc',
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[RangeHistoryEntry], dict]:
        query = db.query(RangeHistoryEntry)
        if fuero:
            query = query.filter(RangeHistoryEntry.fuero == fuero.strip().upper())
        if year is not None:
            query = query.filter(RangeHistoryEntry.year == year)
        if worker_id:
            query = query.filter(RangeHistoryEntry.worker_id == worker_id)
        column = order_column(RangeHistoryEntry, sort_by, HISTORY_SORT_FIELDS, 'completed_at')
        ordering = column.asc() if str(sort_order).lower() == 'asc' else column.desc()
        query = query.order_by(ordering, RangeHistoryEntry.id.desc())
        return paginate(query, page, limit)
