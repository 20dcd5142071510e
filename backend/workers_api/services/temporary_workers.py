from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from workers_api.core.errors import PreconditionError, WorkersError
from workers_api.core.logging_config import structured_log
from workers_api.models.scraping import ScrapingWorkerConfig
from workers_api.repositories.audit import add_audit
from workers_api.services.range_partition import RangePartitionManager

logger = logging.getLogger(__name__)


class TemporaryWorkerReaper:
    """Cleanup of the overflow workers spawned automatically by the manager."""

    @staticmethod
    def list_temporary(db: Session) -> list[ScrapingWorkerConfig]:
        return (
            db.query(ScrapingWorkerConfig)
            .filter(ScrapingWorkerConfig.is_temporary == True)  # noqa: E712
            .order_by(ScrapingWorkerConfig.created_at.asc(), ScrapingWorkerConfig.id.asc())
            .all()
        )

    @staticmethod
    def delete(db: Session, worker_id: str, *, actor: str = 'system') -> None:
        row = RangePartitionManager.get(db, worker_id)
        if not row.is_temporary:
            raise PreconditionError('Solo se pueden eliminar workers temporarios', {'worker_id': worker_id})
        db.delete(row)
        add_audit(
            db, 'configuracion_scraping', worker_id, 'delete', actor,
            {'fuero': row.fuero, 'year': row.year, 'range_start': row.range_start, 'range_end': row.range_end},
            commit=False,
        )
        db.commit()
        logger.info('[reaper] deleted temporary worker %s', worker_id)

    @staticmethod
    def delete_many(db: Session, worker_ids: list[str], *, actor: str = 'system') -> dict:
        """
        Delete each id in order; a failure on one id is counted and the loop goes on.

        Returns {'deleted': n, 'errors': n, 'failed': [{'worker_id', 'error_code', 'message'}]}.
        """
        deleted = 0
        failed: list[dict] = []
        for worker_id in worker_ids:
            try:
                TemporaryWorkerReaper.delete(db, worker_id, actor=actor)
                deleted += 1
            except WorkersError as exc:
                db.rollback()
                failed.append({'worker_id': worker_id, 'error_code': exc.error_code, 'message': exc.message})
            except Exception as exc:
                db.rollback()
                logger.exception('[reaper] unexpected failure deleting %s', worker_id)
                failed.append({'worker_id': worker_id, 'error_code': 'INTERNAL_ERROR', 'message': str(exc)})
        structured_log('info', 'temporary_workers_deleted', deleted=deleted, errors=len(failed), actor=actor)
        return {'deleted': deleted, 'errors': len(failed), 'failed': failed}
