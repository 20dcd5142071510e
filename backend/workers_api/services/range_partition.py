from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, not_, update
from sqlalchemy.orm import Session

from workers_api.core.errors import ConflictError, NoOpError, NotFoundError, PreconditionError, RangeNotCompletedError, ValidationError
from workers_api.core.logging_config import log_transition
from workers_api.models.scraping import FUEROS, ScrapingWorkerConfig
from workers_api.repositories.audit import add_audit
from workers_api.repositories.pagination import order_column, paginate
from workers_api.services.progress import is_completed
from workers_api.services.range_history import RangeHistoryLedger

logger = logging.getLogger(__name__)

CONFIG_SORT_FIELDS = {'worker_id', 'fuero', 'year', 'range_start', 'range_end', 'number', 'created_at', 'updated_at'}


def _normalize_fuero(fuero: str) -> str:
    value = str(fuero or '').strip().upper()
    if value not in FUEROS:
        raise ValidationError(f'fuero invalido: {fuero}', {'allowed': list(FUEROS)})
    return value


def validate_bounds(range_start: int, range_end: int) -> None:
    errors: dict[str, str] = {}
    if range_start < 1:
        errors['range_start'] = 'debe ser mayor o igual a 1'
    if range_end < 1:
        errors['range_end'] = 'debe ser mayor o igual a 1'
    if not errors and range_start >= range_end:
        errors['range_end'] = 'debe ser mayor que range_start'
    if errors:
        raise ValidationError('Rango invalido', {'errors': errors})


def _completed_clause():
    return and_(
        ScrapingWorkerConfig.enabled == False,  # noqa: E712
        ScrapingWorkerConfig.number >= ScrapingWorkerConfig.range_end,
    )


class RangePartitionManager:
    @staticmethod
    def get(db: Session, worker_id: str) -> ScrapingWorkerConfig:
        row = db.query(ScrapingWorkerConfig).filter(ScrapingWorkerConfig.worker_id == worker_id).first()
        if row is None:
            raise NotFoundError(f'Worker no encontrado: {worker_id}', {'worker_id': worker_id})
        return row

    @staticmethod
    def _next_worker_id(db: Session, fuero: str, year: int) -> str:
        prefix = f'scraping-{fuero.lower()}-{year}-'
        taken = {
            wid for (wid,) in db.query(ScrapingWorkerConfig.worker_id)
            .filter(ScrapingWorkerConfig.worker_id.like(f'{prefix}%'))
            .all()
        }
        n = len(taken) + 1
        while f'{prefix}{n}' in taken:
            n += 1
        return f'{prefix}{n}'

    @staticmethod
    def create_range(
        db: Session,
        fuero: str,
        year: int,
        range_start: int,
        range_end: int,
        initial_cursor: int | None = None,
        *,
        is_temporary: bool = False,
        worker_id: str | None = None,
        actor: str = 'system',
    ) -> ScrapingWorkerConfig:
        fuero = _normalize_fuero(fuero)
        validate_bounds(range_start, range_end)
        cursor = range_start if initial_cursor is None else int(initial_cursor)
        if cursor < range_start:
            raise ValidationError('El cursor inicial no puede ser menor que range_start', {'number': cursor})

        if worker_id:
            exists = db.query(ScrapingWorkerConfig.id).filter(ScrapingWorkerConfig.worker_id == worker_id).first()
            if exists is not None:
                raise ConflictError(f'Ya existe un worker con id {worker_id}', {'worker_id': worker_id})
        else:
            worker_id = RangePartitionManager._next_worker_id(db, fuero, year)

        row = ScrapingWorkerConfig(
            worker_id=worker_id,
            fuero=fuero,
            year=year,
            range_start=range_start,
            range_end=range_end,
            number=cursor,
            enabled=False,
            is_temporary=is_temporary,
        )
        db.add(row)
        db.flush()
        add_audit(
            db, 'configuracion_scraping', worker_id, 'create', actor,
            {'fuero': fuero, 'year': year, 'range_start': range_start, 'range_end': range_end, 'number': cursor},
            commit=False,
        )
        db.commit()
        db.refresh(row)
        logger.info('[range:%s] created %s/%s %s-%s cursor=%s', worker_id, fuero, year, range_start, range_end, cursor)
        return row

    @staticmethod
    def update_range(
        db: Session,
        worker_id: str,
        new_start: int,
        new_end: int,
        new_year: int,
        *,
        actor: str = 'system',
    ) -> ScrapingWorkerConfig:
        row = RangePartitionManager.get(db, worker_id)
        if not is_completed(row):
            raise RangeNotCompletedError(
                'El rango actual no esta completado',
                {'worker_id': worker_id, 'enabled': bool(row.enabled), 'number': row.number, 'range_end': row.range_end},
            )
        validate_bounds(new_start, new_end)
        if (new_start, new_end, new_year) == (row.range_start, row.range_end, row.year):
            raise NoOpError('El nuevo rango es identico al actual', {'worker_id': worker_id})

        old = (row.range_start, row.range_end, row.year)
        entry = RangeHistoryLedger.append(db, row)
        result = db.execute(
            update(ScrapingWorkerConfig)
            .where(
                ScrapingWorkerConfig.id == row.id,
                _completed_clause(),
                ScrapingWorkerConfig.range_start == old[0],
                ScrapingWorkerConfig.range_end == old[1],
                ScrapingWorkerConfig.year == old[2],
            )
            .values(
                range_start=new_start,
                range_end=new_end,
                year=new_year,
                number=new_start,
                enabled=False,
                documents_processed=0,
                documents_found=0,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if int(result.rowcount or 0) != 1:
            db.rollback()
            raise ConflictError('El worker fue modificado concurrentemente', {'worker_id': worker_id})

        add_audit(
            db, 'configuracion_scraping', worker_id, 'update_range', actor,
            {'previous': list(old), 'range_start': new_start, 'range_end': new_end, 'year': new_year, 'version': entry.version},
            commit=False,
        )
        db.commit()
        db.refresh(row)
        log_transition('configuracion_scraping', worker_id, f'{old[0]}-{old[1]}/{old[2]}', f'{new_start}-{new_end}/{new_year}', version=entry.version)
        return row

    @staticmethod
    def set_enabled(db: Session, worker_id: str, enabled: bool, *, actor: str = 'system') -> ScrapingWorkerConfig:
        row = RangePartitionManager.get(db, worker_id)
        if enabled and row.number >= row.range_end:
            raise PreconditionError(
                'El rango esta agotado; actualice el rango antes de activar el worker',
                {'worker_id': worker_id, 'number': row.number, 'range_end': row.range_end},
            )
        if bool(row.enabled) == bool(enabled):
            return row
        previous = bool(row.enabled)
        row.enabled = bool(enabled)
        add_audit(db, 'configuracion_scraping', worker_id, 'toggle', actor, {'enabled': bool(enabled)}, commit=False)
        db.commit()
        db.refresh(row)
        log_transition('configuracion_scraping', worker_id, 'enabled' if previous else 'disabled', 'enabled' if enabled else 'disabled')
        return row

    @staticmethod
    def advance_cursor(
        db: Session,
        worker_id: str,
        number: int,
        *,
        found: int = 0,
        not_found: int = 0,
        errors: int = 0,
    ) -> ScrapingWorkerConfig:
        """Observe the crawl position reported by a worker. The range is exhausted once number reaches range_end."""
        row = RangePartitionManager.get(db, worker_id)
        if is_completed(row):
            raise PreconditionError('El rango ya esta completado', {'worker_id': worker_id})
        if number < row.number:
            raise ValidationError('El cursor no puede retroceder', {'number': number, 'current': row.number})
        if number > row.range_end:
            raise ValidationError('El cursor excede range_end', {'number': number, 'range_end': row.range_end})

        row.documents_processed = int(row.documents_processed or 0) + (number - row.number)
        row.documents_found = int(row.documents_found or 0) + max(0, found)
        row.total_found = int(row.total_found or 0) + max(0, found)
        row.total_not_found = int(row.total_not_found or 0) + max(0, not_found)
        row.total_errors = int(row.total_errors or 0) + max(0, errors)
        row.number = number
        row.last_check = datetime.utcnow()
        exhausted = number >= row.range_end
        if exhausted:
            row.enabled = False
        db.commit()
        db.refresh(row)
        if exhausted:
            log_transition('configuracion_scraping', worker_id, 'running', 'completed', number=number)
        return row

    @staticmethod
    def list_configs(
        db: Session,
        *,
        fuero: str | None = None,
        year: int | None = None,
        enabled: bool | None = None,
        progress: str | None = None,
        is_temporary: bool | None = None,
        sort_by: str | None = None,
        sort_order: str = 'desc',
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ScrapingWorkerConfig], dict]:
        query = db.query(ScrapingWorkerConfig)
        if fuero:
            query = query.filter(ScrapingWorkerConfig.fuero == _normalize_fuero(fuero))
        if year is not None:
            query = query.filter(ScrapingWorkerConfig.year == year)
        if enabled is not None:
            query = query.filter(ScrapingWorkerConfig.enabled == enabled)
        if is_temporary is not None:
            query = query.filter(ScrapingWorkerConfig.is_temporary == is_temporary)
        if progress == 'completed':
            query = query.filter(_completed_clause())
        elif progress == 'in_progress':
            query = query.filter(not_(_completed_clause()), ScrapingWorkerConfig.number > ScrapingWorkerConfig.range_start)
        elif progress == 'not_started':
            query = query.filter(
                not_(_completed_clause()),
                ScrapingWorkerConfig.number <= ScrapingWorkerConfig.range_start,
            )
        elif progress:
            raise ValidationError(f'filtro de progreso invalido: {progress}')
        column = order_column(ScrapingWorkerConfig, sort_by, CONFIG_SORT_FIELDS, 'created_at')
        ordering = column.asc() if str(sort_order).lower() == 'asc' else column.desc()
        query = query.order_by(ordering, ScrapingWorkerConfig.id.asc())
        return paginate(query, page, limit)
