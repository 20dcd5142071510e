from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from workers_api.api.v1.responses import iso, ok, page
from workers_api.core.deps import actor_of, require_permission, write_rate_limiter
from workers_api.db.session import get_db
from workers_api.schemas.common import ListOut, MutationOut
from workers_api.schemas.scraping import (
    BulkDeleteIn,
    BulkDeleteOut,
    CursorIn,
    EnabledIn,
    RangeHistoryOut,
    RangeUpdateIn,
    ScrapingConfigCreateIn,
    ScrapingConfigOut,
)
from workers_api.services.progress import is_completed, progress_bucket, progress_percent
from workers_api.services.range_history import RangeHistoryLedger
from workers_api.services.range_partition import RangePartitionManager
from workers_api.services.temporary_workers import TemporaryWorkerReaper

router = APIRouter()


def _history_to_out(row) -> RangeHistoryOut:
    return RangeHistoryOut(
        id=row.id,
        worker_id=row.worker_id,
        fuero=row.fuero,
        version=row.version,
        range_start=row.range_start,
        range_end=row.range_end,
        year=row.year,
        last_processed_number=row.last_processed_number,
        documents_processed=int(row.documents_processed or 0),
        documents_found=int(row.documents_found or 0),
        enabled=bool(row.enabled),
        completion_email_sent=bool(row.completion_email_sent),
        completed_at=iso(row.completed_at),
    )


def _config_to_out(row, with_history: bool = False) -> ScrapingConfigOut:
    return ScrapingConfigOut(
        id=row.id,
        worker_id=row.worker_id,
        fuero=row.fuero,
        year=row.year,
        range_start=row.range_start,
        range_end=row.range_end,
        number=row.number,
        enabled=bool(row.enabled),
        is_temporary=bool(row.is_temporary),
        progress=progress_percent(row),
        progress_status=progress_bucket(row),
        completed=is_completed(row),
        documents_processed=int(row.documents_processed or 0),
        documents_found=int(row.documents_found or 0),
        total_found=int(row.total_found or 0),
        total_not_found=int(row.total_not_found or 0),
        total_errors=int(row.total_errors or 0),
        last_check=iso(row.last_check),
        created_at=iso(row.created_at),
        updated_at=iso(row.updated_at),
        range_history=[_history_to_out(h) for h in sorted(row.range_history, key=lambda h: -h.version)] if with_history else None,
    )


@router.post('/', response_model=MutationOut, status_code=201)
def create_config(
    payload: ScrapingConfigCreateIn,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:write')),
):
    row = RangePartitionManager.create_range(
        db,
        payload.fuero,
        payload.year,
        payload.range_start,
        payload.range_end,
        payload.number,
        is_temporary=payload.is_temporary,
        worker_id=payload.worker_id,
        actor=actor_of(user),
    )
    return ok(_config_to_out(row), 'Configuracion creada')


@router.get('/', response_model=ListOut)
def list_configs(
    fuero: str | None = Query(default=None),
    year: int | None = Query(default=None),
    enabled: bool | None = Query(default=None),
    progreso: str | None = Query(default=None, pattern='^(completed|in_progress|not_started)$'),
    is_temporary: bool | None = Query(default=None, alias='isTemporary'),
    sort_by: str | None = Query(default=None, alias='sortBy'),
    sort_order: str = Query(default='desc', alias='sortOrder', pattern='^(asc|desc)$'),
    page_number: int = Query(default=1, alias='page', ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:read')),
):
    rows, pagination = RangePartitionManager.list_configs(
        db,
        fuero=fuero,
        year=year,
        enabled=enabled,
        progress=progreso,
        is_temporary=is_temporary,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page_number,
        limit=limit,
    )
    return page([_config_to_out(r) for r in rows], pagination)


@router.get('/temporary', response_model=MutationOut)
def list_temporary(
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:read')),
):
    return ok([_config_to_out(r) for r in TemporaryWorkerReaper.list_temporary(db)])


@router.post('/temporary/delete', response_model=MutationOut)
def delete_temporary_many(
    payload: BulkDeleteIn,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:write')),
):
    result = TemporaryWorkerReaper.delete_many(db, payload.worker_ids, actor=actor_of(user))
    message = f'{result["deleted"]} workers eliminados, {result["errors"]} errores'
    return ok(BulkDeleteOut(**result), message)


@router.get('/{worker_id}', response_model=MutationOut)
def get_config(
    worker_id: str,
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:read')),
):
    return ok(_config_to_out(RangePartitionManager.get(db, worker_id), with_history=True))


@router.put('/{worker_id}/range', response_model=MutationOut)
def update_range(
    worker_id: str,
    payload: RangeUpdateIn,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:write')),
):
    row = RangePartitionManager.update_range(
        db, worker_id, payload.range_start, payload.range_end, payload.year, actor=actor_of(user),
    )
    return ok(_config_to_out(row, with_history=True), 'Rango actualizado; active el worker para continuar')


@router.patch('/{worker_id}/enabled', response_model=MutationOut)
def set_enabled(
    worker_id: str,
    payload: EnabledIn,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:write')),
):
    row = RangePartitionManager.set_enabled(db, worker_id, payload.enabled, actor=actor_of(user))
    return ok(_config_to_out(row), 'Worker activado' if row.enabled else 'Worker desactivado')


@router.post('/{worker_id}/cursor', response_model=MutationOut)
def report_cursor(
    worker_id: str,
    payload: CursorIn,
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:write')),
):
    row = RangePartitionManager.advance_cursor(
        db, worker_id, payload.number, found=payload.found, not_found=payload.not_found, errors=payload.errors,
    )
    return ok(_config_to_out(row))


@router.delete('/{worker_id}', response_model=MutationOut)
def delete_temporary(
    worker_id: str,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:write')),
):
    TemporaryWorkerReaper.delete(db, worker_id, actor=actor_of(user))
    return ok({'worker_id': worker_id}, 'Worker temporal eliminado')


history_router = APIRouter()


@history_router.get('/', response_model=ListOut)
def list_history(
    fuero: str | None = Query(default=None),
    year: int | None = Query(default=None),
    worker_id: str | None = Query(default=None, alias='workerId'),
    sort_by: str | None = Query(default=None, alias='sortBy'),
    sort_order: str = Query(default='desc', alias='sortOrder', pattern='^(asc|desc)$'),
    page_number: int = Query(default=1, alias='page', ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:read')),
):
    rows, pagination = RangeHistoryLedger.search(
        db,
        fuero=fuero,
        year=year,
        worker_id=worker_id,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page_number,
        limit=limit,
    )
    return page([_history_to_out(r) for r in rows], pagination)
