from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from workers_api.api.v1.responses import iso, ok, page
from workers_api.core.deps import actor_of, require_permission, write_rate_limiter
from workers_api.core.errors import NotFoundError
from workers_api.db.session import get_db
from workers_api.models.credentials import SYNC_PROVIDERS
from workers_api.schemas.common import ListOut, MutationOut
from workers_api.schemas.credentials import (
    CausaCounts,
    CredentialOut,
    CredentialRegisterIn,
    CredentialStatsOut,
    FolderCounts,
    LastErrorOut,
    ResetSyncIn,
    ResetSyncOut,
    SyncCompleteIn,
    SyncFailIn,
    SyncProgressIn,
    SyncProgressOut,
    SyncRunOut,
    SyncStartIn,
    ToggleIn,
)
from workers_api.services.credential_sync import CredentialSyncController, current_sync_progress
from workers_api.services.portal_incidents import PortalIncidentTracker, incident_to_dict

router = APIRouter()


def _provider(provider: str) -> str:
    value = str(provider or '').strip().lower()
    if value not in SYNC_PROVIDERS:
        raise NotFoundError(f'Proveedor desconocido: {provider}', {'allowed': list(SYNC_PROVIDERS)})
    return value


def _credential_to_out(row) -> CredentialOut:
    progress = current_sync_progress(row)
    last_error = None
    if row.last_error_message or row.last_error_code:
        last_error = LastErrorOut(message=row.last_error_message, code=row.last_error_code, timestamp=iso(row.last_error_at))
    return CredentialOut(
        id=row.id,
        provider=row.provider,
        userId=row.user_id,
        userName=row.user_name or '',
        userEmail=row.user_email or '',
        cuilMasked=row.cuil_masked or '',
        enabled=bool(row.enabled),
        verified=bool(row.verified),
        isValid=bool(row.is_valid),
        syncStatus=row.sync_status,
        lastSync=iso(row.last_sync),
        lastSyncAttempt=iso(row.last_sync_attempt),
        consecutiveErrors=int(row.consecutive_errors or 0),
        lastError=last_error,
        currentSyncProgress=SyncProgressOut(**progress) if progress else None,
        resumePage=row.resume_page,
        stats=CredentialStatsOut(
            totalCausasFound=int(row.stats_total_causas_found or 0),
            lastCausasCount=int(row.stats_last_causas_count or 0),
            newCausasCreated=int(row.stats_new_causas_created or 0),
            causasLinked=int(row.stats_causas_linked or 0),
            foldersCreated=int(row.stats_folders_created or 0),
            errors=int(row.stats_errors or 0),
        ),
        createdAt=iso(row.created_at),
        updatedAt=iso(row.updated_at),
    )


def _run_to_out(run) -> SyncRunOut:
    return SyncRunOut(
        id=run.id,
        credentialId=run.credential_id,
        status=run.status,
        triggeredBy=run.triggered_by,
        workerName=run.worker_name,
        startPage=int(run.start_page or 1),
        lastPage=run.last_page,
        causasProcessed=int(run.causas_processed or 0),
        startedAt=iso(run.started_at),
    )


# Literal pjn routes go first so they are not captured by /{provider}-credentials/{credential_id}.

@router.get('/pjn-credentials/portal-status', response_model=MutationOut)
def portal_status(
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:read')),
):
    return ok(PortalIncidentTracker.status(db, 'pjn'))


@router.post('/pjn-credentials/portal-incidents/{incident_id:int}/resolve', response_model=MutationOut)
def resolve_incident(
    incident_id: int,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = PortalIncidentTracker.resolve(db, incident_id)
    return ok(incident_to_dict(row), 'Incidente resuelto')


@router.post('/pjn-credentials/{credential_id:int}/reset-sync', response_model=MutationOut)
def reset_sync(
    credential_id: int,
    payload: ResetSyncIn,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    summary = CredentialSyncController.reset_and_clean_causas(
        db, credential_id, payload.dry_run, provider='pjn', actor=actor_of(user),
    )
    out = ResetSyncOut(
        credentialId=summary['credentialId'],
        dryRun=summary['dryRun'],
        folders=FolderCounts(**summary['folders']),
        causas=CausaCounts(**summary['causas']),
        syncsToDelete=summary['syncsToDelete'],
        effects=summary['effects'],
    )
    message = 'Vista previa del reset (sin cambios)' if payload.dry_run else 'Credencial reseteada y causas limpiadas'
    return ok(out, message)


@router.get('/{provider}-credentials', response_model=ListOut)
def list_credentials(
    provider: str,
    sync_status: str | None = Query(default=None, alias='syncStatus'),
    verified: bool | None = Query(default=None),
    is_valid: bool | None = Query(default=None, alias='isValid'),
    enabled: bool | None = Query(default=None),
    search: str | None = Query(default=None, max_length=128),
    sort_by: str | None = Query(default=None, alias='sortBy'),
    sort_order: str = Query(default='desc', alias='sortOrder', pattern='^(asc|desc)$'),
    page_number: int = Query(default=1, alias='page', ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:read')),
):
    rows, pagination = CredentialSyncController.list_credentials(
        db,
        _provider(provider),
        sync_status=sync_status,
        verified=verified,
        is_valid=is_valid,
        enabled=enabled,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page_number,
        limit=limit,
    )
    return page([_credential_to_out(r) for r in rows], pagination)


@router.get('/{provider}-credentials/stats', response_model=MutationOut)
def credential_stats(
    provider: str,
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:read')),
):
    return ok(CredentialSyncController.stats(db, _provider(provider)))


@router.post('/{provider}-credentials', response_model=MutationOut, status_code=201)
def register_credential(
    provider: str,
    payload: CredentialRegisterIn,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = CredentialSyncController.register(
        db,
        _provider(provider),
        payload.user_id,
        cuil=payload.cuil,
        user_name=payload.user_name,
        user_email=payload.user_email,
        verified=payload.verified,
        is_valid=payload.is_valid,
        actor=actor_of(user),
    )
    return ok(_credential_to_out(row), 'Credencial registrada')


@router.get('/{provider}-credentials/{credential_id:int}', response_model=MutationOut)
def get_credential(
    provider: str,
    credential_id: int,
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:read')),
):
    return ok(_credential_to_out(CredentialSyncController.get(db, credential_id, _provider(provider))))


@router.patch('/{provider}-credentials/{credential_id:int}/toggle', response_model=MutationOut)
def toggle_credential(
    provider: str,
    credential_id: int,
    payload: ToggleIn,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = CredentialSyncController.toggle_enabled(
        db, credential_id, payload.enabled, provider=_provider(provider), actor=actor_of(user),
    )
    return ok(_credential_to_out(row), 'Credencial habilitada' if row.enabled else 'Credencial deshabilitada')


@router.post('/{provider}-credentials/{credential_id:int}/reset', response_model=MutationOut)
def reset_credential(
    provider: str,
    credential_id: int,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = CredentialSyncController.reset(db, credential_id, provider=_provider(provider), actor=actor_of(user))
    return ok(_credential_to_out(row), 'Sincronizacion reseteada')


@router.delete('/{provider}-credentials/{credential_id:int}', response_model=MutationOut)
def delete_credential(
    provider: str,
    credential_id: int,
    _rl=Depends(write_rate_limiter),
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    summary = CredentialSyncController.delete(db, credential_id, provider=_provider(provider), actor=actor_of(user))
    return ok(summary, 'Credencial eliminada')


@router.post('/{provider}-credentials/{credential_id:int}/sync/schedule', response_model=MutationOut)
def schedule_sync(
    provider: str,
    credential_id: int,
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = CredentialSyncController.schedule(db, credential_id, provider=_provider(provider))
    return ok(_credential_to_out(row), 'Sincronizacion programada')


@router.post('/{provider}-credentials/{credential_id:int}/sync/start', response_model=MutationOut)
def start_sync(
    provider: str,
    credential_id: int,
    payload: SyncStartIn,
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row, run = CredentialSyncController.begin_run(
        db,
        credential_id,
        payload.worker_name,
        total_pages=payload.total_pages,
        total_expected=payload.total_expected,
        provider=_provider(provider),
    )
    return ok({'credential': _credential_to_out(row), 'run': _run_to_out(run)})


@router.post('/{provider}-credentials/{credential_id:int}/sync/progress', response_model=MutationOut)
def sync_progress(
    provider: str,
    credential_id: int,
    payload: SyncProgressIn,
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = CredentialSyncController.record_progress(
        db,
        credential_id,
        payload.current_page,
        payload.causas_processed,
        total_pages=payload.total_pages,
        total_expected=payload.total_expected,
        worker_name=payload.worker_name,
        provider=_provider(provider),
    )
    return ok(_credential_to_out(row))


@router.post('/{provider}-credentials/{credential_id:int}/sync/complete', response_model=MutationOut)
def complete_sync(
    provider: str,
    credential_id: int,
    payload: SyncCompleteIn,
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = CredentialSyncController.complete_run(
        db,
        credential_id,
        causas_found=payload.causas_found,
        causas_created=payload.causas_created,
        causas_linked=payload.causas_linked,
        folders_created=payload.folders_created,
        errors=payload.errors,
        causas_detail=[d.model_dump() for d in payload.causas_detail],
        worker_name=payload.worker_name,
        provider=_provider(provider),
    )
    return ok(_credential_to_out(row), 'Sincronizacion completada')


@router.post('/{provider}-credentials/{credential_id:int}/sync/fail', response_model=MutationOut)
def fail_sync(
    provider: str,
    credential_id: int,
    payload: SyncFailIn,
    db: Session = Depends(get_db),
    user=Depends(require_permission('credentials:write')),
):
    row = CredentialSyncController.fail_run(
        db,
        credential_id,
        payload.message,
        payload.code,
        portal_incident_type=payload.portal_incident_type,
        worker_name=payload.worker_name,
        provider=_provider(provider),
    )
    return ok(_credential_to_out(row), 'Fallo registrado')
