"""
Per-account synchronization state machine.

    never_synced -> pending -> in_progress -> completed | error
    completed | error -> pending   (scheduled or manual trigger)

Transitions into in_progress are claimed with a conditional UPDATE so two
workers can never hold the same credential; an in_progress lock older than
SYNC_LOCK_TIMEOUT_MINUTES is treated as abandoned and can be reclaimed.
The resume anchor (resume_page) outlives the run so an interrupted crawl
continues from the last reported page instead of page 1.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, update
from sqlalchemy.orm import Session

from workers_api.core.config import settings
from workers_api.core.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from workers_api.core.logging_config import log_transition
from workers_api.models.credentials import (
    SYNC_PROVIDERS,
    SYNC_STATUSES,
    CausaRecord,
    CredentialCausaLink,
    CredentialSyncRun,
    Folder,
    SyncCredential,
)
from workers_api.repositories.audit import add_audit
from workers_api.repositories.pagination import order_column, paginate
from workers_api.services.portal_incidents import PortalIncidentTracker
from workers_api.services.progress import percent

logger = logging.getLogger(__name__)

CREDENTIAL_SORT_FIELDS = {'created_at', 'updated_at', 'last_sync', 'consecutive_errors', 'sync_status', 'user_name'}
SCHEDULABLE_STATUSES = ('never_synced', 'completed', 'error')


def _stale_before() -> datetime:
    return datetime.utcnow() - timedelta(minutes=max(1, int(settings.sync_lock_timeout_minutes or 30)))


def mask_cuil(cuil: str) -> str:
    digits = ''.join(ch for ch in str(cuil or '') if ch.isdigit())
    if len(digits) < 4:
        return '*' * len(digits)
    return '*' * (len(digits) - 4) + digits[-4:]


def sync_progress_percent(causas_processed: int | None, total_expected: int | None) -> int:
    return percent(causas_processed, total_expected)


def current_sync_progress(row: SyncCredential) -> dict | None:
    if row.sync_status != 'in_progress':
        return None
    return {
        'startedAt': row.progress_started_at.isoformat() if row.progress_started_at else None,
        'currentPage': int(row.progress_current_page or 1),
        'totalPages': int(row.progress_total_pages or 0),
        'causasProcessed': int(row.progress_causas_processed or 0),
        'totalExpected': int(row.progress_total_expected or 0),
        'progress': sync_progress_percent(row.progress_causas_processed, row.progress_total_expected),
    }


def _clear_progress(row: SyncCredential) -> None:
    row.progress_started_at = None
    row.progress_current_page = None
    row.progress_total_pages = None
    row.progress_causas_processed = None
    row.progress_total_expected = None
    row.locked_by = None
    row.locked_at = None


def _clear_resume(row: SyncCredential) -> None:
    row.resume_page = None
    row.resume_causas_processed = None


def _open_run(db: Session, credential_id: int) -> CredentialSyncRun | None:
    return (
        db.query(CredentialSyncRun)
        .filter(CredentialSyncRun.credential_id == credential_id, CredentialSyncRun.status == 'in_progress')
        .order_by(CredentialSyncRun.started_at.desc(), CredentialSyncRun.id.desc())
        .first()
    )


def _close_run(run: CredentialSyncRun | None, status: str, **values) -> None:
    if run is None:
        return
    now = datetime.utcnow()
    run.status = status
    run.finished_at = now
    run.duration_sec = int((now - run.started_at).total_seconds()) if run.started_at else None
    for key, value in values.items():
        setattr(run, key, value)


class CredentialSyncController:
    @staticmethod
    def get(db: Session, credential_id: int, provider: str | None = None) -> SyncCredential:
        query = db.query(SyncCredential).filter(SyncCredential.id == credential_id)
        if provider:
            query = query.filter(SyncCredential.provider == provider)
        row = query.first()
        if row is None:
            raise NotFoundError(f'Credencial no encontrada: {credential_id}', {'id': credential_id, 'provider': provider})
        return row

    @staticmethod
    def register(
        db: Session,
        provider: str,
        user_id: str,
        *,
        cuil: str = '',
        user_name: str = '',
        user_email: str = '',
        verified: bool = False,
        is_valid: bool = False,
        actor: str = 'system',
    ) -> SyncCredential:
        if provider not in SYNC_PROVIDERS:
            raise ValidationError(f'proveedor invalido: {provider}', {'allowed': list(SYNC_PROVIDERS)})
        exists = (
            db.query(SyncCredential.id)
            .filter(SyncCredential.provider == provider, SyncCredential.user_id == user_id)
            .first()
        )
        if exists is not None:
            raise ConflictError('El usuario ya tiene una credencial registrada', {'user_id': user_id, 'provider': provider})
        now = datetime.utcnow()
        row = SyncCredential(
            provider=provider,
            user_id=user_id,
            user_name=user_name,
            user_email=user_email,
            cuil_masked=mask_cuil(cuil),
            enabled=True,
            verified=verified,
            verified_at=now if verified else None,
            is_valid=is_valid,
            is_valid_at=now if is_valid else None,
            sync_status='never_synced',
            consecutive_errors=0,
        )
        db.add(row)
        db.flush()
        add_audit(db, f'{provider}_credentials', row.id, 'create', actor, {'user_id': user_id}, commit=False)
        db.commit()
        db.refresh(row)
        log_transition(f'{provider}_credential', str(row.id), None, 'never_synced')
        return row

    @staticmethod
    def toggle_enabled(db: Session, credential_id: int, enabled: bool, *, provider: str | None = None, actor: str = 'system') -> SyncCredential:
        row = CredentialSyncController.get(db, credential_id, provider)
        row.enabled = bool(enabled)
        add_audit(db, f'{row.provider}_credentials', row.id, 'toggle', actor, {'enabled': bool(enabled)}, commit=False)
        db.commit()
        db.refresh(row)
        return row

    @staticmethod
    def delete(db: Session, credential_id: int, *, provider: str | None = None, actor: str = 'system') -> dict:
        row = CredentialSyncController.get(db, credential_id, provider)
        if row.sync_status == 'in_progress' and not (row.locked_at is not None and row.locked_at < _stale_before()):
            raise ConflictError('La credencial tiene una sincronizacion en curso', {'id': row.id})
        # links and runs go with the row; created causas and folders keep a NULL owner
        previous = row.sync_status
        summary = {'id': row.id, 'provider': row.provider, 'userId': row.user_id}
        add_audit(db, f'{row.provider}_credentials', row.id, 'delete', actor, summary, commit=False)
        db.delete(row)
        db.commit()
        log_transition(f'{summary["provider"]}_credential', str(summary['id']), previous, 'deleted')
        return summary

    @staticmethod
    def schedule(db: Session, credential_id: int, *, provider: str | None = None) -> SyncCredential:
        row = CredentialSyncController.get(db, credential_id, provider)
        if not row.enabled:
            raise PreconditionError('La credencial esta deshabilitada', {'id': row.id})
        if row.sync_status == 'pending':
            return row
        if row.sync_status == 'in_progress':
            if row.locked_at is not None and row.locked_at < _stale_before():
                CredentialSyncController._release_abandoned(db, row)
                db.commit()
                db.refresh(row)
                return row
            raise ConflictError('La credencial ya tiene una sincronizacion en curso', {'id': row.id})
        previous = row.sync_status
        row.sync_status = 'pending'
        db.commit()
        db.refresh(row)
        log_transition(f'{row.provider}_credential', str(row.id), previous, 'pending')
        return row

    @staticmethod
    def begin_run(
        db: Session,
        credential_id: int,
        worker_name: str,
        *,
        total_pages: int | None = None,
        total_expected: int | None = None,
        provider: str | None = None,
    ) -> tuple[SyncCredential, CredentialSyncRun]:
        row = CredentialSyncController.get(db, credential_id, provider)
        if not row.enabled:
            raise PreconditionError('La credencial esta deshabilitada', {'id': row.id})
        if row.sync_status not in ('pending', 'in_progress'):
            raise PreconditionError(
                'La credencial debe estar en estado pending para iniciar una sincronizacion',
                {'id': row.id, 'sync_status': row.sync_status},
            )

        now = datetime.utcnow()
        stale_before = _stale_before()
        reclaiming = row.sync_status == 'in_progress'
        start_page = int(row.resume_page or 1)
        processed = int(row.resume_causas_processed or 0)
        result = db.execute(
            update(SyncCredential)
            .where(
                SyncCredential.id == row.id,
                SyncCredential.enabled == True,  # noqa: E712
                or_(
                    SyncCredential.sync_status == 'pending',
                    and_(SyncCredential.sync_status == 'in_progress', SyncCredential.locked_at < stale_before),
                ),
            )
            .values(
                sync_status='in_progress',
                locked_by=worker_name,
                locked_at=now,
                last_sync_attempt=now,
                progress_started_at=now,
                progress_current_page=start_page,
                progress_total_pages=total_pages,
                progress_causas_processed=processed,
                progress_total_expected=total_expected,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if int(result.rowcount or 0) != 1:
            db.rollback()
            raise ConflictError('Otra sincronizacion ya tomo esta credencial', {'id': row.id})

        if reclaiming:
            _close_run(_open_run(db, row.id), 'interrupted', error_code='LOCK_TIMEOUT')
        run = CredentialSyncRun(
            credential_id=row.id,
            status='in_progress',
            triggered_by='resume' if start_page > 1 else 'manager',
            worker_name=worker_name,
            start_page=start_page,
            last_page=start_page,
            causas_processed=processed,
            started_at=now,
        )
        db.add(run)
        db.commit()
        db.refresh(row)
        db.refresh(run)
        log_transition(f'{row.provider}_credential', str(row.id), 'pending', 'in_progress', worker=worker_name, start_page=start_page)
        return row, run

    @staticmethod
    def _require_running(db: Session, credential_id: int, worker_name: str | None, provider: str | None) -> SyncCredential:
        row = CredentialSyncController.get(db, credential_id, provider)
        if row.sync_status != 'in_progress':
            raise PreconditionError('La credencial no tiene una sincronizacion en curso', {'id': row.id, 'sync_status': row.sync_status})
        if worker_name and row.locked_by and worker_name != row.locked_by:
            raise ConflictError('La sincronizacion pertenece a otro worker', {'id': row.id, 'locked_by': row.locked_by})
        return row

    @staticmethod
    def record_progress(
        db: Session,
        credential_id: int,
        current_page: int,
        causas_processed: int,
        *,
        total_pages: int | None = None,
        total_expected: int | None = None,
        worker_name: str | None = None,
        provider: str | None = None,
    ) -> SyncCredential:
        row = CredentialSyncController._require_running(db, credential_id, worker_name, provider)
        if current_page < int(row.progress_current_page or 1):
            raise ValidationError('La pagina actual no puede retroceder', {'current_page': current_page, 'previous': row.progress_current_page})
        now = datetime.utcnow()
        row.progress_current_page = current_page
        row.progress_causas_processed = causas_processed
        if total_pages is not None:
            row.progress_total_pages = total_pages
        if total_expected is not None:
            row.progress_total_expected = total_expected
        row.resume_page = current_page
        row.resume_causas_processed = causas_processed
        row.locked_at = now
        run = _open_run(db, row.id)
        if run is not None:
            run.last_page = current_page
            run.causas_processed = causas_processed
        db.commit()
        db.refresh(row)
        return row

    @staticmethod
    def complete_run(
        db: Session,
        credential_id: int,
        *,
        causas_found: int = 0,
        causas_created: int = 0,
        causas_linked: int = 0,
        folders_created: int = 0,
        errors: int = 0,
        causas_detail: list[dict] | None = None,
        worker_name: str | None = None,
        provider: str | None = None,
    ) -> SyncCredential:
        row = CredentialSyncController._require_running(db, credential_id, worker_name, provider)
        now = datetime.utcnow()
        run = _open_run(db, row.id)
        _close_run(
            run, 'completed',
            last_page=row.progress_current_page,
            causas_processed=int(row.progress_causas_processed or 0),
            causas_created=causas_created,
            causas_linked=causas_linked,
            details_json=json.dumps(causas_detail or [], ensure_ascii=False, default=str),
        )
        row.sync_status = 'completed'
        row.consecutive_errors = 0
        row.last_sync = now
        row.stats_total_causas_found = int(row.stats_total_causas_found or 0) + causas_found
        row.stats_last_causas_count = causas_found
        row.stats_new_causas_created = int(row.stats_new_causas_created or 0) + causas_created
        row.stats_causas_linked = int(row.stats_causas_linked or 0) + causas_linked
        row.stats_folders_created = int(row.stats_folders_created or 0) + folders_created
        row.stats_errors = int(row.stats_errors or 0) + errors
        _clear_progress(row)
        _clear_resume(row)
        db.commit()
        db.refresh(row)
        log_transition(f'{row.provider}_credential', str(row.id), 'in_progress', 'completed', causas_found=causas_found)
        return row

    @staticmethod
    def fail_run(
        db: Session,
        credential_id: int,
        message: str,
        code: str,
        *,
        portal_incident_type: str | None = None,
        worker_name: str | None = None,
        provider: str | None = None,
    ) -> SyncCredential:
        """
        Close the run as failed.

        Account failures land in 'error' and bump consecutive_errors. Failures
        attributed to the portal (explicit incident type, or an incident already
        active for the provider) go back to 'pending' without touching the counter.
        """
        row = CredentialSyncController._require_running(db, credential_id, worker_name, provider)
        now = datetime.utcnow()
        incident = None
        if portal_incident_type:
            incident = PortalIncidentTracker.report(
                db, portal_incident_type,
                provider=row.provider, credential_id=row.id, message=message, code=code,
                detected_by=worker_name or 'system', worker_name=worker_name, commit=False,
            )
        else:
            incident = PortalIncidentTracker.active(db, row.provider)
            if incident is not None:
                PortalIncidentTracker.record_error(db, incident, credential_id=row.id, message=message, code=code, worker_name=worker_name)

        row.last_error_message = message
        row.last_error_code = code
        row.last_error_at = now
        run = _open_run(db, row.id)
        if incident is not None:
            _close_run(run, 'interrupted', error_message=message, error_code=code, last_page=row.progress_current_page)
            row.sync_status = 'pending'
        else:
            _close_run(run, 'error', error_message=message, error_code=code, last_page=row.progress_current_page)
            row.sync_status = 'error'
            row.consecutive_errors = int(row.consecutive_errors or 0) + 1
            row.stats_errors = int(row.stats_errors or 0) + 1
        _clear_progress(row)
        db.commit()
        db.refresh(row)
        log_transition(
            f'{row.provider}_credential', str(row.id), 'in_progress', row.sync_status,
            error_code=code, consecutive_errors=row.consecutive_errors,
            portal_incident_id=incident.id if incident is not None else None,
        )
        return row

    @staticmethod
    def _release_abandoned(db: Session, row: SyncCredential) -> None:
        _close_run(_open_run(db, row.id), 'interrupted', error_code='LOCK_TIMEOUT')
        row.sync_status = 'pending'
        _clear_progress(row)
        log_transition(f'{row.provider}_credential', str(row.id), 'in_progress', 'pending', reason='lock_timeout')

    @staticmethod
    def reclaim_stale(db: Session) -> list[int]:
        rows = (
            db.query(SyncCredential)
            .filter(SyncCredential.sync_status == 'in_progress', SyncCredential.locked_at < _stale_before())
            .all()
        )
        for row in rows:
            CredentialSyncController._release_abandoned(db, row)
        db.commit()
        return [r.id for r in rows]

    @staticmethod
    def reset(db: Session, credential_id: int, *, provider: str | None = None, actor: str = 'system', commit: bool = True) -> SyncCredential:
        row = CredentialSyncController.get(db, credential_id, provider)
        previous = row.sync_status
        if previous == 'in_progress':
            _close_run(_open_run(db, row.id), 'interrupted', error_code='RESET')
        row.sync_status = 'pending'
        row.consecutive_errors = 0
        row.last_error_message = None
        row.last_error_code = None
        row.last_error_at = None
        _clear_progress(row)
        _clear_resume(row)
        add_audit(db, f'{row.provider}_credentials', row.id, 'reset', actor, {'previous_status': previous}, commit=False)
        if commit:
            db.commit()
            db.refresh(row)
        log_transition(f'{row.provider}_credential', str(row.id), previous, 'pending', reason='reset')
        return row

    @staticmethod
    def reset_and_clean_causas(
        db: Session,
        credential_id: int,
        dry_run: bool,
        *,
        provider: str | None = None,
        actor: str = 'system',
    ) -> dict:
        """
        Reset plus removal of everything this credential brought in.

        Causas created by this credential and linked to no other credential are
        deleted; the rest are only unlinked. Folders and run records of the
        credential are deleted. With dry_run nothing is written.
        """
        row = CredentialSyncController.get(db, credential_id, provider)
        folders = db.query(Folder).filter(Folder.credential_id == row.id).order_by(Folder.id.asc()).all()
        links = db.query(CredentialCausaLink).filter(CredentialCausaLink.credential_id == row.id).all()
        causa_ids = sorted({link.causa_id for link in links})
        shared_ids: set[int] = set()
        if causa_ids:
            shared_ids = {
                cid for (cid,) in db.query(CredentialCausaLink.causa_id)
                .filter(CredentialCausaLink.causa_id.in_(causa_ids), CredentialCausaLink.credential_id != row.id)
                .distinct()
                .all()
            }
        created_here = {
            cid for (cid,) in db.query(CausaRecord.id)
            .filter(CausaRecord.id.in_(causa_ids), CausaRecord.created_by_credential_id == row.id)
            .all()
        } if causa_ids else set()
        to_delete = [cid for cid in causa_ids if cid in created_here and cid not in shared_ids]
        to_unlink = [cid for cid in causa_ids if cid not in to_delete]
        run_ids = [rid for (rid,) in db.query(CredentialSyncRun.id).filter(CredentialSyncRun.credential_id == row.id).order_by(CredentialSyncRun.id.asc()).all()]

        effects: list[dict] = []
        effects.extend({'kind': 'folder', 'id': f.id, 'archived': bool(f.archived)} for f in folders)
        effects.extend({'kind': 'causa', 'id': cid, 'action': 'delete'} for cid in to_delete)
        effects.extend({'kind': 'causa', 'id': cid, 'action': 'unlink'} for cid in to_unlink)
        effects.extend({'kind': 'sync_run', 'id': rid} for rid in run_ids)
        archived = sum(1 for f in folders if f.archived)
        summary = {
            'credentialId': row.id,
            'dryRun': bool(dry_run),
            'folders': {'total': len(folders), 'active': len(folders) - archived, 'archived': archived},
            'causas': {'toDelete': len(to_delete), 'toUnlink': len(to_unlink)},
            'syncsToDelete': len(run_ids),
            'effects': effects,
        }
        if dry_run:
            return summary

        if folders:
            db.query(Folder).filter(Folder.id.in_([f.id for f in folders])).delete(synchronize_session=False)
        db.query(CredentialCausaLink).filter(CredentialCausaLink.credential_id == row.id).delete(synchronize_session=False)
        if to_delete:
            db.query(Folder).filter(Folder.causa_id.in_(to_delete)).update({Folder.causa_id: None}, synchronize_session=False)
            db.query(CausaRecord).filter(CausaRecord.id.in_(to_delete)).delete(synchronize_session=False)
        if run_ids:
            db.query(CredentialSyncRun).filter(CredentialSyncRun.id.in_(run_ids)).delete(synchronize_session=False)
        row.stats_total_causas_found = 0
        row.stats_last_causas_count = 0
        row.stats_new_causas_created = 0
        row.stats_causas_linked = 0
        row.stats_folders_created = 0
        row.stats_errors = 0
        row.last_sync = None
        CredentialSyncController.reset(db, row.id, actor=actor, commit=False)
        add_audit(
            db, f'{row.provider}_credentials', row.id, 'reset_sync', actor,
            {k: v for k, v in summary.items() if k != 'effects'},
            commit=False,
        )
        db.commit()
        db.refresh(row)
        logger.info('[credential:%s] reset-sync removed %s folders, %s causas, unlinked %s, %s runs',
                    row.id, len(folders), len(to_delete), len(to_unlink), len(run_ids))
        return summary

    @staticmethod
    def list_credentials(
        db: Session,
        provider: str,
        *,
        sync_status: str | None = None,
        verified: bool | None = None,
        is_valid: bool | None = None,
        enabled: bool | None = None,
        search: str | None = None,
        sort_by: str | None = None,
        sort_order: str = 'desc',
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[SyncCredential], dict]:
        query = db.query(SyncCredential).filter(SyncCredential.provider == provider)
        if sync_status:
            if sync_status not in SYNC_STATUSES:
                raise ValidationError(f'syncStatus invalido: {sync_status}', {'allowed': list(SYNC_STATUSES)})
            query = query.filter(SyncCredential.sync_status == sync_status)
        if verified is not None:
            query = query.filter(SyncCredential.verified == verified)
        if is_valid is not None:
            query = query.filter(SyncCredential.is_valid == is_valid)
        if enabled is not None:
            query = query.filter(SyncCredential.enabled == enabled)
        if search:
            term = f'%{search.strip()}%'
            query = query.filter(or_(
                SyncCredential.user_name.ilike(term),
                SyncCredential.user_email.ilike(term),
                SyncCredential.user_id.ilike(term),
            ))
        column = order_column(SyncCredential, sort_by, CREDENTIAL_SORT_FIELDS, 'created_at')
        ordering = column.asc() if str(sort_order).lower() == 'asc' else column.desc()
        return paginate(query.order_by(ordering, SyncCredential.id.asc()), page, limit)

    @staticmethod
    def stats(db: Session, provider: str) -> dict:
        base = db.query(SyncCredential).filter(SyncCredential.provider == provider)
        total = base.count()
        by_status = dict(
            db.query(SyncCredential.sync_status, func.count(SyncCredential.id))
            .filter(SyncCredential.provider == provider)
            .group_by(SyncCredential.sync_status)
            .all()
        )
        enabled = base.filter(SyncCredential.enabled == True).count()  # noqa: E712
        verified = base.filter(SyncCredential.verified == True).count()  # noqa: E712
        is_valid = base.filter(SyncCredential.is_valid == True).count()  # noqa: E712
        causas = int(
            db.query(func.coalesce(func.sum(SyncCredential.stats_last_causas_count), 0))
            .filter(SyncCredential.provider == provider)
            .scalar() or 0
        )
        folders = int(
            db.query(func.coalesce(func.sum(SyncCredential.stats_folders_created), 0))
            .filter(SyncCredential.provider == provider)
            .scalar() or 0
        )
        return {
            'total': total,
            'enabled': enabled,
            'disabled': total - enabled,
            'verified': verified,
            'notVerified': total - verified,
            'isValid': is_valid,
            'notValid': total - is_valid,
            'syncStatus': {
                'pending': int(by_status.get('pending', 0)),
                'inProgress': int(by_status.get('in_progress', 0)),
                'completed': int(by_status.get('completed', 0)),
                'error': int(by_status.get('error', 0)),
                'neverSynced': int(by_status.get('never_synced', 0)),
            },
            'totals': {
                'causas': causas,
                'folders': folders,
                'avgCausasPerUser': round(causas / total, 2) if total else 0,
            },
        }
