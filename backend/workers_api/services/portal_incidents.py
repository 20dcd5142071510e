"""
Portal-wide outages, kept apart from per-account sync failures.

While an incident is active, failures reported by credentials of that provider
are aggregated here and do not count against the individual account.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from workers_api.core.config import settings
from workers_api.core.errors import NotFoundError, ValidationError
from workers_api.core.logging_config import log_transition
from workers_api.models.credentials import PortalIncident

logger = logging.getLogger(__name__)

PORTAL_INCIDENT_TYPES = ('portal_down', 'portal_degraded', 'login_service_error')


def _loads(value: str | None) -> list:
    try:
        data = json.loads(value or '[]')
    except ValueError:
        return []
    return data if isinstance(data, list) else []


def incident_to_dict(row: PortalIncident) -> dict:
    return {
        'id': row.id,
        'provider': row.provider,
        'type': row.type,
        'status': row.status,
        'detectedBy': row.detected_by,
        'startedAt': row.started_at.isoformat() if row.started_at else None,
        'resolvedAt': row.resolved_at.isoformat() if row.resolved_at else None,
        'durationMinutes': row.duration_minutes,
        'totalErrors': int(row.total_errors or 0),
        'affectedCredentialsCount': len(_loads(row.affected_credentials_json)),
        'affectedWorkers': _loads(row.affected_workers_json),
        'errorSamples': _loads(row.error_samples_json),
    }


class PortalIncidentTracker:
    @staticmethod
    def active(db: Session, provider: str = 'pjn') -> PortalIncident | None:
        return (
            db.query(PortalIncident)
            .filter(PortalIncident.provider == provider, PortalIncident.status == 'active')
            .order_by(PortalIncident.started_at.desc(), PortalIncident.id.desc())
            .first()
        )

    @staticmethod
    def report(
        db: Session,
        incident_type: str,
        *,
        provider: str = 'pjn',
        credential_id: int | None = None,
        message: str = '',
        code: str | None = None,
        detected_by: str = 'system',
        worker_name: str | None = None,
        commit: bool = True,
    ) -> PortalIncident:
        """Open an incident of this type or fold the error into the active one."""
        if incident_type not in PORTAL_INCIDENT_TYPES:
            raise ValidationError(f'tipo de incidente invalido: {incident_type}', {'allowed': list(PORTAL_INCIDENT_TYPES)})
        row = (
            db.query(PortalIncident)
            .filter(
                PortalIncident.provider == provider,
                PortalIncident.type == incident_type,
                PortalIncident.status == 'active',
            )
            .first()
        )
        opened = row is None
        if opened:
            row = PortalIncident(
                provider=provider,
                type=incident_type,
                status='active',
                detected_by=detected_by,
                total_errors=0,
                started_at=datetime.utcnow(),
            )
            db.add(row)
        PortalIncidentTracker._aggregate(row, credential_id, message, code, worker_name)
        db.flush()
        if commit:
            db.commit()
        if opened:
            log_transition('portal_incident', str(row.id), None, 'active', type=incident_type, provider=provider, detected_by=detected_by)
        return row

    @staticmethod
    def record_error(
        db: Session,
        row: PortalIncident,
        *,
        credential_id: int | None,
        message: str,
        code: str | None,
        worker_name: str | None = None,
    ) -> None:
        PortalIncidentTracker._aggregate(row, credential_id, message, code, worker_name)

    @staticmethod
    def _aggregate(row: PortalIncident, credential_id: int | None, message: str, code: str | None, worker_name: str | None) -> None:
        row.total_errors = int(row.total_errors or 0) + 1
        if credential_id is not None:
            affected = _loads(row.affected_credentials_json)
            if credential_id not in affected:
                affected.append(credential_id)
            row.affected_credentials_json = json.dumps(affected)
        if worker_name:
            workers = _loads(row.affected_workers_json)
            if worker_name not in workers:
                workers.append(worker_name)
            row.affected_workers_json = json.dumps(workers)
        samples = _loads(row.error_samples_json)
        samples.append({
            'credentialId': credential_id,
            'message': message,
            'code': code,
            'timestamp': datetime.utcnow().isoformat(),
        })
        limit = max(1, int(settings.portal_incident_sample_limit or 10))
        row.error_samples_json = json.dumps(samples[-limit:], ensure_ascii=False)

    @staticmethod
    def resolve(db: Session, incident_id: int) -> PortalIncident:
        row = db.query(PortalIncident).filter(PortalIncident.id == incident_id).first()
        if row is None:
            raise NotFoundError(f'Incidente no encontrado: {incident_id}', {'id': incident_id})
        if row.status == 'resolved':
            return row
        now = datetime.utcnow()
        row.status = 'resolved'
        row.resolved_at = now
        row.duration_minutes = int((now - row.started_at).total_seconds() // 60) if row.started_at else None
        db.commit()
        db.refresh(row)
        log_transition('portal_incident', str(row.id), 'active', 'resolved', duration_minutes=row.duration_minutes)
        return row

    @staticmethod
    def status(db: Session, provider: str = 'pjn') -> dict:
        active = PortalIncidentTracker.active(db, provider)
        limit = max(1, int(settings.portal_incident_recent_limit or 20))
        recent = (
            db.query(PortalIncident)
            .filter(PortalIncident.provider == provider)
            .order_by(PortalIncident.started_at.desc(), PortalIncident.id.desc())
            .limit(limit)
            .all()
        )
        return {
            'portalAvailable': active is None or active.type != 'portal_down',
            'activeIncident': incident_to_dict(active) if active else None,
            'recentIncidents': [incident_to_dict(r) for r in recent],
        }
