from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, text

from workers_api.core.config import settings
from workers_api.core.deps import require_permission
from workers_api.core.request_metrics import summary as request_metrics_summary
from workers_api.db.session import SessionLocal
from workers_api.models.credentials import PortalIncident, SyncCredential
from workers_api.models.scraping import ScrapingWorkerConfig

router = APIRouter()


@router.get('/health')
def health():
    """
    Health check. Returns 200 with db_ok true when DB is reachable.
    Returns 503 when DB is unreachable.
    """
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text('SELECT 1'))
        db_ok = True
    except Exception:
        db_ok = False
    finally:
        db.close()
    if not db_ok:
        return JSONResponse(
            status_code=503,
            content={'ok': False, 'service': settings.app_name, 'db_ok': False, 'message': 'Database unreachable'},
        )
    return {'ok': True, 'service': settings.app_name, 'db_ok': True}


@router.get('/health/perf')
def health_perf(_user=Depends(require_permission('system:read'))):
    """Latencias por endpoint y conteos de estado de workers y credenciales. Requiere system:read."""
    db = SessionLocal()
    try:
        workers = dict(
            db.query(ScrapingWorkerConfig.enabled, func.count(ScrapingWorkerConfig.id))
            .group_by(ScrapingWorkerConfig.enabled)
            .all()
        )
        credentials = dict(
            db.query(SyncCredential.sync_status, func.count(SyncCredential.id))
            .group_by(SyncCredential.sync_status)
            .all()
        )
        active_incidents = db.query(PortalIncident).filter(PortalIncident.status == 'active').count()
    finally:
        db.close()
    return {
        'service': settings.app_name,
        'request_latency': request_metrics_summary(),
        'workers': {'enabled': int(workers.get(True, 0)), 'disabled': int(workers.get(False, 0))},
        'credentials_by_status': {str(k): int(v) for k, v in credentials.items()},
        'active_portal_incidents': active_incidents,
    }
