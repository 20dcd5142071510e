from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from workers_api.api.v1.responses import ok
from workers_api.core.deps import require_permission
from workers_api.db.session import get_db
from workers_api.schemas.common import MutationOut
from workers_api.services.eligibility import EligibilityService

router = APIRouter()


@router.get('/stats/eligibility', response_model=MutationOut)
def eligibility_stats(
    threshold_hours: float | None = Query(default=None, alias='thresholdHours', ge=0, le=24 * 365),
    include_queue: bool = Query(default=False, alias='includeQueue'),
    fuero: str | None = Query(default=None, max_length=8),
    db: Session = Depends(get_db),
    user=Depends(require_permission('workers:read')),
):
    result = EligibilityService.evaluate(db, threshold_hours, fuero=fuero)
    data = {
        **result.stats.model_dump(by_alias=True),
        'thresholdHours': result.threshold_hours,
        'testMode': result.test_mode,
        'evaluatedAt': result.evaluated_at.isoformat(),
        'fuero': fuero.strip().upper() if fuero else None,
    }
    if include_queue:
        data['queue'] = result.queue
    return ok(data)
