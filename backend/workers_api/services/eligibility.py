from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from workers_api.core.config import settings
from workers_api.core.errors import ValidationError
from workers_api.models.credentials import CausaRecord
from workers_api.models.scraping import FUEROS
from workers_api.schemas.eligibility import EligibilityRecord, EligibilityResult, EligibilityStats
from workers_api.services.progress import percent

logger = logging.getLogger(__name__)


def is_eligible(record, threshold: timedelta, now: datetime) -> bool:
    if not record.verified or not record.is_valid:
        return False
    if record.skip_until is not None and record.skip_until > now:
        return False
    if record.last_update is None:
        return True
    return now - record.last_update >= threshold


def evaluate(
    records: Iterable,
    threshold_hours: float,
    now: datetime,
    test_user_ids: set[str] | None = None,
) -> EligibilityResult:
    """
    Classify records for the next update cycle.

    With test_user_ids set only those users count towards eligible and the queue;
    total and updated_today are always computed over the full population.
    """
    if threshold_hours is None or threshold_hours < 0:
        raise ValidationError('thresholdHours debe ser mayor o igual a 0', {'thresholdHours': threshold_hours})
    threshold = timedelta(hours=float(threshold_hours))
    today = now.date()
    test_mode = test_user_ids is not None

    total = 0
    updated_today = 0
    eligible_rows = []
    for record in records:
        total += 1
        fresh_today = record.last_update is not None and record.last_update.date() == today
        if fresh_today:
            updated_today += 1
        if test_mode and record.user_id not in test_user_ids:
            continue
        if is_eligible(record, threshold, now):
            eligible_rows.append((record, fresh_today))

    with_errors = sum(1 for r, _ in eligible_rows if r.last_update_status == 'error')
    eligible_updated = sum(1 for _, fresh in eligible_rows if fresh)
    eligible = len(eligible_rows)
    queue = [
        r.id for r, _ in sorted(
            eligible_rows,
            key=lambda item: (item[0].last_update is not None, item[0].last_update or datetime.min, item[0].id),
        )
    ]
    stats = EligibilityStats(
        total=total,
        eligible=eligible,
        eligible_updated=eligible_updated,
        eligible_pending=eligible - eligible_updated,
        eligible_with_errors=with_errors,
        not_eligible=total - eligible,
        updated_today=updated_today,
        coverage_percent=percent(updated_today, total),
    )
    return EligibilityResult(
        stats=stats,
        queue=queue,
        threshold_hours=float(threshold_hours),
        test_mode=test_mode,
        evaluated_at=now,
    )


class EligibilityService:
    @staticmethod
    def load_records(db: Session, fuero: str | None = None) -> list[EligibilityRecord]:
        query = db.query(CausaRecord)
        if fuero:
            value = fuero.strip().upper()
            if value not in FUEROS:
                raise ValidationError(f'fuero invalido: {fuero}', {'allowed': list(FUEROS)})
            query = query.filter(CausaRecord.fuero == value)
        rows = query.order_by(CausaRecord.id.asc()).all()
        return [EligibilityRecord.model_validate(row) for row in rows]

    @staticmethod
    def evaluate(
        db: Session,
        threshold_hours: float | None = None,
        now: datetime | None = None,
        fuero: str | None = None,
    ) -> EligibilityResult:
        hours = settings.eligibility_threshold_hours if threshold_hours is None else threshold_hours
        test_ids = settings.test_user_ids() if settings.eligibility_test_mode else None
        result = evaluate(EligibilityService.load_records(db, fuero), hours, now or datetime.utcnow(), test_ids)
        logger.info(
            '[eligibility] fuero=%s total=%s eligible=%s coverage=%s%% test_mode=%s',
            fuero or '*', result.stats.total, result.stats.eligible, result.stats.coverage_percent, result.test_mode,
        )
        return result
