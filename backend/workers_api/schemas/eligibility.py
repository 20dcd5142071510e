from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EligibilityRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str | None = None
    verified: bool = False
    is_valid: bool = False
    last_update: datetime | None = None
    last_update_status: str | None = None
    skip_until: datetime | None = None


class EligibilityStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    eligible: int = 0
    eligible_updated: int = Field(default=0, alias='eligibleUpdated')
    eligible_pending: int = Field(default=0, alias='eligiblePending')
    eligible_with_errors: int = Field(default=0, alias='eligibleWithErrors')
    not_eligible: int = Field(default=0, alias='notEligible')
    updated_today: int = Field(default=0, alias='updatedToday')
    coverage_percent: int = Field(default=0, alias='coveragePercent')


class EligibilityResult(BaseModel):
    stats: EligibilityStats
    queue: list[int] = Field(default_factory=list)
    threshold_hours: float
    test_mode: bool = False
    evaluated_at: datetime
