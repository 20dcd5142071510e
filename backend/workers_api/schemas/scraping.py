from __future__ import annotations

from pydantic import BaseModel, Field


class ScrapingConfigCreateIn(BaseModel):
    fuero: str = Field(min_length=2, max_length=8)
    year: int = Field(ge=1900, le=2100)
    range_start: int
    range_end: int
    number: int | None = None
    is_temporary: bool = False
    worker_id: str | None = Field(default=None, min_length=1, max_length=64)


class RangeUpdateIn(BaseModel):
    range_start: int
    range_end: int
    year: int = Field(ge=1900, le=2100)


class EnabledIn(BaseModel):
    enabled: bool


class CursorIn(BaseModel):
    number: int
    found: int = Field(default=0, ge=0)
    not_found: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)


class BulkDeleteIn(BaseModel):
    worker_ids: list[str] = Field(default_factory=list, max_length=500)


class RangeHistoryOut(BaseModel):
    id: int
    worker_id: str
    fuero: str
    version: int
    range_start: int
    range_end: int
    year: int
    last_processed_number: int | None = None
    documents_processed: int = 0
    documents_found: int = 0
    enabled: bool = False
    completion_email_sent: bool = False
    completed_at: str | None = None


class ScrapingConfigOut(BaseModel):
    id: int
    worker_id: str
    fuero: str
    year: int
    range_start: int
    range_end: int
    number: int
    enabled: bool
    is_temporary: bool
    progress: int
    progress_status: str = 'not_started'
    completed: bool
    documents_processed: int = 0
    documents_found: int = 0
    total_found: int = 0
    total_not_found: int = 0
    total_errors: int = 0
    last_check: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    range_history: list[RangeHistoryOut] | None = None


class BulkDeleteFailure(BaseModel):
    worker_id: str
    error_code: str
    message: str


class BulkDeleteOut(BaseModel):
    deleted: int = 0
    errors: int = 0
    failed: list[BulkDeleteFailure] = Field(default_factory=list)
