from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class CredentialRegisterIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    cuil: str = Field(default='', max_length=32)
    user_name: str = Field(default='', max_length=128)
    user_email: str = Field(default='', max_length=255)
    verified: bool = False
    is_valid: bool = False


class ToggleIn(BaseModel):
    enabled: bool


class ResetSyncIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dry_run: bool = Field(default=True, alias='dryRun')


class SyncStartIn(BaseModel):
    worker_name: str = Field(min_length=1, max_length=128)
    total_pages: int | None = Field(default=None, ge=0)
    total_expected: int | None = Field(default=None, ge=0)


class SyncProgressIn(BaseModel):
    worker_name: str | None = Field(default=None, max_length=128)
    current_page: int = Field(ge=1)
    causas_processed: int = Field(ge=0)
    total_pages: int | None = Field(default=None, ge=0)
    total_expected: int | None = Field(default=None, ge=0)


class CausaDetail(BaseModel):
    """One causa touched by a run, as reported by the sync worker."""

    fuero: str = Field(min_length=2, max_length=8)
    number: int = Field(ge=1)
    year: int = Field(ge=1900, le=2100)
    action: Literal['created', 'linked', 'skipped', 'error']
    causa_id: int | None = None
    message: str | None = Field(default=None, max_length=500)


class SyncCompleteIn(BaseModel):
    worker_name: str | None = Field(default=None, max_length=128)
    causas_found: int = Field(default=0, ge=0)
    causas_created: int = Field(default=0, ge=0)
    causas_linked: int = Field(default=0, ge=0)
    folders_created: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    causas_detail: list[CausaDetail] = Field(default_factory=list, max_length=5000)


class SyncFailIn(BaseModel):
    worker_name: str | None = Field(default=None, max_length=128)
    message: str = Field(min_length=1, max_length=2000)
    code: str = Field(min_length=1, max_length=64)
    portal_incident_type: Literal['portal_down', 'portal_degraded', 'login_service_error'] | None = None


class LastErrorOut(BaseModel):
    message: str | None = None
    code: str | None = None
    timestamp: str | None = None


class SyncProgressOut(BaseModel):
    startedAt: str | None = None
    currentPage: int = 1
    totalPages: int = 0
    causasProcessed: int = 0
    totalExpected: int = 0
    progress: int = 0


class CredentialStatsOut(BaseModel):
    totalCausasFound: int = 0
    lastCausasCount: int = 0
    newCausasCreated: int = 0
    causasLinked: int = 0
    foldersCreated: int = 0
    errors: int = 0


class CredentialOut(BaseModel):
    id: int
    provider: str
    userId: str
    userName: str = ''
    userEmail: str = ''
    cuilMasked: str = ''
    enabled: bool
    verified: bool
    isValid: bool
    syncStatus: str
    lastSync: str | None = None
    lastSyncAttempt: str | None = None
    consecutiveErrors: int = 0
    lastError: LastErrorOut | None = None
    currentSyncProgress: SyncProgressOut | None = None
    resumePage: int | None = None
    stats: CredentialStatsOut = Field(default_factory=CredentialStatsOut)
    createdAt: str | None = None
    updatedAt: str | None = None


class SyncRunOut(BaseModel):
    id: int
    credentialId: int
    status: str
    triggeredBy: str
    workerName: str | None = None
    startPage: int = 1
    lastPage: int | None = None
    causasProcessed: int = 0
    startedAt: str | None = None


class FolderEffect(BaseModel):
    kind: Literal['folder'] = 'folder'
    id: int
    archived: bool


class CausaEffect(BaseModel):
    kind: Literal['causa'] = 'causa'
    id: int
    action: Literal['delete', 'unlink']


class SyncRunEffect(BaseModel):
    kind: Literal['sync_run'] = 'sync_run'
    id: int


ResetEffect = Annotated[Union[FolderEffect, CausaEffect, SyncRunEffect], Field(discriminator='kind')]


class FolderCounts(BaseModel):
    total: int = 0
    active: int = 0
    archived: int = 0


class CausaCounts(BaseModel):
    toDelete: int = 0
    toUnlink: int = 0


class ResetSyncOut(BaseModel):
    credentialId: int
    dryRun: bool
    folders: FolderCounts
    causas: CausaCounts
    syncsToDelete: int = 0
    effects: list[ResetEffect] = Field(default_factory=list)
