from workers_api.models.auth import AuditLog, AuthSession, AuthUser, AuthUserState
from workers_api.models.credentials import (
    CausaRecord,
    CredentialCausaLink,
    CredentialSyncRun,
    Folder,
    PortalIncident,
    SyncCredential,
)
from workers_api.models.scraping import RangeHistoryEntry, ScrapingWorkerConfig

__all__ = [
    'AuditLog',
    'AuthSession',
    'AuthUser',
    'AuthUserState',
    'CausaRecord',
    'CredentialCausaLink',
    'CredentialSyncRun',
    'Folder',
    'PortalIncident',
    'RangeHistoryEntry',
    'ScrapingWorkerConfig',
    'SyncCredential',
]
