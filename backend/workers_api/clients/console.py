"""
Typed client for the workers control REST surface, as used by the operator console.

The HTTP transport is injected: production code passes an httpx.Client bound
to the API base URL, tests pass FastAPI's TestClient.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from workers_api.clients.session import AuthSessionManager
from workers_api.core.errors import AuthExpiredError, WorkersError, error_from_body
from workers_api.schemas.common import Pagination
from workers_api.schemas.credentials import CredentialOut, ResetSyncOut
from workers_api.schemas.eligibility import EligibilityStats
from workers_api.schemas.scraping import RangeHistoryOut, ScrapingConfigOut

logger = logging.getLogger(__name__)


def _clean(params: dict) -> dict:
    return {k: v for k, v in params.items() if v is not None}


class WorkersConsoleClient:
    def __init__(self, http: httpx.Client, session: AuthSessionManager | None = None, base_path: str = '/api') -> None:
        self.http = http
        self.base_path = base_path.rstrip('/')
        self.session = session or AuthSessionManager(self._refresh_tokens)

    @classmethod
    def connect(cls, base_url: str, timeout: float = 15.0) -> 'WorkersConsoleClient':
        return cls(httpx.Client(base_url=base_url, timeout=timeout))

    # auth

    def _refresh_tokens(self, refresh_token: str) -> tuple[str, str | None]:
        resp = self.http.post(f'{self.base_path}/auth/refresh', json={'refresh_token': refresh_token})
        if resp.status_code >= 400:
            raise error_from_body(resp.status_code, self._body(resp))
        data = resp.json()
        return data['access_token'], data.get('refresh_token')

    def login(self, username: str, password: str) -> dict:
        resp = self.http.post(f'{self.base_path}/auth/login', json={'username': username, 'password': password})
        if resp.status_code >= 400:
            raise error_from_body(resp.status_code, self._body(resp))
        data = resp.json()
        self.session.set_tokens(data['access_token'], data.get('refresh_token'))
        return data

    # transport

    @staticmethod
    def _body(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            return {'message': resp.text}

    def _request(self, method: str, path: str, *, json: Any = None, params: dict | None = None, retried: bool = False) -> Any:
        token = self.session.acquire_token()
        headers = {'Authorization': f'Bearer {token}'} if token else {}
        resp = self.http.request(method, f'{self.base_path}{path}', json=json, params=params, headers=headers)
        if resp.status_code == 401:
            replay = lambda: self._request(method, path, json=json, params=params)  # noqa: E731
            if retried:
                self.session.enqueue(replay)
                raise AuthExpiredError('Sesion rechazada tras renovar el token', self._body(resp))
            try:
                self.session.refresh(token)
            except AuthExpiredError:
                self.session.enqueue(replay)
                raise
            return self._request(method, path, json=json, params=params, retried=True)
        if resp.status_code >= 400:
            raise error_from_body(resp.status_code, self._body(resp))
        return resp.json()

    def _data(self, method: str, path: str, **kwargs) -> Any:
        return self._request(method, path, **kwargs).get('data')

    def _page(self, path: str, params: dict, model) -> tuple[list, Pagination]:
        body = self._request('GET', path, params=_clean(params))
        items = [model.model_validate(item) for item in body.get('data') or []]
        return items, Pagination.model_validate(body.get('pagination') or {})

    # scraping ranges

    def create_range(self, fuero: str, year: int, range_start: int, range_end: int, number: int | None = None, *, is_temporary: bool = False) -> ScrapingConfigOut:
        payload = _clean({
            'fuero': fuero,
            'year': year,
            'range_start': range_start,
            'range_end': range_end,
            'number': number,
            'is_temporary': is_temporary,
        })
        return ScrapingConfigOut.model_validate(self._data('POST', '/configuracion-scraping/', json=payload))

    def list_ranges(self, *, fuero=None, year=None, enabled=None, progreso=None, sort_by=None, sort_order='desc', page=1, limit=20):
        params = {
            'fuero': fuero, 'year': year, 'enabled': enabled, 'progreso': progreso,
            'sortBy': sort_by, 'sortOrder': sort_order, 'page': page, 'limit': limit,
        }
        return self._page('/configuracion-scraping/', params, ScrapingConfigOut)

    def get_range(self, worker_id: str) -> ScrapingConfigOut:
        return ScrapingConfigOut.model_validate(self._data('GET', f'/configuracion-scraping/{worker_id}'))

    def update_range(self, worker_id: str, range_start: int, range_end: int, year: int) -> ScrapingConfigOut:
        payload = {'range_start': range_start, 'range_end': range_end, 'year': year}
        return ScrapingConfigOut.model_validate(self._data('PUT', f'/configuracion-scraping/{worker_id}/range', json=payload))

    def set_enabled(self, worker_id: str, enabled: bool) -> ScrapingConfigOut:
        return ScrapingConfigOut.model_validate(
            self._data('PATCH', f'/configuracion-scraping/{worker_id}/enabled', json={'enabled': enabled})
        )

    def list_history(self, *, fuero=None, year=None, worker_id=None, sort_by=None, sort_order='desc', page=1, limit=20):
        params = {
            'fuero': fuero, 'year': year, 'workerId': worker_id,
            'sortBy': sort_by, 'sortOrder': sort_order, 'page': page, 'limit': limit,
        }
        return self._page('/configuracion-scraping-history/', params, RangeHistoryOut)

    # temporary workers

    def list_temporary(self) -> list[ScrapingConfigOut]:
        return [ScrapingConfigOut.model_validate(item) for item in self._data('GET', '/configuracion-scraping/temporary') or []]

    def delete_worker(self, worker_id: str) -> None:
        self._request('DELETE', f'/configuracion-scraping/{worker_id}')

    def delete_many(self, worker_ids: list[str]) -> dict:
        """One DELETE per id, in order. Failures are counted, not raised."""
        deleted = 0
        failed: list[dict] = []
        for worker_id in worker_ids:
            try:
                self.delete_worker(worker_id)
                deleted += 1
            except WorkersError as exc:
                logger.warning('delete of %s failed: %s %s', worker_id, exc.error_code, exc.message)
                failed.append({'worker_id': worker_id, 'error_code': exc.error_code, 'message': exc.message})
        return {'deleted': deleted, 'errors': len(failed), 'failed': failed}

    # credentials

    def list_credentials(self, provider: str = 'pjn', *, sync_status=None, enabled=None, search=None, page=1, limit=20):
        params = {'syncStatus': sync_status, 'enabled': enabled, 'search': search, 'page': page, 'limit': limit}
        return self._page(f'/{provider}-credentials', params, CredentialOut)

    def credential_stats(self, provider: str = 'pjn') -> dict:
        return self._data('GET', f'/{provider}-credentials/stats')

    def get_credential(self, credential_id: int, provider: str = 'pjn') -> CredentialOut:
        return CredentialOut.model_validate(self._data('GET', f'/{provider}-credentials/{credential_id}'))

    def toggle_credential(self, credential_id: int, enabled: bool, provider: str = 'pjn') -> CredentialOut:
        return CredentialOut.model_validate(
            self._data('PATCH', f'/{provider}-credentials/{credential_id}/toggle', json={'enabled': enabled})
        )

    def reset_credential(self, credential_id: int, provider: str = 'pjn') -> CredentialOut:
        return CredentialOut.model_validate(self._data('POST', f'/{provider}-credentials/{credential_id}/reset'))

    def delete_credential(self, credential_id: int, provider: str = 'pjn') -> dict:
        return self._data('DELETE', f'/{provider}-credentials/{credential_id}')

    def reset_sync(self, credential_id: int, dry_run: bool = True) -> ResetSyncOut:
        return ResetSyncOut.model_validate(
            self._data('POST', f'/pjn-credentials/{credential_id}/reset-sync', json={'dryRun': dry_run})
        )

    def portal_status(self) -> dict:
        return self._data('GET', '/pjn-credentials/portal-status')

    def resolve_incident(self, incident_id: int) -> dict:
        return self._data('POST', f'/pjn-credentials/portal-incidents/{incident_id}/resolve')

    # causas

    def eligibility_stats(self, threshold_hours: float | None = None, fuero: str | None = None) -> EligibilityStats:
        params = _clean({'thresholdHours': threshold_hours, 'fuero': fuero})
        data = self._data('GET', '/causas/stats/eligibility', params=params)
        return EligibilityStats.model_validate(data)
