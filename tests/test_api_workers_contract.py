import os
import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

os.environ.setdefault('DATABASE_URL', 'sqlite:///./data/test_workers_api.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test_secret_key')
os.environ.setdefault('JWT_REFRESH_SECRET_KEY', 'test_refresh_secret')

from workers_api.core.rate_limit import rate_limiter  # noqa: E402
from workers_api.db.base import Base  # noqa: E402
from workers_api.db.session import SessionLocal, engine  # noqa: E402
from workers_api.main import app  # noqa: E402
from workers_api.models.credentials import CausaRecord, CredentialCausaLink, CredentialSyncRun, Folder  # noqa: E402

TEST_ADMIN_USER = os.environ.get('TEST_ADMIN_USER', os.environ.get('DEMO_ADMIN_USER', 'admin'))
TEST_ADMIN_PASSWORD = os.environ.get('TEST_ADMIN_PASSWORD', os.environ.get('DEMO_ADMIN_PASSWORD', 'admin123'))
TEST_VIEWER_USER = os.environ.get('TEST_VIEWER_USER', os.environ.get('DEMO_VIEWER_USER', 'viewer'))
TEST_VIEWER_PASSWORD = os.environ.get('TEST_VIEWER_PASSWORD', os.environ.get('DEMO_VIEWER_PASSWORD', 'viewer123'))


def _reset_db():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()


class ApiContractBase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.client = TestClient(app)

    def setUp(self):
        _reset_db()
        rate_limiter.reset()
        self.headers = self._login(TEST_ADMIN_USER, TEST_ADMIN_PASSWORD)

    def _login(self, username, password):
        r = self.client.post('/api/auth/login', json={'username': username, 'password': password})
        self.assertEqual(r.status_code, 200)
        return {'Authorization': f'Bearer {r.json()["access_token"]}'}

    def _create(self, **overrides):
        payload = {'fuero': 'CIV', 'year': 2024, 'range_start': 1, 'range_end': 100}
        payload.update(overrides)
        r = self.client.post('/api/configuracion-scraping/', json=payload, headers=self.headers)
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()['data']


class ScrapingConfigApiTests(ApiContractBase):
    def test_health_is_public(self):
        r = self.client.get('/api/health')
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()['db_ok'])
        self.assertIn('x-trace-id', r.headers)

    def test_requests_without_token_get_error_envelope(self):
        r = self.client.get('/api/configuracion-scraping/')
        self.assertEqual(r.status_code, 401)
        body = r.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['error_code'], 'UNAUTHORIZED')
        self.assertIn('trace_id', body)

    def test_create_and_list_envelopes(self):
        created = self._create(fuero='com', number=10)
        self.assertEqual(created['fuero'], 'COM')
        self.assertEqual(created['number'], 10)
        self.assertEqual(created['progress'], 9)
        self.assertEqual(created['progress_status'], 'in_progress')
        self.assertFalse(created['completed'])
        self._create(fuero='CIV', year=2023)

        r = self.client.get('/api/configuracion-scraping/', params={'fuero': 'COM'}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['pagination']['total'], 1)
        self.assertEqual(body['data'][0]['worker_id'], created['worker_id'])

        r = self.client.get('/api/configuracion-scraping/', params={'progreso': 'in_progress'}, headers=self.headers)
        self.assertEqual([d['worker_id'] for d in r.json()['data']], [created['worker_id']])

    def test_invalid_range_is_rejected_with_validation_error(self):
        r = self.client.post(
            '/api/configuracion-scraping/',
            json={'fuero': 'CIV', 'year': 2024, 'range_start': 50, 'range_end': 50},
            headers=self.headers,
        )
        self.assertEqual(r.status_code, 400)
        body = r.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['error_code'], 'VALIDATION_ERROR')
        self.assertIn('range_end', body['details']['errors'])

        r = self.client.post('/api/configuracion-scraping/', json={'fuero': 'CIV'}, headers=self.headers)
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.json()['error_code'], 'INVALID_PAYLOAD')

    def test_range_lifecycle(self):
        worker_id = self._create(range_start=1, range_end=100)['worker_id']
        base = f'/api/configuracion-scraping/{worker_id}'

        r = self.client.put(f'{base}/range', json={'range_start': 100, 'range_end': 200, 'year': 2024}, headers=self.headers)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()['error_code'], 'RANGE_NOT_COMPLETED')

        self.assertEqual(self.client.patch(f'{base}/enabled', json={'enabled': True}, headers=self.headers).status_code, 200)
        r = self.client.post(f'{base}/cursor', json={'number': 60, 'found': 3}, headers=self.headers)
        self.assertEqual(r.json()['data']['progress'], 60)
        r = self.client.post(f'{base}/cursor', json={'number': 40}, headers=self.headers)
        self.assertEqual(r.status_code, 400)
        r = self.client.post(f'{base}/cursor', json={'number': 100, 'found': 2}, headers=self.headers)
        self.assertTrue(r.json()['data']['completed'])
        self.assertFalse(r.json()['data']['enabled'])
        self.assertEqual(r.json()['data']['progress_status'], 'completed')

        r = self.client.patch(f'{base}/enabled', json={'enabled': True}, headers=self.headers)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()['error_code'], 'PRECONDITION_FAILED')

        r = self.client.put(f'{base}/range', json={'range_start': 1, 'range_end': 100, 'year': 2024}, headers=self.headers)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()['error_code'], 'NO_CHANGES')

        r = self.client.put(f'{base}/range', json={'range_start': 100, 'range_end': 250, 'year': 2025}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        data = r.json()['data']
        self.assertEqual((data['range_start'], data['range_end'], data['year'], data['number']), (100, 250, 2025, 100))
        self.assertFalse(data['enabled'])
        self.assertEqual(data['progress'], 0)
        self.assertEqual(data['progress_status'], 'not_started')
        self.assertEqual(len(data['range_history']), 1)
        self.assertEqual(data['range_history'][0]['documents_found'], 5)

        r = self.client.get('/api/configuracion-scraping-history/', params={'workerId': worker_id}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        history = r.json()
        self.assertEqual(history['pagination']['total'], 1)
        self.assertEqual(history['data'][0]['version'], 1)
        self.assertEqual(history['data'][0]['year'], 2024)

    def test_bulk_delete_of_temporary_workers(self):
        temp = self._create(is_temporary=True)['worker_id']
        fixed = self._create(range_start=101, range_end=200)['worker_id']
        r = self.client.get('/api/configuracion-scraping/temporary', headers=self.headers)
        self.assertEqual([d['worker_id'] for d in r.json()['data']], [temp])

        r = self.client.post('/api/configuracion-scraping/temporary/delete', json={'worker_ids': [temp, fixed, 'missing']}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        data = r.json()['data']
        self.assertEqual(data['deleted'], 1)
        self.assertEqual(data['errors'], 2)

        r = self.client.delete(f'/api/configuracion-scraping/{fixed}', headers=self.headers)
        self.assertEqual(r.status_code, 409)

    def test_viewer_cannot_write(self):
        viewer = self._login(TEST_VIEWER_USER, TEST_VIEWER_PASSWORD)
        r = self.client.post(
            '/api/configuracion-scraping/',
            json={'fuero': 'CIV', 'year': 2024, 'range_start': 1, 'range_end': 10},
            headers=viewer,
        )
        self.assertEqual(r.status_code, 403)
        self.assertEqual(self.client.get('/api/configuracion-scraping/', headers=viewer).status_code, 200)
        self.assertEqual(self.client.get('/api/health/perf', headers=viewer).status_code, 403)

    def test_health_perf_for_admin(self):
        self._create()
        r = self.client.get('/api/health/perf', headers=self.headers)
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body['workers'], {'enabled': 0, 'disabled': 1})
        self.assertIn('p95_ms', body['request_latency']['POST /api/configuracion-scraping/'])


class CredentialApiTests(ApiContractBase):
    def _register(self, user_id='user-1', provider='pjn'):
        r = self.client.post(
            f'/api/{provider}-credentials',
            json={'user_id': user_id, 'cuil': '20-11111111-2', 'user_name': 'Ana', 'verified': True, 'is_valid': True},
            headers=self.headers,
        )
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()['data']

    def test_sync_lifecycle_through_endpoints(self):
        cred = self._register()
        self.assertEqual(cred['syncStatus'], 'never_synced')
        self.assertIsNone(cred['currentSyncProgress'])
        base = f'/api/pjn-credentials/{cred["id"]}'

        r = self.client.post(f'{base}/sync/start', json={'worker_name': 'sync-1'}, headers=self.headers)
        self.assertEqual(r.status_code, 409)

        self.client.post(f'{base}/sync/schedule', headers=self.headers)
        r = self.client.post(f'{base}/sync/start', json={'worker_name': 'sync-1', 'total_expected': 200}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['data']['run']['startPage'], 1)
        r = self.client.post(f'{base}/sync/start', json={'worker_name': 'sync-2'}, headers=self.headers)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()['error_code'], 'CONFLICT')

        r = self.client.post(
            f'{base}/sync/progress',
            json={'worker_name': 'sync-1', 'current_page': 2, 'causas_processed': 50},
            headers=self.headers,
        )
        self.assertEqual(r.json()['data']['currentSyncProgress']['progress'], 25)

        r = self.client.post(f'{base}/sync/fail', json={'worker_name': 'sync-1', 'message': 'Login rechazado', 'code': 'LOGIN_FAILED'}, headers=self.headers)
        data = r.json()['data']
        self.assertEqual(data['syncStatus'], 'error')
        self.assertEqual(data['consecutiveErrors'], 1)
        self.assertEqual(data['lastError']['code'], 'LOGIN_FAILED')
        self.assertEqual(data['resumePage'], 2)

        self.client.post(f'{base}/sync/schedule', headers=self.headers)
        r = self.client.post(f'{base}/sync/start', json={'worker_name': 'sync-1'}, headers=self.headers)
        self.assertEqual(r.json()['data']['run']['triggeredBy'], 'resume')
        r = self.client.post(
            f'{base}/sync/complete',
            json={
                'worker_name': 'sync-1',
                'causas_found': 200,
                'causas_created': 4,
                'causas_detail': [{'fuero': 'CIV', 'number': 10, 'year': 2024, 'action': 'created'}],
            },
            headers=self.headers,
        )
        data = r.json()['data']
        self.assertEqual(data['syncStatus'], 'completed')
        self.assertEqual(data['consecutiveErrors'], 0)
        self.assertEqual(data['stats']['totalCausasFound'], 200)

        r = self.client.get('/api/pjn-credentials/stats', headers=self.headers)
        self.assertEqual(r.json()['data']['syncStatus']['completed'], 1)

        r = self.client.get('/api/pjn-credentials', params={'syncStatus': 'completed'}, headers=self.headers)
        self.assertEqual(r.json()['pagination']['total'], 1)

    def test_portal_failure_and_incident_resolution(self):
        cred = self._register()
        base = f'/api/pjn-credentials/{cred["id"]}'
        self.client.post(f'{base}/sync/schedule', headers=self.headers)
        self.client.post(f'{base}/sync/start', json={'worker_name': 'sync-1'}, headers=self.headers)
        r = self.client.post(
            f'{base}/sync/fail',
            json={'worker_name': 'sync-1', 'message': 'HTTP 503', 'code': 'HTTP_503', 'portal_incident_type': 'portal_down'},
            headers=self.headers,
        )
        data = r.json()['data']
        self.assertEqual(data['syncStatus'], 'pending')
        self.assertEqual(data['consecutiveErrors'], 0)

        status = self.client.get('/api/pjn-credentials/portal-status', headers=self.headers).json()['data']
        self.assertFalse(status['portalAvailable'])
        incident_id = status['activeIncident']['id']

        r = self.client.post(f'/api/pjn-credentials/portal-incidents/{incident_id}/resolve', headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['data']['status'], 'resolved')
        status = self.client.get('/api/pjn-credentials/portal-status', headers=self.headers).json()['data']
        self.assertTrue(status['portalAvailable'])
        self.assertIsNone(status['activeIncident'])

    def test_reset_sync_dry_run_then_apply(self):
        cred = self._register()
        db = SessionLocal()
        try:
            causa = CausaRecord(fuero='CIV', number=5, year=2024, created_by_credential_id=cred['id'])
            db.add(causa)
            db.flush()
            db.add_all([
                CredentialCausaLink(credential_id=cred['id'], causa_id=causa.id),
                Folder(user_id='user-1', name='5/2024', causa_id=causa.id, credential_id=cred['id']),
                CredentialSyncRun(credential_id=cred['id'], status='completed'),
            ])
            db.commit()
        finally:
            db.close()

        url = f'/api/pjn-credentials/{cred["id"]}/reset-sync'
        preview = self.client.post(url, json={}, headers=self.headers).json()['data']
        self.assertTrue(preview['dryRun'])
        self.assertEqual(preview['causas'], {'toDelete': 1, 'toUnlink': 0})
        self.assertEqual(preview['folders']['total'], 1)
        self.assertEqual(preview['syncsToDelete'], 1)

        applied = self.client.post(url, json={'dryRun': False}, headers=self.headers).json()['data']
        self.assertFalse(applied['dryRun'])
        self.assertEqual(applied['effects'], preview['effects'])

        again = self.client.post(url, json={}, headers=self.headers).json()['data']
        self.assertEqual(again['effects'], [])

    def test_unknown_provider_and_missing_credential(self):
        r = self.client.get('/api/foo-credentials', headers=self.headers)
        self.assertEqual(r.status_code, 404)
        r = self.client.get('/api/pjn-credentials/999', headers=self.headers)
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()['error_code'], 'NOT_FOUND')

    def test_duplicate_registration_conflicts(self):
        self._register()
        r = self.client.post('/api/pjn-credentials', json={'user_id': 'user-1'}, headers=self.headers)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(self._register(provider='scba')['provider'], 'scba')

    def test_delete_credential(self):
        cred = self._register()
        viewer = self._login(TEST_VIEWER_USER, TEST_VIEWER_PASSWORD)
        self.assertEqual(self.client.delete(f'/api/pjn-credentials/{cred["id"]}', headers=viewer).status_code, 403)
        self.assertEqual(self.client.delete(f'/api/scba-credentials/{cred["id"]}', headers=self.headers).status_code, 404)

        r = self.client.delete(f'/api/pjn-credentials/{cred["id"]}', headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['data']['id'], cred['id'])
        self.assertEqual(self.client.get(f'/api/pjn-credentials/{cred["id"]}', headers=self.headers).status_code, 404)
        self.assertEqual(self.client.delete(f'/api/pjn-credentials/{cred["id"]}', headers=self.headers).status_code, 404)
        # the user can register again once the old credential is gone
        self.assertEqual(self._register()['userId'], 'user-1')


class EligibilityApiTests(ApiContractBase):
    def test_eligibility_stats(self):
        now = datetime.utcnow()
        db = SessionLocal()
        try:
            db.add_all([
                CausaRecord(fuero='CIV', number=1, year=2024, verified=True, is_valid=True),
                CausaRecord(fuero='CIV', number=2, year=2024, verified=True, is_valid=True, last_update=now - timedelta(hours=48)),
                CausaRecord(fuero='CIV', number=3, year=2024, verified=True, is_valid=True, last_update=now - timedelta(minutes=5)),
                CausaRecord(fuero='CIV', number=4, year=2024, verified=False, is_valid=True),
            ])
            db.commit()
        finally:
            db.close()

        r = self.client.get('/api/causas/stats/eligibility', params={'thresholdHours': 24, 'includeQueue': True}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        data = r.json()['data']
        self.assertEqual(data['total'], 4)
        self.assertEqual(data['eligible'], 2)
        self.assertEqual(data['notEligible'], 2)
        self.assertEqual(data['thresholdHours'], 24)
        self.assertEqual(len(data['queue']), 2)

        r = self.client.get('/api/causas/stats/eligibility', params={'thresholdHours': -1}, headers=self.headers)
        self.assertEqual(r.status_code, 422)

    def test_eligibility_stats_by_fuero(self):
        db = SessionLocal()
        try:
            db.add_all([
                CausaRecord(fuero='CIV', number=1, year=2024, verified=True, is_valid=True),
                CausaRecord(fuero='COM', number=2, year=2024, verified=True, is_valid=True),
                CausaRecord(fuero='COM', number=3, year=2024, verified=False, is_valid=True),
                CausaRecord(fuero='CSS', number=4, year=2024, verified=True, is_valid=True),
            ])
            db.commit()
        finally:
            db.close()

        r = self.client.get('/api/causas/stats/eligibility', params={'fuero': 'com'}, headers=self.headers)
        self.assertEqual(r.status_code, 200)
        data = r.json()['data']
        self.assertEqual(data['fuero'], 'COM')
        self.assertEqual(data['total'], 2)
        self.assertEqual(data['eligible'], 1)

        r = self.client.get('/api/causas/stats/eligibility', headers=self.headers)
        self.assertEqual(r.json()['data']['total'], 4)
        self.assertIsNone(r.json()['data']['fuero'])

        r = self.client.get('/api/causas/stats/eligibility', params={'fuero': 'XYZ'}, headers=self.headers)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()['error_code'], 'VALIDATION_ERROR')


if __name__ == '__main__':
    unittest.main()
