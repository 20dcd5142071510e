import os
import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

os.environ.setdefault('DATABASE_URL', 'sqlite:///./data/test_workers_api.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test_secret_key')
os.environ.setdefault('JWT_REFRESH_SECRET_KEY', 'test_refresh_secret')

from workers_api.core.rate_limit import rate_limiter  # noqa: E402
from workers_api.core.security import hash_password  # noqa: E402
from workers_api.db.base import Base  # noqa: E402
from workers_api.db.session import SessionLocal, engine  # noqa: E402
from workers_api.main import app  # noqa: E402
from workers_api.models.auth import AuthSession, AuthUser, AuthUserState  # noqa: E402

TEST_ADMIN_USER = os.environ.get('TEST_ADMIN_USER', os.environ.get('DEMO_ADMIN_USER', 'admin'))
TEST_ADMIN_PASSWORD = os.environ.get('TEST_ADMIN_PASSWORD', os.environ.get('DEMO_ADMIN_PASSWORD', 'admin123'))


class ApiAuthRefreshTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        Base.metadata.create_all(bind=engine)
        cls.client = TestClient(app)

    def setUp(self):
        db = SessionLocal()
        try:
            db.query(AuthSession).delete()
            db.query(AuthUserState).delete()
            db.query(AuthUser).filter(AuthUser.username == 'db_operator').delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()
        rate_limiter.reset()

    def _login(self, username=TEST_ADMIN_USER, password=TEST_ADMIN_PASSWORD):
        return self.client.post('/api/auth/login', json={'username': username, 'password': password})

    def test_login_refresh_revoke_flow(self):
        login = self._login()
        self.assertEqual(login.status_code, 200)
        payload = login.json()
        self.assertEqual(payload['role'], 'admin')
        self.assertIn('system:read', payload['permissions'])

        refresh = self.client.post('/api/auth/refresh', json={'refresh_token': payload['refresh_token']})
        self.assertEqual(refresh.status_code, 200)
        refreshed = refresh.json()
        self.assertNotEqual(refreshed['refresh_token'], payload['refresh_token'])

        revoke = self.client.post('/api/auth/revoke', json={'refresh_token': refreshed['refresh_token']})
        self.assertEqual(revoke.status_code, 200)
        self.assertTrue(revoke.json()['ok'])

        again = self.client.post('/api/auth/refresh', json={'refresh_token': refreshed['refresh_token']})
        self.assertEqual(again.status_code, 401)

    def test_reused_refresh_token_revokes_every_session(self):
        first = self._login().json()['refresh_token']
        other = self._login().json()['refresh_token']
        rotated = self.client.post('/api/auth/refresh', json={'refresh_token': first})
        self.assertEqual(rotated.status_code, 200)

        reuse = self.client.post('/api/auth/refresh', json={'refresh_token': first})
        self.assertEqual(reuse.status_code, 401)
        self.assertEqual(reuse.json()['error_code'], 'UNAUTHORIZED')

        for token in (other, rotated.json()['refresh_token']):
            r = self.client.post('/api/auth/refresh', json={'refresh_token': token})
            self.assertEqual(r.status_code, 401)

    def test_access_token_is_not_accepted_as_refresh(self):
        access = self._login().json()['access_token']
        r = self.client.post('/api/auth/refresh', json={'refresh_token': access})
        self.assertEqual(r.status_code, 401)

    def test_refresh_token_is_not_accepted_as_bearer(self):
        refresh = self._login().json()['refresh_token']
        r = self.client.get('/api/configuracion-scraping/', headers={'Authorization': f'Bearer {refresh}'})
        self.assertEqual(r.status_code, 401)

    def test_login_with_db_user(self):
        db = SessionLocal()
        try:
            db.add(AuthUser(username='db_operator', password_hash=hash_password('db_operator_123'), role='operator', is_active=True))
            db.commit()
        finally:
            db.close()

        login = self._login('db_operator', 'db_operator_123')
        self.assertEqual(login.status_code, 200)
        self.assertIn('credentials:write', login.json()['permissions'])
        self.assertNotIn('system:read', login.json()['permissions'])

        bad = self._login('db_operator', 'wrong')
        self.assertEqual(bad.status_code, 401)
        self.assertFalse(bad.json()['success'])


if __name__ == '__main__':
    unittest.main()
