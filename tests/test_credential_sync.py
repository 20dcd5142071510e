import os
import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

os.environ.setdefault('DATABASE_URL', 'sqlite:///./data/test_workers_api.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test_secret_key')
os.environ.setdefault('JWT_REFRESH_SECRET_KEY', 'test_refresh_secret')

import workers_api.models  # noqa: E402,F401
from workers_api.core.errors import ConflictError, NotFoundError, PreconditionError, ValidationError  # noqa: E402
from workers_api.db.base import Base  # noqa: E402
from workers_api.db.bootstrap import bootstrap_database  # noqa: E402
from workers_api.db.session import SessionLocal, engine  # noqa: E402
from workers_api.models.auth import AuditLog  # noqa: E402
from workers_api.models.credentials import (  # noqa: E402
    CausaRecord,
    CredentialCausaLink,
    CredentialSyncRun,
    Folder,
    SyncCredential,
)
from workers_api.services.credential_sync import (  # noqa: E402
    CredentialSyncController,
    current_sync_progress,
    mask_cuil,
    sync_progress_percent,
)
from workers_api.services.portal_incidents import PortalIncidentTracker  # noqa: E402
from workers_api.worker import reclaim_once  # noqa: E402


def _reset_db():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()


class CredentialSyncTests(unittest.TestCase):
    def setUp(self):
        _reset_db()
        self.db = SessionLocal()
        self.cred = CredentialSyncController.register(
            self.db, 'pjn', 'user-1', cuil='20-12345678-9', user_name='Ana', verified=True, is_valid=True,
        )
        self.cid = self.cred.id

    def tearDown(self):
        self.db.close()

    def _start(self, worker='sync-1', **kwargs):
        CredentialSyncController.schedule(self.db, self.cid)
        return CredentialSyncController.begin_run(self.db, self.cid, worker, **kwargs)

    def test_register_starts_never_synced(self):
        self.assertEqual(self.cred.sync_status, 'never_synced')
        self.assertEqual(self.cred.cuil_masked, '*******6789')
        self.assertIsNone(current_sync_progress(self.cred))
        with self.assertRaises(ConflictError):
            CredentialSyncController.register(self.db, 'pjn', 'user-1')
        other = CredentialSyncController.register(self.db, 'scba', 'user-1')
        self.assertEqual(other.provider, 'scba')

    def test_begin_requires_schedule(self):
        with self.assertRaises(PreconditionError):
            CredentialSyncController.begin_run(self.db, self.cid, 'sync-1')

    def test_second_concurrent_start_conflicts(self):
        row, run = self._start()
        self.assertEqual(row.sync_status, 'in_progress')
        self.assertEqual(run.start_page, 1)
        with self.assertRaises(ConflictError):
            CredentialSyncController.begin_run(self.db, self.cid, 'sync-2')
        with self.assertRaises(ConflictError):
            CredentialSyncController.schedule(self.db, self.cid)
        self.db.expire_all()
        self.assertEqual(CredentialSyncController.get(self.db, self.cid).locked_by, 'sync-1')

    def test_progress_is_derived_and_only_present_in_progress(self):
        self._start(total_expected=120)
        row = CredentialSyncController.record_progress(self.db, self.cid, 3, 30, total_pages=12)
        progress = current_sync_progress(row)
        self.assertEqual(progress['currentPage'], 3)
        self.assertEqual(progress['totalPages'], 12)
        self.assertEqual(progress['progress'], 25)
        with self.assertRaises(ValidationError):
            CredentialSyncController.record_progress(self.db, self.cid, 2, 40)
        with self.assertRaises(ConflictError):
            CredentialSyncController.record_progress(self.db, self.cid, 4, 40, worker_name='intruder')
        done = CredentialSyncController.complete_run(self.db, self.cid, causas_found=120)
        self.assertIsNone(current_sync_progress(done))

    def test_sync_progress_percent(self):
        self.assertEqual(sync_progress_percent(10, 0), 0)
        self.assertEqual(sync_progress_percent(10, None), 0)
        self.assertEqual(sync_progress_percent(1, 3), 33)
        self.assertEqual(sync_progress_percent(500, 100), 100)

    def test_error_increments_and_completion_resets_counter(self):
        self._start()
        CredentialSyncController.record_progress(self.db, self.cid, 4, 40)
        row = CredentialSyncController.fail_run(self.db, self.cid, 'Credenciales rechazadas', 'LOGIN_FAILED')
        self.assertEqual(row.sync_status, 'error')
        self.assertEqual(row.consecutive_errors, 1)
        self.assertEqual(row.last_error_code, 'LOGIN_FAILED')
        self.assertEqual(row.resume_page, 4)
        self.assertIsNone(current_sync_progress(row))

        row, run = self._start('sync-2')
        self.assertEqual(run.start_page, 4)
        self.assertEqual(run.triggered_by, 'resume')
        self.assertEqual(row.progress_causas_processed, 40)
        row = CredentialSyncController.fail_run(self.db, self.cid, 'Timeout', 'TIMEOUT')
        self.assertEqual(row.consecutive_errors, 2)
        self.assertEqual(row.last_error_message, 'Timeout')

        self._start('sync-3')
        row = CredentialSyncController.complete_run(
            self.db, self.cid, causas_found=50, causas_created=5, causas_linked=45, folders_created=5,
        )
        self.assertEqual(row.sync_status, 'completed')
        self.assertEqual(row.consecutive_errors, 0)
        self.assertIsNone(row.resume_page)
        self.assertIsNotNone(row.last_sync)
        self.assertEqual(row.stats_new_causas_created, 5)
        statuses = [r.status for r in self.db.query(CredentialSyncRun).order_by(CredentialSyncRun.id).all()]
        self.assertEqual(statuses, ['error', 'error', 'completed'])

    def test_found_counter_accumulates_across_runs(self):
        for worker in ('sync-1', 'sync-2'):
            self._start(worker)
            row = CredentialSyncController.complete_run(self.db, self.cid, causas_found=5, causas_linked=2)
        self.assertEqual(row.stats_total_causas_found, 10)
        self.assertEqual(row.stats_last_causas_count, 5)
        self.assertEqual(row.stats_causas_linked, 4)
        self.assertEqual(CredentialSyncController.stats(self.db, 'pjn')['totals']['causas'], 5)

    def test_complete_requires_running(self):
        with self.assertRaises(PreconditionError):
            CredentialSyncController.complete_run(self.db, self.cid)

    def test_portal_incident_does_not_count_against_account(self):
        self._start()
        row = CredentialSyncController.fail_run(
            self.db, self.cid, 'Portal caido', 'HTTP_503', portal_incident_type='portal_down', worker_name='sync-1',
        )
        self.assertEqual(row.sync_status, 'pending')
        self.assertEqual(row.consecutive_errors, 0)
        self.assertEqual(row.last_error_code, 'HTTP_503')

        incident = PortalIncidentTracker.active(self.db, 'pjn')
        self.assertEqual(incident.type, 'portal_down')
        self.assertEqual(incident.total_errors, 1)

        # while the incident stays active, plain failures are attributed to the portal too
        CredentialSyncController.begin_run(self.db, self.cid, 'sync-1')
        row = CredentialSyncController.fail_run(self.db, self.cid, 'Timeout', 'TIMEOUT')
        self.assertEqual(row.sync_status, 'pending')
        self.assertEqual(row.consecutive_errors, 0)
        self.db.refresh(incident)
        self.assertEqual(incident.total_errors, 2)

        status = PortalIncidentTracker.status(self.db, 'pjn')
        self.assertFalse(status['portalAvailable'])
        self.assertEqual(status['activeIncident']['affectedCredentialsCount'], 1)

        PortalIncidentTracker.resolve(self.db, incident.id)
        CredentialSyncController.begin_run(self.db, self.cid, 'sync-1')
        row = CredentialSyncController.fail_run(self.db, self.cid, 'Timeout', 'TIMEOUT')
        self.assertEqual(row.sync_status, 'error')
        self.assertEqual(row.consecutive_errors, 1)

    def test_stale_lock_can_be_reclaimed(self):
        self._start('sync-1')
        row = CredentialSyncController.get(self.db, self.cid)
        row.locked_at = datetime.utcnow() - timedelta(minutes=90)
        self.db.commit()
        row, run = CredentialSyncController.begin_run(self.db, self.cid, 'sync-2')
        self.assertEqual(row.locked_by, 'sync-2')
        statuses = [r.status for r in self.db.query(CredentialSyncRun).order_by(CredentialSyncRun.id).all()]
        self.assertEqual(statuses, ['interrupted', 'in_progress'])

        row.locked_at = datetime.utcnow() - timedelta(minutes=90)
        self.db.commit()
        self.assertEqual(reclaim_once(), [self.cid])
        self.db.expire_all()
        self.assertEqual(CredentialSyncController.get(self.db, self.cid).sync_status, 'pending')
        self.assertEqual(reclaim_once(), [])

    def test_bootstrap_releases_abandoned_locks(self):
        self._start('sync-1')
        row = CredentialSyncController.get(self.db, self.cid)
        row.locked_at = datetime.utcnow() - timedelta(hours=3)
        self.db.commit()
        bootstrap_database()
        self.db.expire_all()
        row = CredentialSyncController.get(self.db, self.cid)
        self.assertEqual(row.sync_status, 'pending')
        self.assertIsNone(row.locked_by)

    def test_reset_clears_progress_and_errors(self):
        self._start()
        CredentialSyncController.record_progress(self.db, self.cid, 5, 50)
        CredentialSyncController.fail_run(self.db, self.cid, 'x', 'X')
        row = CredentialSyncController.reset(self.db, self.cid)
        self.assertEqual(row.sync_status, 'pending')
        self.assertEqual(row.consecutive_errors, 0)
        self.assertIsNone(row.last_error_message)
        self.assertIsNone(row.resume_page)
        self.assertIsNone(current_sync_progress(row))

    def test_toggle_only_touches_enabled(self):
        self._start()
        row = CredentialSyncController.toggle_enabled(self.db, self.cid, False)
        self.assertFalse(row.enabled)
        self.assertEqual(row.sync_status, 'in_progress')
        with self.assertRaises(PreconditionError):
            CredentialSyncController.schedule(self.db, self.cid)

    def test_provider_scoping(self):
        with self.assertRaises(NotFoundError):
            CredentialSyncController.get(self.db, self.cid, 'scba')

    def test_delete_keeps_causas_and_drops_runs(self):
        self._start()
        with self.assertRaises(ConflictError):
            CredentialSyncController.delete(self.db, self.cid)
        CredentialSyncController.complete_run(self.db, self.cid, causas_found=1)

        causa = CausaRecord(fuero='CIV', number=7, year=2024, created_by_credential_id=self.cid)
        self.db.add(causa)
        self.db.flush()
        self.db.add(CredentialCausaLink(credential_id=self.cid, causa_id=causa.id))
        self.db.add(Folder(user_id='user-1', causa_id=causa.id, credential_id=self.cid))
        self.db.commit()
        causa_id = causa.id

        with self.assertRaises(NotFoundError):
            CredentialSyncController.delete(self.db, self.cid, provider='scba')

        summary = CredentialSyncController.delete(self.db, self.cid, provider='pjn', actor='operator')
        self.assertEqual(summary, {'id': self.cid, 'provider': 'pjn', 'userId': 'user-1'})
        self.assertIsNone(self.db.query(SyncCredential).filter(SyncCredential.id == self.cid).first())
        self.assertEqual(self.db.query(CredentialSyncRun).count(), 0)
        self.assertEqual(self.db.query(CredentialCausaLink).count(), 0)
        kept = self.db.query(CausaRecord).filter(CausaRecord.id == causa_id).one()
        self.assertIsNone(kept.created_by_credential_id)
        self.assertIsNone(self.db.query(Folder).one().credential_id)
        audit = self.db.query(AuditLog).filter(AuditLog.action == 'delete').one()
        self.assertEqual((audit.entity, audit.entity_id, audit.actor), ('pjn_credentials', str(self.cid), 'operator'))


class ResetAndCleanTests(unittest.TestCase):
    def setUp(self):
        _reset_db()
        self.db = SessionLocal()
        a = CredentialSyncController.register(self.db, 'pjn', 'user-a')
        b = CredentialSyncController.register(self.db, 'pjn', 'user-b')
        self.a, self.b = a.id, b.id
        own = CausaRecord(fuero='CIV', number=1, year=2024, user_id='user-a', created_by_credential_id=self.a)
        shared = CausaRecord(fuero='CIV', number=2, year=2024, user_id='user-a', created_by_credential_id=self.a)
        foreign = CausaRecord(fuero='COM', number=3, year=2024, user_id='user-b', created_by_credential_id=self.b)
        self.db.add_all([own, shared, foreign])
        self.db.flush()
        self.own, self.shared, self.foreign = own.id, shared.id, foreign.id
        self.db.add_all([
            CredentialCausaLink(credential_id=self.a, causa_id=self.own),
            CredentialCausaLink(credential_id=self.a, causa_id=self.shared),
            CredentialCausaLink(credential_id=self.a, causa_id=self.foreign),
            CredentialCausaLink(credential_id=self.b, causa_id=self.shared),
            CredentialCausaLink(credential_id=self.b, causa_id=self.foreign),
            Folder(user_id='user-a', name='A1', causa_id=self.own, credential_id=self.a),
            Folder(user_id='user-a', name='A2', causa_id=self.shared, credential_id=self.a, archived=True),
            Folder(user_id='user-b', name='B1', causa_id=self.own, credential_id=self.b),
            CredentialSyncRun(credential_id=self.a, status='completed', triggered_by='manager'),
        ])
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def _counts(self):
        return (
            self.db.query(CausaRecord).count(),
            self.db.query(CredentialCausaLink).count(),
            self.db.query(Folder).count(),
            self.db.query(CredentialSyncRun).count(),
        )

    def test_dry_run_matches_real_run_and_mutates_nothing(self):
        before = self._counts()
        preview = CredentialSyncController.reset_and_clean_causas(self.db, self.a, True)
        self.assertEqual(self._counts(), before)
        self.assertEqual(preview['folders'], {'total': 2, 'active': 1, 'archived': 1})
        self.assertEqual(preview['causas'], {'toDelete': 1, 'toUnlink': 2})
        self.assertEqual(preview['syncsToDelete'], 1)
        kinds = sorted(e['kind'] for e in preview['effects'])
        self.assertEqual(kinds, ['causa', 'causa', 'causa', 'folder', 'folder', 'sync_run'])

        applied = CredentialSyncController.reset_and_clean_causas(self.db, self.a, False)
        self.assertFalse(applied.pop('dryRun'))
        self.assertTrue(preview.pop('dryRun'))
        self.assertEqual(applied, preview)

        self.db.expire_all()
        self.assertIsNone(self.db.get(CausaRecord, self.own))
        self.assertIsNotNone(self.db.get(CausaRecord, self.shared))
        self.assertIsNotNone(self.db.get(CausaRecord, self.foreign))
        self.assertEqual(self.db.query(CredentialCausaLink).filter(CredentialCausaLink.credential_id == self.a).count(), 0)
        self.assertEqual(self.db.query(CredentialCausaLink).filter(CredentialCausaLink.credential_id == self.b).count(), 2)
        self.assertEqual(self.db.query(Folder).filter(Folder.credential_id == self.a).count(), 0)
        b_folder = self.db.query(Folder).filter(Folder.credential_id == self.b).one()
        self.assertIsNone(b_folder.causa_id)
        self.assertEqual(self.db.query(CredentialSyncRun).count(), 0)
        self.assertEqual(self.db.get(SyncCredential, self.a).sync_status, 'pending')


if __name__ == '__main__':
    unittest.main()
