from __future__ import annotations

import logging

from sqlalchemy import inspect

import workers_api.models  # noqa: F401
from workers_api.core.config import settings
from workers_api.db.base import Base
from workers_api.db.session import SessionLocal, engine
from workers_api.services.credential_sync import CredentialSyncController

logger = logging.getLogger(__name__)


def bootstrap_database() -> None:
    """
    Ensure the schema exists and release sync locks abandoned by a previous run.
    """
    Base.metadata.create_all(bind=engine)
    tables = set(inspect(engine).get_table_names())
    missing = sorted(set(Base.metadata.tables) - tables)
    if missing:
        raise RuntimeError(f'DB bootstrap incompleto, faltan tablas: {missing}')

    db = SessionLocal()
    try:
        released = CredentialSyncController.reclaim_stale(db)
        logger.info(
            'DB bootstrap completed (schema ensured, %s stale sync locks released, lock timeout %s min)',
            len(released), settings.sync_lock_timeout_minutes,
        )
    except Exception:
        db.rollback()
        logger.exception('DB bootstrap failed')
        raise
    finally:
        db.close()
