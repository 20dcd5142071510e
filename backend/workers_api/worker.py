import logging
import os
import signal
import time

from workers_api.db.session import SessionLocal
from workers_api.services.credential_sync import CredentialSyncController


logger = logging.getLogger(__name__)


def reclaim_once() -> list[int]:
    db = SessionLocal()
    try:
        return CredentialSyncController.reclaim_stale(db)
    finally:
        db.close()


def main() -> None:
    """Scheduler loop returning abandoned in_progress credentials to pending."""
    interval = float(os.getenv("SYNC_RECLAIM_INTERVAL_SECONDS", "60"))
    stop = {"flag": False}

    def _shutdown_handler(signum, _frame):  # type: ignore[no-untyped-def]
        logger.info("sync reclaimer received signal %s, stopping...", signum)
        stop["flag"] = True

    signal.signal(signal.SIGTERM, _shutdown_handler)
    signal.signal(signal.SIGINT, _shutdown_handler)

    logger.info("sync reclaimer started, interval %ss", interval)
    while not stop["flag"]:
        try:
            released = reclaim_once()
            if released:
                logger.info("sync reclaimer released credentials %s", released)
        except Exception:
            logger.exception("sync reclaimer loop error")
        time.sleep(max(1.0, interval))

    logger.info("sync reclaimer stopped")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
