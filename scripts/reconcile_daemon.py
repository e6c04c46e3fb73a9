# scripts/reconcile_daemon.py
from __future__ import annotations

import logging
import signal

from app.purchases.factory import build_dispatcher, build_store
from app.workers.reconcile_worker import ReconcileWorker
from settings import settings, validate_env_settings


logger = logging.getLogger("reconcile_daemon")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    validate_env_settings()

    dispatcher = build_dispatcher()
    worker = ReconcileWorker(
        build_store(),
        dispatcher,
        interval_seconds=settings.RECONCILE_INTERVAL_SECONDS,
        batch_size=settings.RECONCILE_BATCH_SIZE,
    )

    def _shutdown(signum, frame):
        logger.info("Reconcile daemon received signal %s; finishing current sweep", signum)
        worker.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        worker.run_forever()
    finally:
        dispatcher.shutdown(wait=True)
        logger.info("Reconcile daemon exiting")


if __name__ == "__main__":
    main()
