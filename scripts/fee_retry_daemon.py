# scripts/fee_retry_daemon.py
from __future__ import annotations

import logging
import os
import signal
import threading

from app.workers.fee_retry_worker import FeeRetryWorker
from db import close_pool
from deps.services import get_cctp_orchestrator, get_fee_retry_queue
from services.observability import configure_logging


logger = logging.getLogger("chainpay.fee_retry_daemon")


def main() -> None:
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    stop = threading.Event()

    def _stop(signum, _frame) -> None:
        logger.info("received signal %s; shutting down", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    worker = FeeRetryWorker(
        get_fee_retry_queue(),
        extra_job=get_cctp_orchestrator().sweep_attestations,
    )
    try:
        worker.run(stop)
    finally:
        close_pool()


if __name__ == "__main__":
    main()
