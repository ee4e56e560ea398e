# app/workers/fee_retry_worker.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from app.fees.retry_queue import FeeRetryQueue
from settings import settings


logger = logging.getLogger("chainpay.fee_retry")


class FeeRetryWorker:
    """
    Ticker around FeeRetryQueue.process_once.

    Each tick runs one queue pass and, when given, one extra periodic job
    (the attestation sweep). run() returns promptly once stop_event is set.
    """

    def __init__(
        self,
        queue: FeeRetryQueue,
        *,
        interval_s: Optional[float] = None,
        batch_size: Optional[int] = None,
        extra_job: Optional[Callable[[], object]] = None,
    ):
        self.queue = queue
        self.interval_s = float(interval_s if interval_s is not None else settings.FEE_RETRY_INTERVAL_S)
        self.batch_size = int(batch_size if batch_size is not None else settings.FEE_RETRY_BATCH_SIZE)
        self.extra_job = extra_job

    def tick(self) -> None:
        try:
            self.queue.process_once(self.batch_size)
        except Exception:
            logger.exception("fee retry pass failed")

        if self.extra_job is not None:
            try:
                self.extra_job()
            except Exception:
                logger.exception("periodic job failed")

    def run(self, stop_event: threading.Event) -> None:
        logger.info("fee retry worker started interval_s=%s batch_size=%s", self.interval_s, self.batch_size)
        while not stop_event.is_set():
            self.tick()
            stop_event.wait(self.interval_s)
        logger.info("fee retry worker stopped")
