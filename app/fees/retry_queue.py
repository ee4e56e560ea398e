# app/fees/retry_queue.py
from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

from app.errors import NotFound
from app.fees import retry_repository as retry_repo
from app.legs import repository as legs_repo
from app.providers.circle.client import CircleClient
from app.providers.circle.sealer import EntitySecretSealer, new_idempotency_key
from app.transfers import repository as transfer_repo
from db import get_conn
from services import alerts
from services.metrics import increment_fee_retry
from services.redaction import redact_text
from settings import settings


logger = logging.getLogger("chainpay.fee_retry")

ESCALATION_KIND = "FEE_RETRY_EXHAUSTED"


class FeeRetryQueue:
    """
    Repairs fee legs that failed at request time.

    Every attempt is a new provider call with its own idempotency key and
    sealed credential. The primary transfer is never touched.
    """

    def __init__(
        self,
        client: CircleClient,
        sealer: EntitySecretSealer,
        *,
        connect: Callable = get_conn,
        max_retries: Optional[int] = None,
        batch_size: Optional[int] = None,
        escalate: Callable[..., None] = alerts.escalate,
    ):
        self._client = client
        self._sealer = sealer
        self._connect = connect
        self.max_retries = int(max_retries if max_retries is not None else settings.FEE_RETRY_MAX_RETRIES)
        self.batch_size = int(batch_size if batch_size is not None else settings.FEE_RETRY_BATCH_SIZE)
        self._escalate = escalate
        # in-process single flight; the SKIP LOCKED claim covers other instances
        self._running = threading.Lock()

    def enqueue(
        self,
        conn,
        *,
        transfer_id: UUID,
        reference: str,
        amount: Decimal,
        destination_address: str,
        wallet_id: str,
        blockchain: str,
        token_address: Optional[str],
        error: Optional[str],
    ) -> dict[str, Any]:
        item = retry_repo.insert_item(
            conn,
            transfer_id=transfer_id,
            reference=reference,
            amount=amount,
            destination_address=destination_address,
            wallet_id=wallet_id,
            blockchain=blockchain,
            token_address=token_address,
            last_error=error,
        )
        increment_fee_retry("queued")
        logger.info("fee queued for retry ref=%s amount=%s err=%s", reference, amount, error)
        return item

    # ------------------------------------------------------------------
    # Worker pass
    # ------------------------------------------------------------------

    def process_once(self, batch_size: Optional[int] = None) -> Optional[dict[str, int]]:
        """
        One pass over pending items, oldest first. Returns None when another
        pass is still running in this process.
        """
        if not self._running.acquire(blocking=False):
            increment_fee_retry("skipped_overlap")
            logger.info("fee retry pass already running; skipping")
            return None

        summary = {"claimed": 0, "succeeded": 0, "failed": 0, "exhausted": 0, "errors": 0}
        try:
            with self._connect() as conn:
                items = retry_repo.claim_pending(conn, limit=batch_size or self.batch_size)
                summary["claimed"] = len(items)
                for item in items:
                    try:
                        with retry_repo.savepoint(conn, "fee_retry_item"):
                            summary[self._process_item(conn, item)] += 1
                    except Exception:
                        summary["errors"] += 1
                        logger.exception("fee retry item=%s crashed", item.get("id"))
            logger.info("fee retry pass done %s", summary)
            return summary
        finally:
            self._running.release()

    def _process_item(self, conn, item: dict[str, Any]) -> str:
        item_id = item["id"]
        retry_count = int(item.get("retry_count") or 0)

        if retry_count >= self.max_retries:
            retry_repo.record_attempt(
                conn,
                item_id=item_id,
                retry_count=retry_count,
                status="FAILED",
                last_error="Max retries exceeded",
            )
            self._escalate_item(item, retry_count, item.get("last_error"))
            return "exhausted"

        ok, fee_tx_id, error = self._attempt(item)
        if ok:
            self._settle(conn, item, fee_tx_id)
            return "succeeded"

        retry_count += 1
        exhausted = retry_count >= self.max_retries
        retry_repo.record_attempt(
            conn,
            item_id=item_id,
            retry_count=retry_count,
            status="FAILED" if exhausted else "PENDING",
            last_error=error,
        )
        logger.warning(
            "fee retry failed ref=%s attempt=%s/%s err=%s",
            item.get("reference"),
            retry_count,
            self.max_retries,
            error,
        )
        if exhausted:
            self._escalate_item(item, retry_count, error)
            return "exhausted"
        return "failed"

    def _attempt(self, item: dict[str, Any]) -> tuple[bool, Optional[str], Optional[str]]:
        try:
            data = self._client.create_transfer(
                wallet_id=item["wallet_id"],
                destination_address=item["destination_address"],
                amount=str(item["amount"]),
                token_address=item.get("token_address"),
                blockchain=item["blockchain"],
                fee_level="MEDIUM",
                ref_id=f"{item['reference']}-FEE",
                idempotency_key=new_idempotency_key(),
                sealed_credential=self._sealer.generate_sealed_credential(),
            )
        except Exception as exc:
            increment_fee_retry("failed")
            return False, None, redact_text(str(exc))
        increment_fee_retry("succeeded")
        return True, str(data["id"]), None

    def _settle(self, conn, item: dict[str, Any], fee_tx_id: str) -> None:
        transfer_id = item["transfer_id"]
        if not transfer_repo.mark_fee_collected(conn, transfer_id=transfer_id, fee_transfer_id=fee_tx_id):
            logger.warning("fee for ref=%s was already marked collected", item.get("reference"))
        legs_repo.insert_leg(conn, provider_tx_id=fee_tx_id, kind="FEE", record_id=transfer_id)
        retry_repo.delete_item(conn, item["id"])
        logger.info("fee collected on retry ref=%s", item.get("reference"))

    def _escalate_item(self, item: dict[str, Any], retry_count: int, error: Optional[str]) -> None:
        increment_fee_retry("exhausted")
        self._escalate(
            ESCALATION_KIND,
            {
                "item_id": str(item["id"]),
                "transfer_id": str(item["transfer_id"]),
                "reference": item.get("reference"),
                "amount": str(item.get("amount")),
                "retry_count": retry_count,
                "last_error": error,
            },
            connect=self._connect,
        )

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def manual_retry(self, item_id: UUID) -> bool:
        with self._connect() as conn:
            item = retry_repo.get_item(conn, item_id, for_update=True)
            if not item:
                raise NotFound("Fee retry item not found", code="FEE_RETRY_NOT_FOUND")
            retry_repo.reset_item(conn, item_id)
            logger.info("manual fee retry item=%s ref=%s", item_id, item.get("reference"))

            ok, fee_tx_id, error = self._attempt(item)
            if ok:
                self._settle(conn, item, fee_tx_id)
                return True

            retry_repo.record_attempt(
                conn,
                item_id=item_id,
                retry_count=1,
                status="FAILED" if self.max_retries <= 1 else "PENDING",
                last_error=error,
            )
            return False

    def stats(self) -> dict[str, int]:
        with self._connect() as conn:
            counts = retry_repo.count_by_status(conn)
        pending = counts.get("PENDING", 0)
        failed = counts.get("FAILED", 0)
        return {"pending": pending, "failed": failed, "total_queued": pending + failed}

    def list_failed(self, limit: int = 100) -> list[dict[str, Any]]:
        with self._connect() as conn:
            return retry_repo.list_failed(conn, limit=max(1, min(int(limit), 500)))
