# app/webhooks/reconciler.py
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional
from uuid import UUID

from app.cctp.orchestrator import CCTPOrchestrator
from app.errors import NotFound, ValidationFailed
from app.fees import retry_repository as retry_repo
from app.fees.policy import FeePolicy
from app.fees.retry_queue import FeeRetryQueue
from app.legs import repository as legs_repo
from app.transfers import repository as transfer_repo
from app.transfers.state_machine import can_transition, is_terminal, map_event
from app.webhooks import repository as webhook_repo
from app.webhooks.signing import verify_signature
from db import get_conn
from services.metrics import increment_webhook_event
from services.redaction import redact_text
from settings import settings


logger = logging.getLogger("chainpay.webhooks")

FAILURE_STATES = ("FAILED", "DENIED", "CANCELLED")


class WebhookReconciler:
    """
    Applies provider callbacks to stored records.

    Every inbound event is logged before anything else happens. Processing
    never raises to the transport: failures end up as an outcome/error on the
    event log row.
    """

    def __init__(
        self,
        cctp: CCTPOrchestrator,
        retry_queue: FeeRetryQueue,
        fee_policy: FeePolicy,
        *,
        connect: Callable = get_conn,
        secret: Optional[str] = None,
        allow_unsigned: Optional[bool] = None,
        tolerance_s: Optional[int] = None,
    ):
        self._cctp = cctp
        self._retry_queue = retry_queue
        self._fees = fee_policy
        self._connect = connect
        self._secret = secret if secret is not None else settings.CIRCLE_WEBHOOK_SECRET
        self._allow_unsigned = settings.WEBHOOK_ALLOW_UNSIGNED if allow_unsigned is None else allow_unsigned
        self._tolerance_s = settings.WEBHOOK_TOLERANCE_S if tolerance_s is None else tolerance_s

    # ------------------------------------------------------------------
    # Transport entry point
    # ------------------------------------------------------------------

    def receive(
        self,
        raw: bytes,
        *,
        signature: Optional[str],
        timestamp: Optional[str],
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        if self._allow_unsigned and not (self._secret or "").strip():
            signature_valid, signature_error = True, "UNSIGNED_ALLOWED"
        else:
            signature_valid, signature_error = verify_signature(
                raw=raw,
                signature_header=signature,
                timestamp_header=timestamp,
                secret=self._secret,
                tolerance_s=self._tolerance_s,
            )

        payload: Optional[dict[str, Any]] = None
        try:
            parsed = json.loads(raw.decode("utf-8"))
            if isinstance(parsed, dict):
                payload = parsed
        except (UnicodeDecodeError, ValueError):
            payload = None

        notification = (payload or {}).get("notification") or {}
        if not isinstance(notification, dict):
            notification = {}
        event_type = (payload or {}).get("notificationType")
        notification_id = (payload or {}).get("notificationId")
        provider_tx_id = notification.get("id")

        with self._connect() as conn:
            event = webhook_repo.insert_event(
                conn,
                notification_id=str(notification_id) if notification_id else None,
                event_type=event_type,
                provider_tx_id=str(provider_tx_id) if provider_tx_id else None,
                payload=payload,
                body_raw=raw.decode("utf-8", errors="replace"),
                signature_valid=signature_valid,
                signature_error=signature_error,
                request_id=request_id,
            )
            rejected = None
            if not signature_valid:
                rejected = "INVALID_SIGNATURE"
            elif payload is None:
                rejected = "INVALID_PAYLOAD"
            if rejected:
                webhook_repo.mark_result(conn, event["id"], processed=False, outcome=rejected, error=signature_error)

        logger.info(
            "webhook_received request_id=%s event_id=%s type=%s notification_id=%s signature_valid=%s reason=%s",
            request_id,
            event["id"],
            event_type,
            notification_id,
            signature_valid,
            signature_error,
        )

        if rejected:
            increment_webhook_event(event_type or "unknown", signature_valid, rejected)
            return {"ok": True, "event_id": event["id"], "outcome": rejected}

        outcome = self.process_event(event)
        return {"ok": True, "event_id": event["id"], "outcome": outcome}

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_event(self, event: dict[str, Any]) -> str:
        try:
            with self._connect() as conn:
                outcome, processed = self._dispatch(conn, event)
                webhook_repo.mark_result(conn, event["id"], processed=processed, outcome=outcome)
        except Exception as exc:
            logger.exception("webhook processing failed event_id=%s", event.get("id"))
            outcome = "ERROR"
            with self._connect() as conn:
                webhook_repo.mark_result(
                    conn,
                    event["id"],
                    processed=False,
                    outcome=outcome,
                    error=redact_text(f"{type(exc).__name__}: {exc}"),
                )
        increment_webhook_event(event.get("event_type") or "unknown", bool(event.get("signature_valid")), outcome)
        return outcome

    def _dispatch(self, conn, event: dict[str, Any]) -> tuple[str, bool]:
        """Returns (outcome, processed)."""
        notification_id = event.get("notification_id")
        if notification_id and webhook_repo.is_already_processed(conn, notification_id, exclude_event_id=event["id"]):
            logger.info("webhook already processed notification_id=%s", notification_id)
            return "ALREADY_PROCESSED", True

        payload = event.get("payload") or {}
        notification = payload.get("notification") or {}
        event_type = event.get("event_type") or ""
        new_state = map_event(event_type, notification.get("state"))
        if new_state is None:
            logger.info("ignoring webhook type=%s", event_type)
            return "IGNORED", True

        tx_id = notification.get("id")
        if not tx_id:
            logger.warning("webhook without transaction id event_id=%s", event["id"])
            return "INVALID_PAYLOAD", True

        leg = legs_repo.resolve_leg(conn, str(tx_id))
        if leg is None:
            # may belong to another system, or race the request that created it
            logger.warning("orphan webhook type=%s event_id=%s", event_type, event["id"])
            return "ORPHAN", False

        kind = leg["kind"]
        if kind == "TRANSFER":
            outcome = self._apply_transfer(conn, leg["record_id"], new_state, notification)
        elif kind == "FEE":
            outcome = self._apply_fee_leg(conn, leg["record_id"], str(tx_id), new_state)
        elif kind in ("CCTP_BURN", "CCTP_MINT"):
            outcome = self._cctp.handle_leg_event(
                conn,
                leg_kind=kind,
                record_id=leg["record_id"],
                new_state=new_state,
                notification=notification,
            )
        else:
            raise ValueError(f"Unknown leg kind: {kind}")
        return outcome, True

    def _apply_transfer(self, conn, transfer_id: UUID, new_state: str, notification: dict[str, Any]) -> str:
        row = transfer_repo.get_transfer_by_id(conn, transfer_id, for_update=True)
        if not row:
            logger.warning("transfer leg points at missing record id=%s", transfer_id)
            return "ORPHAN"

        current = row["state"]
        if is_terminal(current):
            if is_terminal(new_state) and new_state != current:
                logger.warning(
                    "TERMINAL_CONFLICT ref=%s stored=%s event=%s",
                    row["reference"],
                    current,
                    new_state,
                )
                return "TERMINAL_CONFLICT"
            return "NOOP"
        if not can_transition(current, new_state):
            return "NOOP"

        block_height = notification.get("blockHeight")
        applied = transfer_repo.update_state(
            conn,
            transfer_id=transfer_id,
            from_state=current,
            new_state=new_state,
            tx_hash=notification.get("txHash"),
            block_height=int(block_height) if block_height is not None else None,
            block_hash=notification.get("blockHash"),
            network_fee=str(notification["networkFee"]) if notification.get("networkFee") is not None else None,
            error_reason=notification.get("errorReason") if new_state in FAILURE_STATES else None,
            set_completed_at=new_state == "COMPLETE",
            set_cancelled_at=new_state == "CANCELLED",
        )
        if applied:
            logger.info("transfer ref=%s %s -> %s", row["reference"], current, new_state)
            return "APPLIED"
        return "NOOP"

    def _apply_fee_leg(self, conn, transfer_id: UUID, fee_tx_id: str, new_state: str) -> str:
        row = transfer_repo.get_transfer_by_id(conn, transfer_id, for_update=True)
        if not row:
            return "ORPHAN"

        if new_state == "COMPLETE":
            logger.info("fee leg confirmed ref=%s", row["reference"])
            return "FEE_CONFIRMED"
        if new_state not in FAILURE_STATES:
            return "NOOP"

        if not transfer_repo.mark_fee_uncollected(conn, transfer_id=transfer_id, fee_transfer_id=fee_tx_id):
            return "NOOP"

        logger.warning("fee leg %s on-chain ref=%s", new_state.lower(), row["reference"])
        destination = self._fees.collection_wallet(row["blockchain"])
        if not destination or retry_repo.has_open_item(conn, transfer_id):
            return "FEE_UNCOLLECTED"
        self._retry_queue.enqueue(
            conn,
            transfer_id=transfer_id,
            reference=row["reference"],
            amount=row["fee"],
            destination_address=destination,
            wallet_id=row["provider_wallet_id"],
            blockchain=row["blockchain"],
            token_address=row.get("token_address"),
            error=f"Fee leg {new_state}",
        )
        return "FEE_REQUEUED"

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def replay(self, event_id: int) -> dict[str, Any]:
        with self._connect() as conn:
            event = webhook_repo.get_event(conn, event_id)
            if not event:
                raise NotFound("Webhook event not found", code="WEBHOOK_EVENT_NOT_FOUND")
            if event.get("processed"):
                raise ValidationFailed("Event already processed", code="ALREADY_PROCESSED")
            if not event.get("signature_valid"):
                raise ValidationFailed("Event signature was not verified", code="INVALID_SIGNATURE")
            webhook_repo.increment_retry(conn, event_id)

        logger.info("replaying webhook event_id=%s", event_id)
        outcome = self.process_event(event)
        return {"event_id": event_id, "outcome": outcome}

    def list_events(
        self,
        *,
        processed: Optional[bool] = None,
        event_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        with self._connect() as conn:
            return webhook_repo.list_events(
                conn,
                processed=processed,
                event_type=event_type,
                limit=max(1, min(int(limit), 200)),
                offset=max(0, int(offset)),
            )
