# app/transfers/orchestrator.py
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

from app.errors import NotFound, ValidationFailed
from app.fees.policy import FeePolicy, require_usdc_amount
from app.fees.retry_queue import FeeRetryQueue
from app.legs import repository as legs_repo
from app.providers.circle.client import CircleClient
from app.providers.circle.config import is_supported_chain, normalize_chain, usdc_token_address
from app.providers.circle.sealer import EntitySecretSealer, new_idempotency_key
from app.transfers import repository as transfer_repo
from app.transfers.model import Transfer
from app.transfers.saga import ABORT, DEFER_TO_QUEUE, SagaStep, run_saga
from app.transfers.state_machine import STATES, assert_fee_invariant
from app.wallets import repository as wallet_repo
from db import get_conn
from services.metrics import increment_transfer
from services.redaction import redact_text


logger = logging.getLogger("chainpay.transfers")

FEE_LEVELS = ("LOW", "MEDIUM", "HIGH")
CANCELLABLE = ("INITIATED", "QUEUED")


def new_reference(prefix: str = "CIR") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8].upper()}"


@dataclass
class TransferContext:
    reference: str
    user_id: UUID
    wallet: dict[str, Any]
    blockchain: str
    token_address: str
    destination_address: str
    amount: Decimal
    fee_level: str
    fee: Decimal
    collection_wallet: Optional[str]
    provider_tx_id: Optional[str] = None
    fee_transfer_id: Optional[str] = None
    fee_error: Optional[str] = None


class TransferOrchestrator:
    """
    Request-time same-chain transfer: primary leg, then a best-effort fee leg,
    persisted together as one Transfer record.
    """

    def __init__(
        self,
        client: CircleClient,
        sealer: EntitySecretSealer,
        fee_policy: FeePolicy,
        retry_queue: FeeRetryQueue,
        *,
        connect: Callable = get_conn,
    ):
        self._client = client
        self._sealer = sealer
        self._fees = fee_policy
        self._retry_queue = retry_queue
        self._connect = connect

    def create_transfer(
        self,
        *,
        user_id: UUID,
        wallet_id: UUID,
        destination_address: str,
        amount: Any,
        fee_level: str = "MEDIUM",
    ) -> dict[str, Any]:
        ctx = self._validate(
            user_id=user_id,
            wallet_id=wallet_id,
            destination_address=destination_address,
            amount=amount,
            fee_level=fee_level,
        )

        steps = [
            SagaStep("primary", ABORT, self._send_primary),
            SagaStep(
                "fee",
                DEFER_TO_QUEUE,
                self._send_fee,
                when=lambda c: c.fee > 0 and c.collection_wallet is not None,
                on_failure=self._defer_fee,
            ),
        ]
        try:
            saga = run_saga(steps, ctx)
        except Exception:
            increment_transfer("TRANSFER", "primary_failed")
            raise

        if "fee" in saga.skipped and ctx.fee > 0:
            logger.warning("fee skipped ref=%s chain=%s: no collection wallet", ctx.reference, ctx.blockchain)

        transfer = self._persist(ctx)
        increment_transfer("TRANSFER", "ok")
        logger.info(
            "transfer created ref=%s chain=%s amount=%s fee=%s fee_collected=%s",
            transfer.reference,
            transfer.blockchain,
            transfer.amount,
            transfer.fee,
            transfer.fee_collected,
        )
        return {
            "reference": transfer.reference,
            "state": transfer.state,
            "amount": str(transfer.amount),
            "fee": str(transfer.fee),
            "fee_collected": transfer.fee_collected,
        }

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _validate(self, *, user_id, wallet_id, destination_address, amount, fee_level) -> TransferContext:
        value = require_usdc_amount(amount)
        destination = (destination_address or "").strip()
        if not destination:
            raise ValidationFailed("Destination address is required", code="INVALID_DESTINATION")
        level = (fee_level or "MEDIUM").strip().upper()
        if level not in FEE_LEVELS:
            raise ValidationFailed(f"Unsupported fee level: {fee_level}", code="INVALID_FEE_LEVEL")

        with self._connect() as conn:
            wallet = wallet_repo.get_wallet_for_user(conn, wallet_id, user_id)
        if not wallet:
            raise NotFound("Wallet not found", code="WALLET_NOT_FOUND")

        chain = normalize_chain(wallet.get("blockchain"))
        token = usdc_token_address(chain)
        if not is_supported_chain(chain) or not token:
            raise ValidationFailed(f"Unsupported chain: {chain}", code="UNSUPPORTED_CHAIN")

        fee = self._fees.calculate_fee(value)
        collection = self._fees.collection_wallet(chain) if fee > 0 else None

        balance = self._client.get_usdc_balance(wallet["provider_wallet_id"], token)
        required = value + fee
        if balance < required:
            raise ValidationFailed(
                f"Insufficient USDC balance: required {required} (amount {value} + fee {fee}), available {balance}",
                code="INSUFFICIENT_BALANCE",
            )

        return TransferContext(
            reference=new_reference(),
            user_id=user_id,
            wallet=wallet,
            blockchain=chain,
            token_address=token,
            destination_address=destination,
            amount=value,
            fee_level=level,
            fee=fee,
            collection_wallet=collection,
        )

    def _send_primary(self, ctx: TransferContext) -> None:
        data = self._client.create_transfer(
            wallet_id=ctx.wallet["provider_wallet_id"],
            destination_address=ctx.destination_address,
            amount=str(ctx.amount),
            token_address=ctx.token_address,
            blockchain=ctx.blockchain,
            fee_level=ctx.fee_level,
            ref_id=ctx.reference,
            idempotency_key=new_idempotency_key(),
            sealed_credential=self._sealer.generate_sealed_credential(),
        )
        ctx.provider_tx_id = str(data["id"])

    def _send_fee(self, ctx: TransferContext) -> None:
        data = self._client.create_transfer(
            wallet_id=ctx.wallet["provider_wallet_id"],
            destination_address=ctx.collection_wallet,
            amount=str(ctx.fee),
            token_address=ctx.token_address,
            blockchain=ctx.blockchain,
            fee_level=ctx.fee_level,
            ref_id=f"{ctx.reference}-FEE",
            idempotency_key=new_idempotency_key(),
            sealed_credential=self._sealer.generate_sealed_credential(),
        )
        ctx.fee_transfer_id = str(data["id"])

    def _defer_fee(self, ctx: TransferContext, exc: Exception) -> None:
        ctx.fee_error = redact_text(str(exc))
        increment_transfer("FEE", "deferred")

    def _persist(self, ctx: TransferContext) -> Transfer:
        fee_collected = ctx.fee_transfer_id is not None
        assert_fee_invariant(fee_collected, ctx.fee_transfer_id)

        with self._connect() as conn:
            row = transfer_repo.insert_transfer(
                conn,
                reference=ctx.reference,
                user_id=ctx.user_id,
                wallet_id=ctx.wallet["id"],
                provider_wallet_id=ctx.wallet["provider_wallet_id"],
                provider_tx_id=ctx.provider_tx_id,
                destination_address=ctx.destination_address,
                amount=ctx.amount,
                blockchain=ctx.blockchain,
                token_address=ctx.token_address,
                fee_level=ctx.fee_level,
                state="INITIATED",
                fee=ctx.fee,
                fee_collected=fee_collected,
                fee_transfer_id=ctx.fee_transfer_id,
            )
            transfer = Transfer.from_row(row)
            legs_repo.insert_leg(conn, provider_tx_id=ctx.provider_tx_id, kind="TRANSFER", record_id=transfer.id)
            if ctx.fee_transfer_id:
                legs_repo.insert_leg(conn, provider_tx_id=ctx.fee_transfer_id, kind="FEE", record_id=transfer.id)
            if ctx.fee_error is not None:
                self._retry_queue.enqueue(
                    conn,
                    transfer_id=transfer.id,
                    reference=transfer.reference,
                    amount=ctx.fee,
                    destination_address=ctx.collection_wallet,
                    wallet_id=ctx.wallet["provider_wallet_id"],
                    blockchain=ctx.blockchain,
                    token_address=ctx.token_address,
                    error=ctx.fee_error,
                )
        return transfer

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_transfer(self, reference: str, user_id: UUID) -> dict[str, Any]:
        with self._connect() as conn:
            row = transfer_repo.get_transfer_by_reference(conn, reference, user_id=user_id)
        if not row:
            raise NotFound("Transfer not found", code="TRANSFER_NOT_FOUND")
        return Transfer.from_row(row).public_view()

    def list_transfers(
        self,
        user_id: UUID,
        *,
        state: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        if state and state.upper() not in STATES:
            raise ValidationFailed(f"Unknown state: {state}", code="INVALID_STATE")
        with self._connect() as conn:
            rows = transfer_repo.list_transfers(
                conn,
                user_id=user_id,
                state=state.upper() if state else None,
                limit=max(1, min(int(limit), 200)),
                offset=max(0, int(offset)),
            )
        return [Transfer.from_row(r).public_view() for r in rows]

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel_transfer(self, reference: str, user_id: UUID) -> dict[str, Any]:
        """
        Request cancellation of a transfer the provider has not broadcast yet.

        Only the provider call happens here. The CANCELLED state is applied
        by the reconciler when the provider's notification arrives.
        """
        with self._connect() as conn:
            row = transfer_repo.get_transfer_by_reference(conn, reference, user_id=user_id)
        if not row:
            raise NotFound("Transfer not found", code="TRANSFER_NOT_FOUND")
        transfer = Transfer.from_row(row)
        if transfer.state not in CANCELLABLE:
            raise ValidationFailed("Only pending transfers can be cancelled", code="NOT_CANCELLABLE")

        # the local row may lag behind the provider
        live = self._client.get_transaction(transfer.provider_tx_id)
        live_state = str(live.get("state") or "").upper()
        if live_state not in CANCELLABLE:
            logger.info("cancel refused ref=%s provider_state=%s", reference, live_state or "unknown")
            raise ValidationFailed("Only pending transfers can be cancelled", code="NOT_CANCELLABLE")

        self._client.cancel_transaction(
            transfer.provider_tx_id,
            idempotency_key=new_idempotency_key(),
            sealed_credential=self._sealer.generate_sealed_credential(),
        )
        increment_transfer("TRANSFER", "cancel_requested")
        logger.info("cancel requested ref=%s", reference)
        return {**transfer.public_view(), "cancel_requested": True}
