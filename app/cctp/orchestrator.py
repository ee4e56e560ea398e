# app/cctp/orchestrator.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

from app.cctp import repository as cctp_repo
from app.cctp.attestation import Attestation, AttestationClient
from app.cctp.chains import DOMAINS, MESSAGE_TRANSMITTER, RECEIVE_MESSAGE_SIGNATURE, cctp_chains
from app.cctp.model import CCTPTransfer
from app.cctp.state_machine import CANCELLABLE, TERMINAL, assert_completed_invariant
from app.errors import NotFound, ValidationFailed
from app.fees.policy import require_usdc_amount
from app.legs import repository as legs_repo
from app.providers.circle.client import CircleClient
from app.providers.circle.config import (
    circle_environment,
    is_supported_chain,
    normalize_chain,
    usdc_token_address,
)
from app.providers.circle.sealer import EntitySecretSealer, new_idempotency_key
from app.transfers.orchestrator import FEE_LEVELS, new_reference
from app.wallets import repository as wallet_repo
from db import get_conn
from services import alerts
from services.metrics import increment_transfer
from services.redaction import redact_text
from settings import settings


logger = logging.getLogger("chainpay.cctp")

TRANSFER_TYPES = ("STANDARD", "FAST")
FAILURE_STATES = ("FAILED", "DENIED", "CANCELLED")
CONFIRMATION_STATES = ("CONFIRMED", "COMPLETE")


class CCTPOrchestrator:
    """
    Cross-chain USDC transfers: burn on the source chain, wait for the
    attestation, mint on the destination chain.

    Only initiate_transfer and cancel_transfer run at request time. Every later
    step is driven by provider callbacks (handle_leg_event) or the periodic
    attestation sweep.
    """

    def __init__(
        self,
        client: CircleClient,
        sealer: EntitySecretSealer,
        attestation: AttestationClient,
        *,
        connect: Callable = get_conn,
        domains: Optional[dict[str, int]] = None,
        relayer_wallets: Optional[dict[str, str]] = None,
        escalate: Callable[..., None] = alerts.escalate,
    ):
        self._client = client
        self._sealer = sealer
        self._attestation = attestation
        self._connect = connect
        self._domains = dict(DOMAINS if domains is None else domains)
        self._relayers = dict(settings.CCTP_RELAYER_WALLETS if relayer_wallets is None else relayer_wallets)
        self._escalate = escalate

    # ------------------------------------------------------------------
    # Chains / pricing
    # ------------------------------------------------------------------

    def _require_chain(self, chain: str, role: str) -> str:
        value = normalize_chain(chain)
        if not is_supported_chain(value) or value not in self._domains:
            raise ValidationFailed(f"{role} chain {value or chain!r} does not support CCTP", code="UNSUPPORTED_CHAIN")
        return value

    def domain_for(self, chain: str) -> int:
        return self._domains[normalize_chain(chain)]

    def supported_chains(self) -> list[dict[str, Any]]:
        return [{"chain": c, "domain": self._domains[c]} for c in cctp_chains(self._domains)]

    def estimate_fee(self, source_chain: str, destination_chain: str, transfer_type: str = "STANDARD") -> dict[str, str]:
        self._require_chain(source_chain, "Source")
        self._require_chain(destination_chain, "Destination")
        speed = _transfer_type(transfer_type)

        source_fee = Decimal(str(settings.CCTP_SOURCE_GAS_FEE_USDC))
        attestation_fee = Decimal(str(settings.CCTP_FAST_ATTESTATION_FEE_USDC)) if speed == "FAST" else Decimal("0")
        total = source_fee + attestation_fee
        return {
            "source_fee": f"{source_fee:.2f}",
            "attestation_fee": f"{attestation_fee:.2f}",
            "total_fee": f"{total:.2f}",
            "estimated_time": "~1-3 minutes" if speed == "FAST" else "~15-30 minutes",
        }

    # ------------------------------------------------------------------
    # Request time
    # ------------------------------------------------------------------

    def initiate_transfer(
        self,
        *,
        user_id: UUID,
        wallet_id: UUID,
        destination_chain: str,
        destination_address: str,
        amount: Any,
        transfer_type: str = "STANDARD",
        fee_level: str = "MEDIUM",
    ) -> dict[str, Any]:
        value = require_usdc_amount(amount)
        speed = _transfer_type(transfer_type)
        level = (fee_level or "MEDIUM").strip().upper()
        if level not in FEE_LEVELS:
            raise ValidationFailed(f"Unsupported fee level: {fee_level}", code="INVALID_FEE_LEVEL")
        destination = (destination_address or "").strip()
        if not destination:
            raise ValidationFailed("Destination address is required", code="INVALID_DESTINATION")

        with self._connect() as conn:
            wallet = wallet_repo.get_wallet_for_user(conn, wallet_id, user_id)
        if not wallet:
            raise NotFound("Wallet not found", code="WALLET_NOT_FOUND")

        source = self._require_chain(wallet.get("blockchain"), "Source")
        dest = self._require_chain(destination_chain, "Destination")
        if self._domains[source] == self._domains[dest]:
            raise ValidationFailed("Source and destination chains must differ", code="SAME_CHAIN")

        token = usdc_token_address(source)
        balance = self._client.get_usdc_balance(wallet["provider_wallet_id"], token)
        if balance < value:
            raise ValidationFailed(
                f"Insufficient USDC balance: required {value}, available {balance}",
                code="INSUFFICIENT_BALANCE",
            )

        reference = new_reference("CCTP")
        with self._connect() as conn:
            row = cctp_repo.insert_transfer(
                conn,
                reference=reference,
                user_id=user_id,
                source_wallet_id=wallet["id"],
                source_chain=source,
                destination_chain=dest,
                destination_address=destination,
                amount=value,
                transfer_type=speed,
            )
        record = CCTPTransfer.from_row(row)

        logger.info("initiating CCTP ref=%s %s USDC %s -> %s", reference, value, source, dest)
        try:
            data = self._client.create_transfer(
                wallet_id=wallet["provider_wallet_id"],
                destination_address=destination,
                amount=str(value),
                token_address=token,
                blockchain=source,
                fee_level=level,
                ref_id=reference,
                idempotency_key=new_idempotency_key(),
                sealed_credential=self._sealer.generate_sealed_credential(),
                extra={"destinationDomain": self._domains[dest]},
            )
        except Exception as exc:
            with self._connect() as conn:
                cctp_repo.update_state(
                    conn,
                    transfer_id=record.id,
                    new_state="FAILED",
                    fields={"error_reason": "BURN_SUBMIT_FAILED"},
                    touch=("failed_at",),
                )
            increment_transfer("CCTP", "burn_failed")
            logger.error("CCTP burn submit failed ref=%s err=%s", reference, redact_text(str(exc)))
            raise

        burn_tx_id = str(data["id"])
        with self._connect() as conn:
            cctp_repo.update_state(
                conn,
                transfer_id=record.id,
                new_state="BURN_PENDING",
                fields={"burn_tx_id": burn_tx_id},
            )
            legs_repo.insert_leg(conn, provider_tx_id=burn_tx_id, kind="CCTP_BURN", record_id=record.id)

        increment_transfer("CCTP", "ok")
        logger.info("CCTP burn submitted ref=%s", reference)
        return {"reference": reference, "state": "BURN_PENDING"}

    def cancel_transfer(self, reference: str, user_id: UUID) -> dict[str, Any]:
        with self._connect() as conn:
            row = cctp_repo.get_by_reference(conn, reference, user_id=user_id)
            if not row:
                raise NotFound("CCTP transfer not found", code="CCTP_NOT_FOUND")
            if row["state"] not in CANCELLABLE:
                raise ValidationFailed(
                    f"Transfer cannot be cancelled in state {row['state']}",
                    code="NOT_CANCELLABLE",
                )
            if not cctp_repo.update_state(
                conn,
                transfer_id=row["id"],
                new_state="CANCELLED",
                touch=("cancelled_at",),
            ):
                raise ValidationFailed("Transfer state changed; cannot be cancelled", code="NOT_CANCELLABLE")
            row = cctp_repo.get_by_id(conn, row["id"])
        logger.info("CCTP transfer cancelled ref=%s", reference)
        return CCTPTransfer.from_row(row).public_view()

    def get_transfer(self, reference: str, user_id: UUID) -> dict[str, Any]:
        with self._connect() as conn:
            row = cctp_repo.get_by_reference(conn, reference, user_id=user_id)
        if not row:
            raise NotFound("CCTP transfer not found", code="CCTP_NOT_FOUND")
        return CCTPTransfer.from_row(row).public_view()

    def list_transfers(
        self,
        user_id: UUID,
        *,
        state: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = cctp_repo.list_transfers(
                conn,
                user_id=user_id,
                state=state.upper() if state else None,
                limit=max(1, min(int(limit), 200)),
                offset=max(0, int(offset)),
            )
        return [CCTPTransfer.from_row(r).public_view() for r in rows]

    # ------------------------------------------------------------------
    # Callback driven
    # ------------------------------------------------------------------

    def handle_leg_event(
        self,
        conn,
        *,
        leg_kind: str,
        record_id: UUID,
        new_state: str,
        notification: dict[str, Any],
    ) -> str:
        row = cctp_repo.get_by_id(conn, record_id, for_update=True)
        if not row:
            logger.warning("CCTP leg points at missing record id=%s", record_id)
            return "ORPHAN"
        record = CCTPTransfer.from_row(row)
        tx_hash = notification.get("txHash")
        reason = notification.get("errorReason")

        if new_state in CONFIRMATION_STATES:
            if new_state == "CONFIRMED" and not tx_hash:
                return "NOOP"
            implied = "COMPLETED" if leg_kind == "CCTP_MINT" else None
        elif new_state in FAILURE_STATES:
            implied = "FAILED"
        else:
            # intermediate provider states carry nothing for the cross-chain flow
            return "NOOP"

        if record.state in TERMINAL:
            if record.state == "CANCELLED" and leg_kind == "CCTP_BURN" and implied is None:
                return self._on_burn_after_cancel(conn, record, tx_hash)
            if implied is not None and implied != record.state:
                logger.warning(
                    "TERMINAL_CONFLICT cctp ref=%s stored=%s event=%s leg=%s",
                    record.reference,
                    record.state,
                    new_state,
                    leg_kind,
                )
                return "TERMINAL_CONFLICT"
            return "NOOP"

        if new_state in FAILURE_STATES:
            return self.on_leg_failed(conn, record, "BURN" if leg_kind == "CCTP_BURN" else "MINT", reason)
        if leg_kind == "CCTP_BURN":
            return self.on_burn_confirmed(conn, record, tx_hash)
        return self.on_mint_confirmed(conn, record, tx_hash)

    def on_burn_confirmed(self, conn, record: CCTPTransfer, tx_hash: Optional[str]) -> str:
        if not tx_hash:
            logger.warning("burn confirmation without txHash ref=%s", record.reference)
            return "NOOP"
        if not cctp_repo.update_state(
            conn,
            transfer_id=record.id,
            new_state="BURN_CONFIRMED",
            fields={"burn_tx_hash": tx_hash},
            touch=("burn_confirmed_at",),
        ):
            return "NOOP"
        logger.info("CCTP burn confirmed ref=%s", record.reference)
        self._try_attestation(conn, record, tx_hash)
        return "APPLIED"

    def _on_burn_after_cancel(self, conn, record: CCTPTransfer, tx_hash: Optional[str]) -> str:
        # the burn went through anyway; source funds are gone and nothing will mint them
        logger.warning(
            "CCTP burn confirmed after cancel ref=%s burn_tx_hash=%s",
            record.reference,
            tx_hash,
        )
        if tx_hash and not cctp_repo.record_late_burn(conn, transfer_id=record.id, burn_tx_hash=tx_hash):
            return "NOOP"
        self._escalate(
            "CCTP_BURN_AFTER_CANCEL",
            {
                "reference": record.reference,
                "source_chain": record.source_chain,
                "destination_chain": record.destination_chain,
                "amount": str(record.amount),
                "burn_tx_hash": tx_hash,
            },
            connect=self._connect,
        )
        return "BURN_AFTER_CANCEL"

    def on_mint_confirmed(self, conn, record: CCTPTransfer, tx_hash: Optional[str]) -> str:
        if not tx_hash:
            logger.warning("mint confirmation without txHash ref=%s", record.reference)
            return "NOOP"
        assert_completed_invariant("COMPLETED", tx_hash)
        if not cctp_repo.update_state(
            conn,
            transfer_id=record.id,
            new_state="COMPLETED",
            fields={"mint_tx_hash": tx_hash},
            touch=("completed_at",),
        ):
            return "NOOP"
        increment_transfer("CCTP", "completed")
        logger.info("CCTP transfer completed ref=%s", record.reference)
        return "APPLIED"

    def on_leg_failed(self, conn, record: CCTPTransfer, leg: str, reason: Optional[str] = None) -> str:
        if not cctp_repo.update_state(
            conn,
            transfer_id=record.id,
            new_state="FAILED",
            fields={"error_reason": f"{leg}_FAILED" + (f": {reason}" if reason else "")},
            touch=("failed_at",),
        ):
            return "NOOP"
        increment_transfer("CCTP", f"{leg.lower()}_failed")
        logger.error("CCTP %s leg failed ref=%s reason=%s", leg.lower(), record.reference, reason)
        if leg == "MINT":
            # source funds are already burned
            self._escalate(
                "CCTP_MINT_FAILED",
                {"reference": record.reference, "reason": reason},
                connect=self._connect,
            )
        return "APPLIED"

    def sweep_attestations(self, limit: Optional[int] = None) -> int:
        """Re-check burns whose attestation was not ready at confirmation time."""
        advanced = 0
        with self._connect() as conn:
            rows = cctp_repo.list_awaiting_attestation(conn, limit=limit or settings.ATTESTATION_SWEEP_BATCH_SIZE)
            for row in rows:
                record = CCTPTransfer.from_row(row)
                try:
                    with cctp_repo.savepoint(conn, "cctp_sweep_record"):
                        if self._try_attestation(conn, record, record.burn_tx_hash):
                            advanced += 1
                except Exception:
                    logger.exception("attestation sweep crashed ref=%s", record.reference)
        if advanced:
            logger.info("attestation sweep advanced %s transfers", advanced)
        return advanced

    # ------------------------------------------------------------------
    # Attestation + mint
    # ------------------------------------------------------------------

    def _try_attestation(self, conn, record: CCTPTransfer, burn_tx_hash: str) -> bool:
        try:
            proof = self._attestation.fetch(self.domain_for(record.source_chain), burn_tx_hash)
            if proof is None:
                return False
            digest = proof.digest
        except Exception as exc:
            logger.warning("attestation lookup failed ref=%s err=%s", record.reference, exc)
            return False

        if not cctp_repo.update_state(
            conn,
            transfer_id=record.id,
            new_state="ATTESTATION_RECEIVED",
            fields={
                "attestation_hash": digest,
                "message": proof.message,
                "attestation": proof.attestation,
            },
            touch=("attestation_received_at",),
        ):
            return False
        logger.info("attestation received ref=%s", record.reference)
        self._submit_mint(conn, record, proof)
        return True

    def _submit_mint(self, conn, record: CCTPTransfer, proof: Attestation) -> None:
        dest = normalize_chain(record.destination_chain)
        relayer = self._relayers.get(dest)
        try:
            if not relayer:
                raise ValidationFailed(f"No relayer wallet configured for {dest}", code="NO_RELAYER_WALLET")
            data = self._client.create_contract_execution(
                wallet_id=relayer,
                contract_address=MESSAGE_TRANSMITTER[circle_environment()],
                abi_function_signature=RECEIVE_MESSAGE_SIGNATURE,
                abi_parameters=[proof.message, proof.attestation],
                fee_level="MEDIUM",
                ref_id=f"{record.reference}-MINT",
                idempotency_key=new_idempotency_key(),
                sealed_credential=self._sealer.generate_sealed_credential(),
            )
        except Exception as exc:
            cctp_repo.update_state(
                conn,
                transfer_id=record.id,
                new_state="FAILED",
                fields={"error_reason": "MINT_SUBMIT_FAILED"},
                touch=("failed_at",),
            )
            increment_transfer("CCTP", "mint_submit_failed")
            logger.error("CCTP mint submit failed ref=%s err=%s", record.reference, redact_text(str(exc)))
            self._escalate(
                "CCTP_MINT_SUBMIT_FAILED",
                {"reference": record.reference, "destination_chain": dest, "error": str(exc)},
                connect=self._connect,
            )
            return

        mint_tx_id = str(data["id"])
        cctp_repo.record_mint_leg(conn, transfer_id=record.id, mint_tx_id=mint_tx_id)
        legs_repo.insert_leg(conn, provider_tx_id=mint_tx_id, kind="CCTP_MINT", record_id=record.id)
        logger.info("CCTP mint submitted ref=%s", record.reference)


def _transfer_type(value: Optional[str]) -> str:
    speed = (value or "STANDARD").strip().upper()
    if speed not in TRANSFER_TYPES:
        raise ValidationFailed(f"Unsupported transfer type: {value}", code="INVALID_TRANSFER_TYPE")
    return speed
