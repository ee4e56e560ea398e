from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID


@dataclass(frozen=True)
class CCTPTransfer:
    id: UUID
    reference: str
    user_id: UUID
    source_wallet_id: UUID
    source_chain: str
    destination_chain: str
    destination_address: str
    amount: Decimal
    transfer_type: str
    state: str
    burn_tx_id: Optional[str] = None
    burn_tx_hash: Optional[str] = None
    attestation_hash: Optional[str] = None
    message: Optional[str] = None
    attestation: Optional[str] = None
    mint_tx_id: Optional[str] = None
    mint_tx_hash: Optional[str] = None
    error_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    burn_confirmed_at: Optional[datetime] = None
    attestation_received_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CCTPTransfer":
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in row.items() if k in fields})

    def public_view(self) -> dict[str, Any]:
        def ts(v: Optional[datetime]) -> Optional[str]:
            return v.isoformat() if v else None

        return {
            "reference": self.reference,
            "state": self.state,
            "source_chain": self.source_chain,
            "destination_chain": self.destination_chain,
            "destination_address": self.destination_address,
            "amount": str(self.amount),
            "transfer_type": self.transfer_type,
            "burn_tx_hash": self.burn_tx_hash,
            "mint_tx_hash": self.mint_tx_hash,
            "error_reason": self.error_reason,
            "created_at": ts(self.created_at),
            "burn_confirmed_at": ts(self.burn_confirmed_at),
            "attestation_received_at": ts(self.attestation_received_at),
            "completed_at": ts(self.completed_at),
            "cancelled_at": ts(self.cancelled_at),
        }
