from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID


@dataclass(frozen=True)
class Transfer:
    id: UUID
    reference: str
    user_id: UUID
    wallet_id: UUID
    provider_wallet_id: str
    provider_tx_id: str
    destination_address: str
    amount: Decimal
    blockchain: str
    token_address: Optional[str]
    state: str
    fee: Decimal
    fee_collected: bool
    fee_transfer_id: Optional[str]
    tx_hash: Optional[str] = None
    block_height: Optional[int] = None
    error_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transfer":
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in row.items() if k in fields})

    def public_view(self) -> dict[str, Any]:
        # provider ids never leave the service
        return {
            "reference": self.reference,
            "state": self.state,
            "amount": str(self.amount),
            "blockchain": self.blockchain,
            "destination_address": self.destination_address,
            "fee": str(self.fee),
            "fee_collected": self.fee_collected,
            "tx_hash": self.tx_hash,
            "block_height": self.block_height,
            "error_reason": self.error_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
