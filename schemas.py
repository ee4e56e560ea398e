# schemas.py
from __future__ import annotations

from decimal import Decimal
from typing import Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

FeeLevel = Literal["LOW", "MEDIUM", "HIGH"]
TransferType = Literal["STANDARD", "FAST"]


# -------- TRANSFERS --------
class CreateTransferRequest(BaseModel):
    wallet_id: UUID
    destination_address: str = Field(min_length=1, max_length=128)
    amount: Decimal = Field(gt=0)
    fee_level: FeeLevel = "MEDIUM"


class CreateTransferResponse(BaseModel):
    reference: str
    state: str
    amount: str
    fee: str
    fee_collected: bool


# -------- CCTP --------
class CreateCCTPTransferRequest(BaseModel):
    wallet_id: UUID
    destination_chain: str = Field(min_length=2, max_length=32)
    destination_address: str = Field(min_length=1, max_length=128)
    amount: Decimal = Field(gt=0)
    transfer_type: TransferType = "STANDARD"
    fee_level: FeeLevel = "MEDIUM"


class CreateCCTPTransferResponse(BaseModel):
    reference: str
    state: str


class EstimateCCTPFeeRequest(BaseModel):
    source_chain: str
    destination_chain: str
    transfer_type: TransferType = "STANDARD"


class EstimateCCTPFeeResponse(BaseModel):
    source_fee: str
    attestation_fee: str
    total_fee: str
    estimated_time: str


# -------- ADMIN: FEES --------
class FeeConfigOut(BaseModel):
    enabled: bool
    percentage: Decimal
    min_fee_usdc: Decimal
    collection_wallets: Dict[str, str]


class FeeConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    min_fee_usdc: Optional[Decimal] = Field(default=None, ge=0)
    collection_wallets: Optional[Dict[str, str]] = None


class FeeRetryStats(BaseModel):
    pending: int
    failed: int
    total_queued: int


class ManualRetryResponse(BaseModel):
    item_id: UUID
    success: bool


# -------- ADMIN: WEBHOOKS --------
class ReplayResponse(BaseModel):
    event_id: int
    outcome: str
