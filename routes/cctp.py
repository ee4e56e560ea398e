# routes/cctp.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.cctp.orchestrator import CCTPOrchestrator
from deps.auth import CurrentUser, get_current_user
from deps.services import get_cctp_orchestrator
from schemas import (
    CreateCCTPTransferRequest,
    CreateCCTPTransferResponse,
    EstimateCCTPFeeRequest,
    EstimateCCTPFeeResponse,
)

router = APIRouter(prefix="/v1/cctp", tags=["cctp"])


@router.get("/chains")
def supported_chains(cctp: CCTPOrchestrator = Depends(get_cctp_orchestrator)):
    return {"chains": cctp.supported_chains()}


@router.post("/estimate-fee", response_model=EstimateCCTPFeeResponse)
def estimate_fee(
    req: EstimateCCTPFeeRequest,
    cctp: CCTPOrchestrator = Depends(get_cctp_orchestrator),
):
    return cctp.estimate_fee(req.source_chain, req.destination_chain, req.transfer_type)


@router.post("/transfers", response_model=CreateCCTPTransferResponse, status_code=201)
def create_cctp_transfer(
    req: CreateCCTPTransferRequest,
    user: CurrentUser = Depends(get_current_user),
    cctp: CCTPOrchestrator = Depends(get_cctp_orchestrator),
):
    return cctp.initiate_transfer(
        user_id=user.user_id,
        wallet_id=req.wallet_id,
        destination_chain=req.destination_chain,
        destination_address=req.destination_address,
        amount=req.amount,
        transfer_type=req.transfer_type,
        fee_level=req.fee_level,
    )


@router.get("/transfers")
def list_cctp_transfers(
    state: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    cctp: CCTPOrchestrator = Depends(get_cctp_orchestrator),
):
    return {"items": cctp.list_transfers(user.user_id, state=state, limit=limit, offset=offset)}


@router.get("/transfers/{reference}")
def get_cctp_transfer(
    reference: str,
    user: CurrentUser = Depends(get_current_user),
    cctp: CCTPOrchestrator = Depends(get_cctp_orchestrator),
):
    return cctp.get_transfer(reference, user.user_id)


@router.post("/transfers/{reference}/cancel")
def cancel_cctp_transfer(
    reference: str,
    user: CurrentUser = Depends(get_current_user),
    cctp: CCTPOrchestrator = Depends(get_cctp_orchestrator),
):
    return cctp.cancel_transfer(reference, user.user_id)
