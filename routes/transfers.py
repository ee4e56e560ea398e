# routes/transfers.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.transfers.orchestrator import TransferOrchestrator
from deps.auth import CurrentUser, get_current_user
from deps.services import get_transfer_orchestrator
from schemas import CreateTransferRequest, CreateTransferResponse

router = APIRouter(prefix="/v1/transfers", tags=["transfers"])


@router.post("", response_model=CreateTransferResponse, status_code=201)
def create_transfer(
    req: CreateTransferRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    return orchestrator.create_transfer(
        user_id=user.user_id,
        wallet_id=req.wallet_id,
        destination_address=req.destination_address,
        amount=req.amount,
        fee_level=req.fee_level,
    )


@router.get("")
def list_transfers(
    state: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    return {"items": orchestrator.list_transfers(user.user_id, state=state, limit=limit, offset=offset)}


@router.get("/{reference}")
def get_transfer(
    reference: str,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    return orchestrator.get_transfer(reference, user.user_id)


@router.post("/{reference}/cancel", status_code=202)
def cancel_transfer(
    reference: str,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    return orchestrator.cancel_transfer(reference, user.user_id)
