# routes/admin_fees.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.fees.policy import FeePolicy
from app.fees.retry_queue import FeeRetryQueue
from deps.admin import require_admin
from deps.auth import CurrentUser
from deps.services import get_fee_policy, get_fee_retry_queue
from schemas import FeeConfigOut, FeeConfigUpdate, FeeRetryStats, ManualRetryResponse

router = APIRouter(prefix="/v1/admin/fees", tags=["admin_fees"])


def _config_out(config) -> dict:
    return {
        "enabled": config.enabled,
        "percentage": config.percentage,
        "min_fee_usdc": config.min_fee_usdc,
        "collection_wallets": dict(config.collection_wallets),
    }


@router.get("/config", response_model=FeeConfigOut)
def get_fee_config(
    _admin=Depends(require_admin),
    policy: FeePolicy = Depends(get_fee_policy),
):
    return _config_out(policy.get_config())


@router.put("/config", response_model=FeeConfigOut)
def update_fee_config(
    req: FeeConfigUpdate,
    admin: CurrentUser = Depends(require_admin),
    policy: FeePolicy = Depends(get_fee_policy),
):
    updated = policy.update_config(req.model_dump(exclude_none=True), updated_by=str(admin.user_id))
    return _config_out(updated)


@router.get("/retries/stats", response_model=FeeRetryStats)
def retry_stats(
    _admin=Depends(require_admin),
    queue: FeeRetryQueue = Depends(get_fee_retry_queue),
):
    return queue.stats()


@router.get("/retries/failed")
def failed_retries(
    limit: int = Query(100, ge=1, le=500),
    _admin=Depends(require_admin),
    queue: FeeRetryQueue = Depends(get_fee_retry_queue),
):
    items = []
    for row in queue.list_failed(limit):
        items.append(
            {
                "id": str(row["id"]),
                "reference": row.get("reference"),
                "amount": str(row.get("amount")),
                "blockchain": row.get("blockchain"),
                "retry_count": row.get("retry_count"),
                "status": row.get("status"),
                "last_error": row.get("last_error"),
            }
        )
    return {"items": items}


@router.post("/retries/{item_id}/retry", response_model=ManualRetryResponse)
def manual_retry(
    item_id: UUID,
    _admin=Depends(require_admin),
    queue: FeeRetryQueue = Depends(get_fee_retry_queue),
):
    return {"item_id": item_id, "success": queue.manual_retry(item_id)}
