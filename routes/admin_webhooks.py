# routes/admin_webhooks.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query

from app.webhooks.reconciler import WebhookReconciler
from deps.admin import require_admin
from deps.services import get_reconciler
from schemas import ReplayResponse
from services.redaction import redact_dict

router = APIRouter(prefix="/v1/admin/webhooks", tags=["admin_webhooks"])


@router.get("/events")
def list_events(
    processed: bool | None = Query(None),
    event_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _admin=Depends(require_admin),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    events = reconciler.list_events(processed=processed, event_type=event_type, limit=limit, offset=offset)
    items = []
    for e in events:
        item = {k: v for k, v in e.items() if k != "payload"}
        item["payload"] = redact_dict(e["payload"]) if isinstance(e.get("payload"), dict) else None
        for k in ("created_at", "processed_at"):
            if item.get(k) is not None and hasattr(item[k], "isoformat"):
                item[k] = item[k].isoformat()
        items.append(item)
    return {"items": items}


@router.post("/events/{event_id}/replay", response_model=ReplayResponse)
def replay_event(
    event_id: int = Path(..., ge=1),
    _admin=Depends(require_admin),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    return reconciler.replay(event_id)
