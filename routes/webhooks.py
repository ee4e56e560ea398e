# routes/webhooks.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from app.webhooks.reconciler import WebhookReconciler
from deps.services import get_reconciler


router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("chainpay.webhooks")


def _resolve_request_id(req: Request) -> str | None:
    for header in ("X-Request-Id", "X-Correlation-Id"):
        value = req.headers.get(header)
        if value and value.strip():
            return value.strip()
    return getattr(req.state, "request_id", None)


@router.post("/circle")
async def circle_webhook(
    req: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    # Always 200 once logged: a non-2xx makes the provider redeliver forever.
    raw = await req.body()
    return reconciler.receive(
        raw,
        signature=req.headers.get("X-Circle-Signature"),
        timestamp=req.headers.get("X-Circle-Timestamp"),
        request_id=_resolve_request_id(req),
    )
