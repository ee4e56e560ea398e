from __future__ import annotations

import json
import time
import uuid
from typing import Any, Optional

from app.webhooks.signing import compute_signature
from tests.conftest import WEBHOOK_SECRET


def notification_body(
    event_type: str,
    tx_id: str,
    *,
    state: Optional[str] = None,
    notification_id: Optional[str] = None,
    **fields: Any,
) -> bytes:
    notification = {"id": tx_id, **fields}
    if state:
        notification["state"] = state
    return json.dumps(
        {
            "notificationId": notification_id or str(uuid.uuid4()),
            "notificationType": event_type,
            "notification": notification,
        }
    ).encode("utf-8")


def signed_headers(raw: bytes, *, secret: str = WEBHOOK_SECRET, timestamp: Optional[str] = None) -> dict[str, str]:
    ts = timestamp or str(int(time.time()))
    return {"X-Circle-Signature": compute_signature(secret, ts, raw), "X-Circle-Timestamp": ts}


def deliver(reconciler, raw: bytes, **header_kw) -> dict[str, Any]:
    headers = signed_headers(raw, **header_kw)
    return reconciler.receive(
        raw,
        signature=headers["X-Circle-Signature"],
        timestamp=headers["X-Circle-Timestamp"],
        request_id="req-test",
    )
