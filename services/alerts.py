from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
from psycopg2.extras import Json

from db import get_conn
from services.metrics import increment_admin_alert
from services.redaction import redact_dict
from settings import settings


logger = logging.getLogger("chainpay.alerts")


def insert_alert(conn, *, kind: str, payload: dict[str, Any]) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.alerts (kind, payload)
            VALUES (%s, %s::jsonb);
            """,
            (kind, Json(payload)),
        )


def escalate(kind: str, payload: dict[str, Any], *, connect: Callable = get_conn) -> None:
    """
    Human-visible escalation. The log line and counter always happen; the
    persisted row and outbound notification are best effort.
    """
    safe = redact_dict(payload)
    logger.error("ADMIN ALERT kind=%s payload=%s", kind, safe)
    increment_admin_alert(kind)

    try:
        with connect() as conn:
            insert_alert(conn, kind=kind, payload=safe)
    except Exception:
        logger.exception("failed to persist alert kind=%s", kind)

    url = (settings.ALERT_WEBHOOK_URL or "").strip()
    if not url:
        return
    try:
        r = httpx.post(url, json={"kind": kind, "payload": safe}, timeout=5.0)
        r.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("alert webhook delivery failed kind=%s err=%s", kind, exc)
