#app/webhooks/repository.py
from __future__ import annotations

from typing import Any, Optional

from psycopg2.extensions import connection as PGConn
from psycopg2.extras import Json, RealDictCursor


_COLUMNS = """
  id, notification_id, event_type, provider_tx_id, payload, signature_valid,
  signature_error, request_id, processed, outcome, error, retry_count,
  created_at, processed_at
"""


def insert_event(
    conn: PGConn,
    *,
    notification_id: Optional[str],
    event_type: Optional[str],
    provider_tx_id: Optional[str],
    payload: Optional[dict[str, Any]],
    body_raw: Optional[str],
    signature_valid: bool,
    signature_error: Optional[str] = None,
    request_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Append one inbound callback. Nothing else writes the payload afterwards.
    NOTE: caller commits.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO app.webhook_event_log (
              notification_id, event_type, provider_tx_id, payload, body_raw,
              signature_valid, signature_error, request_id
            )
            VALUES (%s, %s, %s, %s::jsonb, %s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (
                notification_id,
                event_type,
                provider_tx_id,
                Json(payload) if payload is not None else None,
                body_raw,
                signature_valid,
                signature_error,
                request_id,
            ),
        )
        return dict(cur.fetchone())


def is_already_processed(conn: PGConn, notification_id: str, *, exclude_event_id: int) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT 1
            FROM app.webhook_event_log
            WHERE notification_id = %s
              AND processed = true
              AND id <> %s
            LIMIT 1
            """,
            (notification_id, exclude_event_id),
        )
        return cur.fetchone() is not None


def mark_result(
    conn: PGConn,
    event_id: int,
    *,
    processed: bool,
    outcome: str,
    error: Optional[str] = None,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.webhook_event_log
            SET processed = %s,
                outcome = %s,
                error = %s,
                processed_at = CASE WHEN %s THEN now() ELSE processed_at END
            WHERE id = %s
            """,
            (processed, outcome, error, processed, event_id),
        )


def increment_retry(conn: PGConn, event_id: int) -> None:
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE app.webhook_event_log SET retry_count = retry_count + 1 WHERE id = %s",
            (event_id,),
        )


def get_event(conn: PGConn, event_id: int) -> Optional[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT {_COLUMNS} FROM app.webhook_event_log WHERE id = %s", (event_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def list_events(
    conn: PGConn,
    *,
    processed: Optional[bool] = None,
    event_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    where = ["1=1"]
    params: list[Any] = []
    if processed is not None:
        where.append("processed = %s")
        params.append(processed)
    if event_type:
        where.append("event_type = %s")
        params.append(event_type)
    params.extend([limit, offset])
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.webhook_event_log
            WHERE {" AND ".join(where)}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params),
        )
        return [dict(r) for r in cur.fetchall()]
