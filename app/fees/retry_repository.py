# app/fees/retry_repository.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from db import savepoint  # noqa: F401


_COLUMNS = """
  id, transfer_id, reference, amount, destination_address, wallet_id,
  blockchain, token_address, retry_count, status, last_error,
  created_at, updated_at
"""


def insert_item(
    conn,
    *,
    transfer_id: UUID,
    reference: str,
    amount: Decimal,
    destination_address: str,
    wallet_id: str,
    blockchain: str,
    token_address: Optional[str],
    last_error: Optional[str],
) -> dict[str, Any]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO app.fee_retry_queue (
              transfer_id, reference, amount, destination_address, wallet_id,
              blockchain, token_address, retry_count, status, last_error
            )
            VALUES (%s::uuid, %s, %s, %s, %s, %s, %s, 0, 'PENDING', %s)
            RETURNING {_COLUMNS}
            """,
            (
                str(transfer_id),
                reference,
                amount,
                destination_address,
                wallet_id,
                blockchain,
                token_address,
                last_error,
            ),
        )
        return dict(cur.fetchone())


def has_open_item(conn, transfer_id: UUID) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            "SELECT 1 FROM app.fee_retry_queue WHERE transfer_id = %s::uuid LIMIT 1",
            (str(transfer_id),),
        )
        return cur.fetchone() is not None


def claim_pending(conn, *, limit: int) -> list[dict[str, Any]]:
    # rows stay locked until the caller's transaction ends
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.fee_retry_queue
            WHERE status = 'PENDING'
            ORDER BY created_at ASC
            LIMIT %s
            FOR UPDATE SKIP LOCKED
            """,
            (limit,),
        )
        return [dict(r) for r in cur.fetchall()]


def get_item(conn, item_id: UUID, *, for_update: bool = False) -> Optional[dict[str, Any]]:
    lock = "FOR UPDATE" if for_update else ""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.fee_retry_queue WHERE id = %s::uuid {lock}",
            (str(item_id),),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def delete_item(conn, item_id: UUID) -> None:
    with conn.cursor() as cur:
        cur.execute("DELETE FROM app.fee_retry_queue WHERE id = %s::uuid", (str(item_id),))


def record_attempt(
    conn,
    *,
    item_id: UUID,
    retry_count: int,
    status: str,
    last_error: Optional[str],
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.fee_retry_queue
            SET retry_count = %s,
                status = %s,
                last_error = COALESCE(%s, last_error),
                updated_at = now()
            WHERE id = %s::uuid
            """,
            (retry_count, status, last_error, str(item_id)),
        )


def reset_item(conn, item_id: UUID) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.fee_retry_queue
            SET retry_count = 0,
                status = 'PENDING',
                updated_at = now()
            WHERE id = %s::uuid
            """,
            (str(item_id),),
        )
        return cur.rowcount == 1


def count_by_status(conn) -> dict[str, int]:
    with conn.cursor() as cur:
        cur.execute("SELECT status, count(*) FROM app.fee_retry_queue GROUP BY status")
        return {str(status): int(n) for status, n in cur.fetchall()}


def list_failed(conn, *, limit: int = 100) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.fee_retry_queue
            WHERE status = 'FAILED'
            ORDER BY updated_at DESC
            LIMIT %s
            """,
            (limit,),
        )
        return [dict(r) for r in cur.fetchall()]
