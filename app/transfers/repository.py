# app/transfers/repository.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor


_COLUMNS = """
  id, reference, user_id, wallet_id, provider_wallet_id, provider_tx_id,
  destination_address, amount, blockchain, token_address, state, fee, fee_collected,
  fee_transfer_id, tx_hash, block_height, error_reason,
  created_at, completed_at, cancelled_at
"""


def insert_transfer(
    conn,
    *,
    reference: str,
    user_id: UUID,
    wallet_id: UUID,
    provider_wallet_id: str,
    provider_tx_id: str,
    destination_address: str,
    amount: Decimal,
    blockchain: str,
    token_address: Optional[str],
    fee_level: str,
    state: str,
    fee: Decimal,
    fee_collected: bool,
    fee_transfer_id: Optional[str],
) -> dict[str, Any]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO app.transfers (
              reference, user_id, wallet_id, provider_wallet_id, provider_tx_id,
              destination_address, amount, blockchain, token_address, fee_level,
              state, fee, fee_collected, fee_transfer_id
            )
            VALUES (%s, %s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (
                reference,
                str(user_id),
                str(wallet_id),
                provider_wallet_id,
                provider_tx_id,
                destination_address,
                amount,
                blockchain,
                token_address,
                fee_level,
                state,
                fee,
                fee_collected,
                fee_transfer_id,
            ),
        )
        return dict(cur.fetchone())


def get_transfer_by_id(conn, transfer_id: UUID, *, for_update: bool = False) -> Optional[dict[str, Any]]:
    lock = "FOR UPDATE" if for_update else ""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.transfers WHERE id = %s::uuid {lock}",
            (str(transfer_id),),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_transfer_by_reference(conn, reference: str, *, user_id: Optional[UUID] = None) -> Optional[dict[str, Any]]:
    sql = f"SELECT {_COLUMNS} FROM app.transfers WHERE reference = %s"
    params: list[Any] = [reference]
    if user_id is not None:
        sql += " AND user_id = %s::uuid"
        params.append(str(user_id))
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, tuple(params))
        row = cur.fetchone()
        return dict(row) if row else None


def list_transfers(
    conn,
    *,
    user_id: UUID,
    state: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    where = ["user_id = %s::uuid"]
    params: list[Any] = [str(user_id)]
    if state:
        where.append("state = %s")
        params.append(state)
    params.extend([limit, offset])
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.transfers
            WHERE {" AND ".join(where)}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params),
        )
        return [dict(r) for r in cur.fetchall()]


def update_state(
    conn,
    *,
    transfer_id: UUID,
    from_state: str,
    new_state: str,
    tx_hash: Optional[str] = None,
    block_height: Optional[int] = None,
    block_hash: Optional[str] = None,
    network_fee: Optional[str] = None,
    error_reason: Optional[str] = None,
    set_completed_at: bool = False,
    set_cancelled_at: bool = False,
) -> bool:
    """
    Compare-and-set on the observed state; a concurrent writer or a terminal
    row makes this a no-op (returns False).
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.transfers
            SET
              state = %s,
              tx_hash = COALESCE(%s, tx_hash),
              block_height = COALESCE(%s, block_height),
              block_hash = COALESCE(%s, block_hash),
              network_fee = COALESCE(%s, network_fee),
              error_reason = COALESCE(%s, error_reason),
              completed_at = CASE WHEN %s THEN COALESCE(completed_at, now()) ELSE completed_at END,
              cancelled_at = CASE WHEN %s THEN COALESCE(cancelled_at, now()) ELSE cancelled_at END,
              updated_at = now()
            WHERE id = %s::uuid
              AND state = %s
              AND state NOT IN ('COMPLETE', 'FAILED', 'CANCELLED', 'DENIED')
            """,
            (
                new_state,
                tx_hash,
                block_height,
                block_hash,
                network_fee,
                error_reason,
                set_completed_at,
                set_cancelled_at,
                str(transfer_id),
                from_state,
            ),
        )
        return cur.rowcount == 1


def mark_fee_collected(conn, *, transfer_id: UUID, fee_transfer_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.transfers
            SET fee_collected = true,
                fee_transfer_id = %s,
                updated_at = now()
            WHERE id = %s::uuid
              AND fee_collected = false
            """,
            (fee_transfer_id, str(transfer_id)),
        )
        return cur.rowcount == 1


def mark_fee_uncollected(conn, *, transfer_id: UUID, fee_transfer_id: str) -> bool:
    """Undo fee bookkeeping once, when the fee leg that was recorded as collected fails on-chain."""
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.transfers
            SET fee_collected = false,
                updated_at = now()
            WHERE id = %s::uuid
              AND fee_collected = true
              AND fee_transfer_id = %s
            """,
            (str(transfer_id), fee_transfer_id),
        )
        return cur.rowcount == 1
