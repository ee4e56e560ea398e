# app/cctp/repository.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor

from app.cctp.state_machine import sources_for
from db import savepoint  # noqa: F401


_COLUMNS = """
  id, reference, user_id, source_wallet_id, source_chain, destination_chain,
  destination_address, amount, transfer_type, state, burn_tx_id, burn_tx_hash,
  attestation_hash, message, attestation, mint_tx_id, mint_tx_hash,
  error_reason, created_at, burn_confirmed_at, attestation_received_at,
  completed_at, cancelled_at, failed_at
"""

UPDATABLE_FIELDS = frozenset(
    {
        "burn_tx_id",
        "burn_tx_hash",
        "attestation_hash",
        "message",
        "attestation",
        "mint_tx_id",
        "mint_tx_hash",
        "error_reason",
    }
)

TIMESTAMP_FIELDS = frozenset(
    {
        "burn_confirmed_at",
        "attestation_received_at",
        "completed_at",
        "cancelled_at",
        "failed_at",
    }
)


def insert_transfer(
    conn,
    *,
    reference: str,
    user_id: UUID,
    source_wallet_id: UUID,
    source_chain: str,
    destination_chain: str,
    destination_address: str,
    amount: Decimal,
    transfer_type: str,
) -> dict[str, Any]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO app.cctp_transfers (
              reference, user_id, source_wallet_id, source_chain, destination_chain,
              destination_address, amount, transfer_type, state
            )
            VALUES (%s, %s::uuid, %s::uuid, %s, %s, %s, %s, %s, 'INITIATED')
            RETURNING {_COLUMNS}
            """,
            (
                reference,
                str(user_id),
                str(source_wallet_id),
                source_chain,
                destination_chain,
                destination_address,
                amount,
                transfer_type,
            ),
        )
        return dict(cur.fetchone())


def get_by_id(conn, transfer_id: UUID, *, for_update: bool = False) -> Optional[dict[str, Any]]:
    lock = "FOR UPDATE" if for_update else ""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.cctp_transfers WHERE id = %s::uuid {lock}",
            (str(transfer_id),),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_by_reference(conn, reference: str, *, user_id: Optional[UUID] = None) -> Optional[dict[str, Any]]:
    sql = f"SELECT {_COLUMNS} FROM app.cctp_transfers WHERE reference = %s"
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
            FROM app.cctp_transfers
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
    new_state: str,
    fields: Optional[dict[str, Any]] = None,
    touch: Iterable[str] = (),
) -> bool:
    """
    Move to `new_state` only from a state that allows it. Returns False when
    the row has already moved on (replayed callback, concurrent cancel).
    """
    fields = {k: v for k, v in (fields or {}).items() if v is not None}
    unknown = set(fields) - UPDATABLE_FIELDS
    bad_ts = set(touch) - TIMESTAMP_FIELDS
    if unknown or bad_ts:
        raise ValueError(f"Unknown CCTP columns: {sorted(unknown | bad_ts)}")

    sets = ["state = %s", "updated_at = now()"]
    params: list[Any] = [new_state]
    for name, value in fields.items():
        sets.append(f"{name} = %s")
        params.append(value)
    for name in touch:
        sets.append(f"{name} = COALESCE({name}, now())")

    params.extend([str(transfer_id), list(sources_for(new_state))])
    with conn.cursor() as cur:
        cur.execute(
            f"""
            UPDATE app.cctp_transfers
            SET {", ".join(sets)}
            WHERE id = %s::uuid
              AND state = ANY(%s)
            """,
            tuple(params),
        )
        return cur.rowcount == 1


def record_mint_leg(conn, *, transfer_id: UUID, mint_tx_id: str) -> bool:
    """Attach the mint leg once; a second submission attempt finds it already set."""
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.cctp_transfers
            SET mint_tx_id = %s,
                updated_at = now()
            WHERE id = %s::uuid
              AND state = 'ATTESTATION_RECEIVED'
              AND mint_tx_id IS NULL
            """,
            (mint_tx_id, str(transfer_id)),
        )
        return cur.rowcount == 1


def record_late_burn(conn, *, transfer_id: UUID, burn_tx_hash: str) -> bool:
    """
    Keep the hash of a burn that confirmed after the record was cancelled.
    Returns False when it was already recorded.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.cctp_transfers
            SET burn_tx_hash = %s,
                updated_at = now()
            WHERE id = %s::uuid
              AND state = 'CANCELLED'
              AND burn_tx_hash IS NULL
            """,
            (burn_tx_hash, str(transfer_id)),
        )
        return cur.rowcount == 1


def list_awaiting_attestation(conn, *, limit: int) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.cctp_transfers
            WHERE state = 'BURN_CONFIRMED'
              AND burn_tx_hash IS NOT NULL
            ORDER BY burn_confirmed_at ASC NULLS FIRST
            LIMIT %s
            FOR UPDATE SKIP LOCKED
            """,
            (limit,),
        )
        return [dict(r) for r in cur.fetchall()]
