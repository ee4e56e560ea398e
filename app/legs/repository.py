# app/legs/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor


# provider transaction id -> (kind, owning record)
LEG_KINDS = ("TRANSFER", "FEE", "CCTP_BURN", "CCTP_MINT")


def insert_leg(conn, *, provider_tx_id: str, kind: str, record_id: UUID) -> None:
    if kind not in LEG_KINDS:
        raise ValueError(f"Unknown leg kind: {kind}")
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.provider_legs (provider_tx_id, kind, record_id)
            VALUES (%s, %s, %s::uuid)
            ON CONFLICT (provider_tx_id) DO NOTHING
            """,
            (provider_tx_id, kind, str(record_id)),
        )


def resolve_leg(conn, provider_tx_id: str) -> Optional[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT provider_tx_id, kind, record_id
            FROM app.provider_legs
            WHERE provider_tx_id = %s
            """,
            (provider_tx_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None
