# app/wallets/repository.py
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import RealDictCursor


def get_wallet_for_user(conn, wallet_id: UUID, user_id: UUID) -> Optional[dict[str, Any]]:
    """Custodial wallet owned by the caller; None when it does not exist or belongs to someone else."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, user_id, provider_wallet_id, blockchain, address
            FROM app.wallets
            WHERE id = %s::uuid
              AND user_id = %s::uuid
            """,
            (str(wallet_id), str(user_id)),
        )
        row = cur.fetchone()
        return dict(row) if row else None
