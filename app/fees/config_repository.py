# app/fees/config_repository.py
from __future__ import annotations

from typing import Any, Optional

from psycopg2.extras import Json

__all__ = ["get_system_config", "insert_system_config_if_missing", "upsert_system_config"]


def get_system_config(conn, key: str) -> Optional[dict[str, Any]]:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT value
            FROM app.system_config
            WHERE key = %s
            """,
            (key,),
        )
        row = cur.fetchone()
        return dict(row[0]) if row and row[0] is not None else None


def insert_system_config_if_missing(conn, key: str, value: dict[str, Any]) -> dict[str, Any]:
    """Create the row once; concurrent initializers converge on the first write."""
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.system_config (key, value)
            VALUES (%s, %s::jsonb)
            ON CONFLICT (key) DO NOTHING
            """,
            (key, Json(value)),
        )
    return get_system_config(conn, key) or value


def upsert_system_config(conn, key: str, value: dict[str, Any], *, updated_by: Optional[str] = None) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.system_config (key, value, updated_by, updated_at)
            VALUES (%s, %s::jsonb, %s, now())
            ON CONFLICT (key) DO UPDATE
              SET value = EXCLUDED.value,
                  updated_by = EXCLUDED.updated_by,
                  updated_at = now()
            """,
            (key, Json(value), updated_by),
        )
