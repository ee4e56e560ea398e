from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response

from app.providers.circle.config import circle_environment, missing_config
from db import get_conn
from services.metrics import render_prometheus

router = APIRouter(tags=["ops"])

MIGRATION_REVISION = "0003_cctp_and_alerts"


def _check_db() -> tuple[bool, str | None]:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _check_migrations() -> bool:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('app.alembic_version');")
                if not cur.fetchone()[0]:
                    return False
                cur.execute("SELECT version_num FROM app.alembic_version LIMIT 1;")
                row = cur.fetchone()
                return bool(row and row[0] == MIGRATION_REVISION)
    except Exception:
        return False


@router.get("/health")
def health():
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "circle_environment": circle_environment(),
    }


@router.get("/readyz")
def readyz():
    db_ok, db_error = _check_db()
    migrations_ok = _check_migrations()
    missing = missing_config()
    return {
        "ready": bool(db_ok and migrations_ok and not missing),
        "db_ok": db_ok,
        "db_error": db_error,
        "migrations_ok": migrations_ok,
        "migration_revision": MIGRATION_REVISION,
        "missing_config": missing,
    }


@router.get("/metrics")
def metrics():
    return Response(content=render_prometheus(), media_type="text/plain; version=0.0.4")
