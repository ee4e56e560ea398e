# db.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock

import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

logger = logging.getLogger("chainpay.db")

_pool: ThreadedConnectionPool | None = None
_pool_lock = Lock()


def init_pool() -> ThreadedConnectionPool:
    """
    Lazily create the shared connection pool.

    Request threads and the fee retry worker draw from the same pool, so it
    has to be the thread-safe variant.
    """
    global _pool
    with _pool_lock:
        if _pool is None:
            psycopg2.extras.register_uuid()
            _pool = ThreadedConnectionPool(
                minconn=settings.DB_POOL_MIN,
                maxconn=settings.DB_POOL_MAX,
                dsn=settings.DATABASE_URL,
                connect_timeout=5,
                application_name="chainpay_api",
                options=(
                    f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"
                    f" -c idle_in_transaction_session_timeout={settings.DB_IDLE_TX_TIMEOUT_MS}"
                ),
            )
            logger.info("db pool ready min=%s max=%s", settings.DB_POOL_MIN, settings.DB_POOL_MAX)
        return _pool


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None


@contextmanager
def get_conn():
    """
    One transaction per block: commit on success, rollback on error.
    Row locks taken inside (FOR UPDATE / SKIP LOCKED) are held until exit.
    """
    pool = init_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


@contextmanager
def savepoint(conn, name: str):
    """
    Isolate one unit of work inside a batch transaction: a failure rolls
    back to here instead of aborting the writes of earlier units.
    """
    with conn.cursor() as cur:
        cur.execute(f"SAVEPOINT {name}")
    try:
        yield
    except Exception:
        with conn.cursor() as cur:
            cur.execute(f"ROLLBACK TO SAVEPOINT {name}")
        raise
    with conn.cursor() as cur:
        cur.execute(f"RELEASE SAVEPOINT {name}")
