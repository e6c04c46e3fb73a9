
# db.py
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

_pool: ThreadedConnectionPool | None = None


def init_pool() -> ThreadedConnectionPool:
    """
    Create the shared pool on first use.

    Request handlers, background effect tasks and the reconcile thread all
    draw from it, hence the thread-safe pool.
    """
    global _pool
    if _pool is not None:
        return _pool
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set.")

    psycopg2.extras.register_uuid()
    _pool = ThreadedConnectionPool(
        minconn=settings.DB_POOL_MIN,
        maxconn=settings.DB_POOL_MAX,
        dsn=settings.DATABASE_URL,
        connect_timeout=5,
    )
    return _pool


def close_pool() -> None:
    global _pool
    if _pool:
        _pool.closeall()
        _pool = None


def _prepare_session(conn) -> None:
    timeout = f"{int(settings.DB_STATEMENT_TIMEOUT_MS)}ms"
    with conn.cursor() as cur:
        cur.execute("SET statement_timeout = %s;", (timeout,))
        cur.execute("SET idle_in_transaction_session_timeout = %s;", (timeout,))
        cur.execute("SET application_name = 'vibing_purchases';")


@contextmanager
def get_conn():
    """
    One transaction per block: commit on success, rollback on any error.
    A guarded status update and its audit row share the same block.
    """
    pool = init_pool()
    conn = pool.getconn()
    try:
        _prepare_session(conn)
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)
