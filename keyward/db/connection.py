
"""
Pooled PostgreSQL connections behind ``PostgresStorage``.

create_storage() builds a PostgresStorage per namespace (``api-keys``,
``roles``, ``security``). Unless a connection factory is injected, each of
them borrows from the one process-wide ThreadedConnectionPool here, sized by
KEYWARD_DB_POOL_MIN/MAX. A storage operation holds a connection for a single
transaction: commit when the block exits cleanly, roll back otherwise.

A pool that cannot be created surfaces as ConnectionError; the storage layer
reports that as a failed result carrying StorageUnavailableError.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager

import psycopg2
import psycopg2.pool

from keyward.config import get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def get_pool(
    minconn: int | None = None, maxconn: int | None = None
) -> psycopg2.pool.ThreadedConnectionPool:
    """Get or create the connection pool. Sizes default to the db settings."""
    global _pool
    if _pool is not None and not _pool.closed:
        return _pool

    with _pool_lock:
        if _pool is not None and not _pool.closed:
            return _pool

        cfg = get_config().db
        minconn = cfg.pool_min if minconn is None else minconn
        maxconn = cfg.pool_max if maxconn is None else maxconn
        logger.info(
            "Creating connection pool: %s@%s:%s/%s (min=%d, max=%d)",
            cfg.user,
            cfg.host,
            cfg.port,
            cfg.name,
            minconn,
            maxconn,
        )
        try:
            _pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                **cfg.dict,
            )
        except psycopg2.OperationalError as e:
            raise ConnectionError(
                f"Cannot connect to PostgreSQL at {cfg.host}:{cfg.port}/{cfg.name}: {e}\n"
                f"Check KEYWARD_DB_* environment variables and ensure PostgreSQL is running."
            ) from e
        return _pool


@contextmanager
def get_connection() -> Generator[psycopg2.extensions.connection, None, None]:
    """Borrow a pooled connection; commit on success, roll back on error."""
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    """Close all connections in the pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
