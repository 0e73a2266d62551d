from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from src.domain.errors import StorageError


def rollback(conn) -> bool:
    """Roll back the open transaction. False means the connection is broken and must not be reused."""
    if conn.closed:
        return False
    try:
        conn.rollback()
    except psycopg2.Error:
        return False
    return True


class PostgresPool:
    """Connection pool shared by business writers and the dispatcher thread."""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 5):
        try:
            self._pool = ThreadedConnectionPool(minconn, maxconn, dsn=dsn, cursor_factory=RealDictCursor)
        except psycopg2.Error as exc:
            raise StorageError(f"cannot connect to outbox database: {exc}") from exc

    @contextmanager
    def connection(self) -> Iterator[psycopg2.extensions.connection]:
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as exc:
            raise StorageError(f"cannot get outbox database connection: {exc}") from exc
        broken = False
        try:
            yield conn
        finally:
            # never hand a connection back with a transaction still open
            if conn.closed:
                broken = True
            elif conn.status != psycopg2.extensions.STATUS_READY:
                broken = not rollback(conn)
            self._pool.putconn(conn, close=broken)

    @contextmanager
    def transaction(self) -> Iterator[psycopg2.extensions.connection]:
        """Business transaction boundary: commit on success, roll back on any exception.

        The yielded connection is the transaction handle handed to ``OutboxWriter``
        so the outbox row commits or rolls back together with the business write.
        """
        with self.connection() as conn:
            conn.autocommit = False
            try:
                yield conn
            except BaseException:
                rollback(conn)
                raise
            else:
                try:
                    conn.commit()
                except psycopg2.Error as exc:
                    raise StorageError(f"commit failed: {exc}") from exc

    def close(self) -> None:
        self._pool.closeall()


def fetch_one(conn, query: str, params: Optional[tuple] = None):
    with conn.cursor() as cur:
        cur.execute(query, params or ())
        return cur.fetchone()


def fetch_all(conn, query: str, params: Optional[tuple] = None):
    with conn.cursor() as cur:
        cur.execute(query, params or ())
        return cur.fetchall()


def execute(conn, query: str, params: Optional[tuple] = None) -> int:
    with conn.cursor() as cur:
        cur.execute(query, params or ())
        rowcount = cur.rowcount
    conn.commit()
    return rowcount
