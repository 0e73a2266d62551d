import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import psycopg2
from psycopg2.extras import Json

from src.adapters.postgres import db as pg
from src.domain.errors import MarkOutcomeError, StorageError
from src.domain.models.events import OutboxEvent, OutboxMessage, OutboxStatus
from src.utils.clock import SYSTEM_CLOCK, Clock


EVENT_COLUMNS = """
    id, aggregate_type, aggregate_id, event_type, payload, headers, status,
    attempts, available_at, lock_token, locked_until, last_error, published_at
"""

INSERT_SQL = """
INSERT INTO outbox (aggregate_type, aggregate_id, event_type, payload, headers, status, attempts, available_at)
VALUES (%s, %s, %s, %s, %s, 'pending', 0, %s)
RETURNING id;
"""

# Lock and read back in one transaction: SKIP LOCKED keeps concurrent claimers
# off each other's candidate rows, the token read-back returns exactly our rows.
CLAIM_SQL = """
UPDATE outbox
SET lock_token = %s, locked_until = %s
WHERE id IN (
    SELECT id
    FROM outbox
    WHERE {where_clause}
    ORDER BY id
    LIMIT %s
    FOR UPDATE SKIP LOCKED
);
"""

READ_CLAIMED_SQL = f"""
SELECT {EVENT_COLUMNS}
FROM outbox
WHERE lock_token = %s
ORDER BY id;
"""

MARK_PUBLISHED_SQL = """
UPDATE outbox
SET status = 'published', published_at = %s, lock_token = NULL, locked_until = NULL
WHERE id = %s AND status = 'pending';
"""

MARK_FAILED_SQL = """
UPDATE outbox
SET status = 'pending',
    attempts = attempts + 1,
    available_at = GREATEST(available_at, %s),
    last_error = %s,
    lock_token = NULL,
    locked_until = NULL
WHERE {where_clause};
"""


def _row_to_event(row: Dict) -> OutboxEvent:
    payload = row["payload"]
    return OutboxEvent(
        id=row["id"],
        aggregate_type=row["aggregate_type"],
        aggregate_id=row["aggregate_id"],
        event_type=row["event_type"],
        payload=bytes(payload) if payload is not None else b"",
        headers=dict(row.get("headers") or {}),
        status=row["status"],
        attempts=row["attempts"],
        available_at=row.get("available_at"),
        lock_token=row.get("lock_token"),
        locked_until=row.get("locked_until"),
        last_error=row.get("last_error"),
        published_at=row.get("published_at"),
    )


def truncate_error(detail: str, max_length: int) -> str:
    if len(detail) > max_length:
        return detail[:max_length]
    return detail


class OutboxStore:
    """Durable outbox table with lease-based claiming over Postgres."""

    def __init__(
        self,
        pool: pg.PostgresPool,
        clock: Clock = SYSTEM_CLOCK,
        max_attempts: Optional[int] = None,
        error_max_length: int = 2000,
    ):
        self.pool = pool
        self.clock = clock
        self.max_attempts = max_attempts
        self.error_max_length = error_max_length

    def insert(self, tx, message: OutboxMessage) -> int:
        """Stage ``message`` using the caller's open transaction; the caller commits or rolls back."""
        params = (
            message.aggregate_type,
            message.aggregate_id,
            message.event_type,
            psycopg2.Binary(message.payload),
            Json(message.headers) if message.headers else None,
            self.clock.now(),
        )
        try:
            with tx.cursor() as cur:
                cur.execute(INSERT_SQL, params)
                row = cur.fetchone()
        except psycopg2.Error as exc:
            raise StorageError(f"outbox insert failed: {exc}") from exc
        return row["id"] if isinstance(row, dict) else row[0]

    def claim_batch(self, limit: int, lease_seconds: float) -> List[OutboxEvent]:
        """Lease up to ``limit`` due rows, oldest id first. An empty list means nothing was due or another instance won."""
        if limit <= 0:
            return []

        now = self.clock.now()
        token = str(uuid.uuid4())
        locked_until = now + timedelta(seconds=lease_seconds)

        filters = [
            "status = 'pending'",
            "available_at <= %s",
            "(locked_until IS NULL OR locked_until < %s)",
        ]
        params: List = [token, locked_until, now, now]
        if self.max_attempts is not None:
            filters.append("attempts < %s")
            params.append(self.max_attempts)
        params.append(limit)
        sql = CLAIM_SQL.format(where_clause=" AND ".join(filters))

        try:
            with self.pool.connection() as conn:
                try:
                    with conn.cursor() as cur:
                        cur.execute(sql, params)
                        cur.execute(READ_CLAIMED_SQL, (token,))
                        rows = cur.fetchall()
                    conn.commit()
                except psycopg2.Error:
                    pg.rollback(conn)
                    raise
        except psycopg2.Error as exc:
            raise StorageError(f"outbox claim failed: {exc}") from exc
        return [_row_to_event(row) for row in rows]

    def _execute_mark(self, event_id: int, sql: str, params: tuple, what: str) -> int:
        try:
            with self.pool.connection() as conn:
                try:
                    return pg.execute(conn, sql, params)
                except psycopg2.Error:
                    pg.rollback(conn)
                    raise
        except (psycopg2.Error, StorageError) as exc:
            raise MarkOutcomeError(event_id, f"mark {what} failed for outbox row {event_id}: {exc}") from exc

    def _read(self, reader, sql: str, params: tuple):
        try:
            with self.pool.connection() as conn:
                try:
                    return reader(conn, sql, params)
                except psycopg2.Error:
                    pg.rollback(conn)
                    raise
        except psycopg2.Error as exc:
            raise StorageError(f"outbox read failed: {exc}") from exc

    def mark_published(self, event_id: int) -> bool:
        """Move a row to the terminal published state. Returns False when it was already terminal."""
        updated = self._execute_mark(event_id, MARK_PUBLISHED_SQL, (self.clock.now(), event_id), "published")
        return updated == 1

    def mark_failed(
        self,
        event_id: int,
        next_available_at: datetime,
        error_detail: str,
        lock_token: Optional[str] = None,
    ) -> bool:
        """Record a failed attempt and defer the row. With ``lock_token`` the update only lands while that lease is held."""
        filters = ["id = %s", "status = 'pending'"]
        params: List = [next_available_at, truncate_error(error_detail, self.error_max_length), event_id]
        if lock_token is not None:
            filters.append("lock_token = %s")
            params.append(lock_token)
        sql = MARK_FAILED_SQL.format(where_clause=" AND ".join(filters))

        updated = self._execute_mark(event_id, sql, tuple(params), "failed")
        return updated == 1

    def get(self, event_id: int) -> Optional[OutboxEvent]:
        sql = f"SELECT {EVENT_COLUMNS} FROM outbox WHERE id = %s;"
        row = self._read(pg.fetch_one, sql, (event_id,))
        return _row_to_event(row) if row else None

    def fetch_exhausted(self, limit: int = 100) -> List[OutboxEvent]:
        """Pending rows that reached ``max_attempts`` and are no longer claimed, for an operator sweep."""
        if self.max_attempts is None:
            return []
        sql = f"""
        SELECT {EVENT_COLUMNS}
        FROM outbox
        WHERE status = %s AND attempts >= %s
        ORDER BY id
        LIMIT %s;
        """
        rows = self._read(pg.fetch_all, sql, (OutboxStatus.PENDING, self.max_attempts, limit))
        return [_row_to_event(row) for row in rows]
