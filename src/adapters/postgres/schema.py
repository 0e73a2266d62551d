from src.adapters.postgres.db import PostgresPool


OUTBOX_DDL = """
CREATE TABLE IF NOT EXISTS outbox (
    id             BIGSERIAL PRIMARY KEY,
    aggregate_type VARCHAR(64)  NOT NULL,
    aggregate_id   VARCHAR(64)  NOT NULL,
    event_type     VARCHAR(128) NOT NULL,
    payload        BYTEA        NOT NULL,
    headers        JSONB,
    status         VARCHAR(16)  NOT NULL DEFAULT 'pending'
                   CHECK (status IN ('pending', 'published')),
    attempts       INTEGER      NOT NULL DEFAULT 0,
    available_at   TIMESTAMPTZ  NOT NULL DEFAULT now(),
    lock_token     VARCHAR(36),
    locked_until   TIMESTAMPTZ,
    last_error     TEXT,
    created_at     TIMESTAMPTZ  NOT NULL DEFAULT now(),
    published_at   TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS ix_outbox_due ON outbox (status, available_at, id);
CREATE INDEX IF NOT EXISTS ix_outbox_lock_token ON outbox (lock_token);
CREATE INDEX IF NOT EXISTS ix_outbox_aggregate ON outbox (aggregate_type, aggregate_id);
"""

# business table written by the example producer in src/usecases/todo.py
TODOS_DDL = """
CREATE TABLE IF NOT EXISTS todos (
    id          BIGSERIAL PRIMARY KEY,
    uuid        VARCHAR(36)  NOT NULL UNIQUE,
    description VARCHAR(255) NOT NULL,
    due_date    TIMESTAMPTZ,
    file_id     VARCHAR(255),
    created_at  TIMESTAMPTZ  NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
);
"""


def ensure_schema(pool: PostgresPool, include_todos: bool = False) -> None:
    """Create the outbox table and its indexes if they do not exist yet."""
    with pool.transaction() as conn:
        with conn.cursor() as cur:
            cur.execute(OUTBOX_DDL)
            if include_todos:
                cur.execute(TODOS_DDL)
