"""End-to-end store behaviour against a live Postgres; skipped unless OUTBOX_TEST_DSN is set."""

import threading
from datetime import timedelta

import pytest

from src.adapters.postgres.db import fetch_one
from src.adapters.queue.outbox import OutboxStore
from src.adapters.queue.writer import OutboxWriter
from src.domain.backoff import BackoffPolicy
from src.domain.models.events import OutboxStatus
from src.usecases.todo import TodoService
from tests.fakes import FakeClock


pytestmark = pytest.mark.postgres


@pytest.fixture
def pg_clock():
    # rows are stamped from this clock, so start it at the real current time
    from src.utils.clock import SYSTEM_CLOCK

    return FakeClock(SYSTEM_CLOCK.now())


def count_rows(pool, table):
    with pool.connection() as conn:
        return fetch_one(conn, f"SELECT count(*) AS n FROM {table};")["n"]


def test_rolled_back_business_write_leaves_no_outbox_row(clean_pg, pg_clock):
    writer = OutboxWriter(OutboxStore(clean_pg, clock=pg_clock))

    with pytest.raises(RuntimeError):
        with clean_pg.transaction() as tx:
            writer.emit(tx, "todo", "abc", "todo.created", {"id": "abc"})
            raise RuntimeError("business validation failed")

    assert count_rows(clean_pg, "outbox") == 0


def test_todo_service_commits_todo_and_event_together(clean_pg, pg_clock):
    store = OutboxStore(clean_pg, clock=pg_clock)
    service = TodoService(clean_pg, OutboxWriter(store))

    todo = service.create_todo("write tests")

    assert count_rows(clean_pg, "todos") == 1
    (event,) = store.claim_batch(10, 30)
    assert event.aggregate_id == todo.uuid
    assert event.event_type == "todo.created"
    assert event.headers == {"schema": "v1", "source": "api"}


def test_lifecycle_retry_then_publish(clean_pg, pg_clock):
    store = OutboxStore(clean_pg, clock=pg_clock)
    backoff = BackoffPolicy(base_seconds=1.0)
    with clean_pg.transaction() as tx:
        row_id = OutboxWriter(store).emit(tx, "todo", "abc", "todo.created", {"id": "abc"})

    (claimed,) = store.claim_batch(10, 30)
    assert claimed.id == row_id and claimed.attempts == 0
    assert claimed.locked_until == pg_clock.now() + timedelta(seconds=30)

    next_at = backoff.next_available_at(claimed.attempts + 1, pg_clock.now())
    assert store.mark_failed(row_id, next_at, "boom", lock_token=claimed.lock_token)
    row = store.get(row_id)
    assert (row.attempts, row.available_at, row.lock_token) == (1, next_at, None)

    assert store.claim_batch(10, 30) == []
    pg_clock.advance(1)
    (reclaimed,) = store.claim_batch(10, 30)
    assert reclaimed.attempts == 1

    assert store.mark_published(row_id) is True
    assert store.mark_published(row_id) is False
    row = store.get(row_id)
    assert row.status == OutboxStatus.PUBLISHED and row.attempts == 1

    pg_clock.advance(3600)
    assert store.claim_batch(10, 30) == []


def test_available_at_never_moves_backwards(clean_pg, pg_clock):
    store = OutboxStore(clean_pg, clock=pg_clock)
    with clean_pg.transaction() as tx:
        row_id = OutboxWriter(store).emit(tx, "todo", "abc", "todo.created", {})

    later = pg_clock.now() + timedelta(seconds=60)
    store.mark_failed(row_id, later, "first")
    store.mark_failed(row_id, pg_clock.now(), "second")

    assert store.get(row_id).available_at == later


def test_concurrent_claims_never_overlap(clean_pg, pg_clock):
    store = OutboxStore(clean_pg, clock=pg_clock)
    with clean_pg.transaction() as tx:
        writer = OutboxWriter(store)
        inserted = [writer.emit(tx, "todo", str(i), "todo.created", {"id": str(i)}) for i in range(50)]

    results = {}
    barrier = threading.Barrier(4)

    def claim(worker):
        barrier.wait()
        results[worker] = [e.id for e in store.claim_batch(20, 30)]

    threads = [threading.Thread(target=claim, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    claimed = [row_id for ids in results.values() for row_id in ids]
    assert len(claimed) == len(set(claimed))
    # leases are still live, so a further claim only sees rows nobody took
    leftover = [e.id for e in store.claim_batch(100, 30)]
    assert sorted(claimed + leftover) == inserted
    for ids in results.values():
        assert ids == sorted(ids)
