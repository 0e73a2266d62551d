import logging
import os

import pytest

from src.domain.backoff import BackoffPolicy
from src.pipelines.registry import HandlerRegistry
from src.pipelines.todo_pipeline import TodoPipeline
from src.workers.dispatcher import OutboxDispatcher
from tests.fakes import FakeClock, InMemoryOutboxStore, RecordingPublisher


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryOutboxStore(clock, max_attempts=10)


@pytest.fixture
def registry():
    registry = HandlerRegistry()
    TodoPipeline().register(registry)
    return registry


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def make_dispatcher(store, registry, clock):
    # propagating logger so caplog sees dispatcher records
    log = logging.getLogger("tests.outbox_dispatcher")

    def factory(publisher, **overrides):
        options = {
            "backoff": BackoffPolicy(base_seconds=1.0, max_delay_seconds=600.0),
            "clock": clock,
            "batch_size": 100,
            "lease_seconds": 30,
            "poll_interval_seconds": 2.0,
            "max_attempts": store.max_attempts,
            "log": log,
        }
        options.update(overrides)
        return OutboxDispatcher(store, registry, publisher, **options)

    return factory


@pytest.fixture(scope="session")
def pg_pool():
    dsn = os.environ.get("OUTBOX_TEST_DSN")
    if not dsn:
        pytest.skip("OUTBOX_TEST_DSN not set")

    from src.adapters.postgres.db import PostgresPool
    from src.adapters.postgres.schema import ensure_schema

    pool = PostgresPool(dsn, maxconn=8)
    ensure_schema(pool, include_todos=True)
    yield pool
    pool.close()


@pytest.fixture
def clean_pg(pg_pool):
    from src.adapters.postgres.db import execute

    with pg_pool.connection() as conn:
        execute(conn, "TRUNCATE outbox, todos RESTART IDENTITY;")
    return pg_pool
