import json

import pytest

from src.adapters.queue.writer import OutboxWriter
from src.domain.models.events import OutboxStatus


def test_emit_stages_json_payload_with_default_headers(store):
    writer = OutboxWriter(store, source="graphql")

    with store.transaction() as tx:
        writer.emit(tx, "todo", "abc", "todo.created", {"id": "abc", "description": "x"}, headers={"schema": "v2"})

    (row,) = store.rows.values()
    assert json.loads(row.payload) == {"id": "abc", "description": "x"}
    assert row.headers == {"schema": "v2", "source": "graphql"}
    assert (row.status, row.attempts) == (OutboxStatus.PENDING, 0)
    assert row.available_at == store.clock.now()


def test_emit_passes_bytes_through(store):
    with store.transaction() as tx:
        OutboxWriter(store).emit(tx, "todo", "abc", "todo.deleted", b'{"id":"abc"}')

    (row,) = store.rows.values()
    assert row.payload == b'{"id":"abc"}'
    assert row.headers == {"schema": "v1", "source": "api"}


def test_nothing_is_staged_when_business_transaction_rolls_back(store):
    writer = OutboxWriter(store)

    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            writer.emit(tx, "todo", "abc", "todo.created", {"id": "abc"})
            raise RuntimeError("todo insert violated a constraint")

    assert store.rows == {}
