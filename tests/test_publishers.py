import json
from unittest import mock

import fakeredis
import pytest
import redis
from neo4j.exceptions import ServiceUnavailable

from src.adapters.neo4j.client import UPSERT_EVENTS_CYPHER, GraphEventPublisher
from src.adapters.redis.stream import RedisStreamPublisher
from src.domain.errors import PublishError
from src.domain.models.events import StreamEvent


def stream_event(outbox_id=1):
    return StreamEvent(
        event_type="todo.created",
        aggregate_type="todo",
        aggregate_id="abc",
        outbox_id=outbox_id,
        data={"id": "abc", "description": "tea"},
        headers={"schema": "v1"},
    )


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


def test_redis_publish_appends_one_entry(redis_client):
    publisher = RedisStreamPublisher(redis_client, stream="todo:stream")

    publisher.publish(stream_event())

    ((_, fields),) = redis_client.xrange("todo:stream")
    assert json.loads(fields["data"]) == {"id": "abc", "description": "tea"}
    assert fields["type"] == "todo.created"
    assert fields["outbox_id"] == "1"
    assert json.loads(fields["headers"]) == {"schema": "v1"}


def test_redis_publish_many_keeps_order(redis_client):
    publisher = RedisStreamPublisher(redis_client)

    publisher.publish_many([stream_event(n) for n in (3, 4, 5)])

    assert [fields["outbox_id"] for _, fields in redis_client.xrange("todo:stream")] == ["3", "4", "5"]
    assert publisher.supports_bulk is True


def test_redis_errors_become_publish_errors():
    client = mock.Mock()
    client.xadd.side_effect = redis.ConnectionError("Connection refused")

    with pytest.raises(PublishError):
        RedisStreamPublisher(client).publish(stream_event())


def make_driver():
    driver = mock.MagicMock()
    session = driver.session.return_value.__enter__.return_value
    return driver, session


def test_graph_publish_merges_by_outbox_id():
    driver, session = make_driver()
    tx = mock.Mock()
    session.execute_write.side_effect = lambda work: work(tx)

    GraphEventPublisher(driver).publish_many([stream_event(1), stream_event(2)])

    cypher = tx.run.call_args.args[0]
    events = tx.run.call_args.kwargs["events"]
    assert cypher == UPSERT_EVENTS_CYPHER
    assert [e["outbox_id"] for e in events] == [1, 2]
    assert json.loads(events[0]["data"]) == {"id": "abc", "description": "tea"}


def test_graph_driver_errors_become_publish_errors():
    driver, session = make_driver()
    session.execute_write.side_effect = ServiceUnavailable("no routing servers")

    with pytest.raises(PublishError):
        GraphEventPublisher(driver).publish(stream_event())
