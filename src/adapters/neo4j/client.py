import json
from typing import Any, Dict, List, Optional, Sequence

from neo4j import Driver, GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from src.domain.errors import PublishError
from src.domain.models.events import StreamEvent
from src.utils.logging import configure_logging


# MERGE on outbox_id keeps redelivered events from duplicating nodes.
UPSERT_EVENTS_CYPHER = """
UNWIND $events AS ev
MERGE (a:Aggregate {type: ev.aggregate_type, id: ev.aggregate_id})
MERGE (e:StreamEvent {outbox_id: ev.outbox_id})
SET e.event_type = ev.event_type,
    e.data = ev.data,
    e.headers = ev.headers
MERGE (e)-[:ABOUT]->(a)
"""


def _event_params(event: StreamEvent) -> Dict[str, Any]:
    # node properties must be primitives, so nested bodies travel as JSON text
    return {
        "outbox_id": event.outbox_id,
        "event_type": event.event_type,
        "aggregate_type": event.aggregate_type,
        "aggregate_id": event.aggregate_id,
        "data": json.dumps(event.data, separators=(",", ":"), sort_keys=True),
        "headers": json.dumps(event.headers, separators=(",", ":"), sort_keys=True),
    }


class GraphEventPublisher:
    """Project outbox events into Neo4j as StreamEvent nodes attached to their aggregate."""

    supports_bulk = True

    def __init__(self, driver: Driver, database: Optional[str] = None):
        self._driver = driver
        self.database = database
        self.log = configure_logging("graph_event_publisher")

    @classmethod
    def connect(cls, uri: str, user: str, password: str) -> "GraphEventPublisher":
        return cls(GraphDatabase.driver(uri, auth=(user, password)))

    def close(self) -> None:
        self._driver.close()

    def _write(self, events: List[Dict[str, Any]]) -> None:
        try:
            with self._driver.session(database=self.database) as session:
                session.execute_write(lambda tx: tx.run(UPSERT_EVENTS_CYPHER, events=events).consume())
        except (Neo4jError, DriverError) as exc:
            raise PublishError(f"neo4j write failed: {exc}") from exc

    def publish(self, event: StreamEvent) -> None:
        self._write([_event_params(event)])
        self.log.debug("Projected event", extra={"outbox_id": event.outbox_id, "event_type": event.event_type})

    def publish_many(self, events: Sequence[StreamEvent]) -> None:
        if not events:
            return
        self._write([_event_params(event) for event in events])
        self.log.debug("Projected event batch", extra={"count": len(events)})
