import json
from typing import Any, Dict, Optional, Union

from src.adapters.queue.outbox import OutboxStore
from src.domain.models.events import OutboxMessage


SCHEMA_VERSION = "v1"


class OutboxWriter:
    """Stage events in the outbox through the business write's own transaction.

    Usage::

        with pool.transaction() as tx:
            repo.insert(tx, todo)
            writer.emit(tx, "todo", todo.uuid, "todo.created", todo.to_payload())

    Any exception inside the block rolls back both writes; nothing is staged
    unless the business change commits.
    """

    def __init__(self, store: OutboxStore, source: str = "api", schema_version: str = SCHEMA_VERSION):
        self.store = store
        self.default_headers = {"schema": schema_version, "source": source}

    def insert(self, tx, message: OutboxMessage) -> int:
        return self.store.insert(tx, message)

    def emit(
        self,
        tx,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        body: Union[bytes, Dict[str, Any]],
        headers: Optional[Dict[str, str]] = None,
    ) -> int:
        if isinstance(body, bytes):
            payload = body
        else:
            payload = json.dumps(body, separators=(",", ":"), default=str).encode("utf-8")
        message = OutboxMessage(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
            headers={**self.default_headers, **(headers or {})},
        )
        return self.insert(tx, message)
