import json
from typing import Any, Dict

from src.domain.errors import EventDecodeError
from src.domain.models.events import OutboxEvent, StreamEvent
from src.domain.models.todo import TodoItem
from src.pipelines.registry import HandlerRegistry


TODO_CREATED = "todo.created"
TODO_UPDATED = "todo.updated"
TODO_DELETED = "todo.deleted"


def _decode_json(event: OutboxEvent) -> Dict[str, Any]:
    try:
        body = json.loads(event.payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise EventDecodeError(f"outbox row {event.id}: payload is not valid JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise EventDecodeError(f"outbox row {event.id}: expected a JSON object, got {type(body).__name__}")
    return body


class TodoPipeline:
    """Turn ``todo.*`` outbox rows into stream events."""

    def decode_todo(self, event: OutboxEvent) -> TodoItem:
        body = _decode_json(event)
        try:
            return TodoItem.from_payload(body)
        except (KeyError, TypeError, ValueError) as exc:
            raise EventDecodeError(f"outbox row {event.id}: malformed todo payload: {exc!r}") from exc

    def _stream_event(self, event: OutboxEvent, data: Dict[str, Any]) -> StreamEvent:
        return StreamEvent(
            event_type=event.event_type,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            outbox_id=event.id,
            data=data,
            headers=dict(event.headers),
        )

    def handle_upsert(self, event: OutboxEvent) -> StreamEvent:
        todo = self.decode_todo(event)
        return self._stream_event(event, todo.to_payload())

    def handle_deleted(self, event: OutboxEvent) -> StreamEvent:
        # deletes carry only the public id; fall back to the aggregate id
        body = _decode_json(event) if event.payload else {}
        return self._stream_event(event, {"id": body.get("id", event.aggregate_id)})

    def register(self, registry: HandlerRegistry) -> None:
        registry.register(TODO_CREATED, self.handle_upsert)
        registry.register(TODO_UPDATED, self.handle_upsert)
        registry.register(TODO_DELETED, self.handle_deleted)
