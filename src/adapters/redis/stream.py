import json
from typing import Dict, Optional, Sequence

import redis

from src.domain.errors import PublishError
from src.domain.models.events import StreamEvent
from src.utils.logging import configure_logging


DEFAULT_STREAM = "todo:stream"


def stream_fields(event: StreamEvent) -> Dict[str, str]:
    """Flatten an event into XADD fields; Redis Streams only carry strings."""
    return {
        "data": json.dumps(event.data, separators=(",", ":"), ensure_ascii=False),
        "type": event.event_type,
        "aggregate_type": event.aggregate_type,
        "aggregate_id": event.aggregate_id,
        "outbox_id": str(event.outbox_id),
        "headers": json.dumps(event.headers, separators=(",", ":"), sort_keys=True),
    }


class RedisStreamPublisher:
    """Publish outbox events to a Redis Stream with XADD."""

    supports_bulk = True

    def __init__(self, client: redis.Redis, stream: str = DEFAULT_STREAM, maxlen: Optional[int] = None):
        self._client = client
        self.stream = stream
        self.maxlen = maxlen
        self.log = configure_logging("redis_stream_publisher")

    @classmethod
    def from_url(cls, url: str, stream: str = DEFAULT_STREAM, maxlen: Optional[int] = None) -> "RedisStreamPublisher":
        return cls(redis.Redis.from_url(url), stream=stream, maxlen=maxlen)

    def publish(self, event: StreamEvent) -> None:
        try:
            entry_id = self._client.xadd(self.stream, stream_fields(event), maxlen=self.maxlen, approximate=True)
        except redis.RedisError as exc:
            raise PublishError(f"xadd to {self.stream} failed: {exc}") from exc
        self.log.debug("Published to stream", extra={"stream": self.stream, "outbox_id": event.outbox_id, "entry_id": entry_id})

    def publish_many(self, events: Sequence[StreamEvent]) -> None:
        if not events:
            return
        pipe = self._client.pipeline(transaction=False)
        for event in events:
            pipe.xadd(self.stream, stream_fields(event), maxlen=self.maxlen, approximate=True)
        try:
            results = pipe.execute(raise_on_error=True)
        except redis.RedisError as exc:
            raise PublishError(f"pipelined xadd to {self.stream} failed: {exc}") from exc
        self.log.debug("Published batch to stream", extra={"stream": self.stream, "count": len(results)})

    def close(self) -> None:
        self._client.close()
