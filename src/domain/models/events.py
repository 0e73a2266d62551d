from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


class OutboxStatus:
    PENDING = "pending"
    PUBLISHED = "published"

    ALL = (PENDING, PUBLISHED)


@dataclass(frozen=True)
class OutboxMessage:
    """An event staged for the outbox inside a business transaction."""

    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: bytes
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class OutboxEvent:
    """A persisted outbox row, usually one just claimed under a lease."""

    id: int
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    status: str = OutboxStatus.PENDING
    attempts: int = 0
    available_at: Optional[datetime] = None
    lock_token: Optional[str] = None
    locked_until: Optional[datetime] = None
    last_error: Optional[str] = None
    published_at: Optional[datetime] = None


@dataclass(frozen=True)
class StreamEvent:
    """Deserialized event handed to a stream publisher."""

    event_type: str
    aggregate_type: str
    aggregate_id: str
    outbox_id: int
    data: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
