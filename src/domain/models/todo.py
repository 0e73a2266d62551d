import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC, naive values assumed to already be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class TodoItem:
    description: str
    uuid: str = field(default_factory=lambda: str(uuid4()))
    due_date: Optional[datetime] = None
    file_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> Dict[str, Any]:
        """Public stream shape; optional fields are omitted when unset."""
        body: Dict[str, Any] = {"id": self.uuid, "description": self.description}
        if self.due_date is not None:
            body["due_date"] = format_timestamp(self.due_date)
        if self.file_id:
            body["file_id"] = self.file_id
        body["created_at"] = format_timestamp(self.created_at)
        body["updated_at"] = format_timestamp(self.updated_at)
        return body

    def to_json(self) -> bytes:
        return json.dumps(self.to_payload(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_payload(cls, body: Dict[str, Any]) -> "TodoItem":
        due_date = body.get("due_date")
        return cls(
            uuid=body["id"],
            description=body["description"],
            due_date=parse_timestamp(due_date) if due_date else None,
            file_id=body.get("file_id") or None,
            created_at=parse_timestamp(body["created_at"]),
            updated_at=parse_timestamp(body["updated_at"]),
        )
