from typing import Callable, Dict, List, Optional

from src.domain.models.events import OutboxEvent, StreamEvent


Handler = Callable[[OutboxEvent], StreamEvent]


class HandlerRegistry:
    """Closed event_type -> handler table, filled once at startup."""

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, event_type: str, handler: Handler) -> None:
        if event_type in self._handlers:
            raise ValueError(f"handler already registered for {event_type!r}")
        self._handlers[event_type] = handler

    def get(self, event_type: str) -> Optional[Handler]:
        return self._handlers.get(event_type)

    def event_types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, event_type: str) -> bool:
        return event_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
