from typing import Protocol, Sequence

from src.domain.models.events import StreamEvent


class StreamPublisher(Protocol):
    """Outbound stream contract used by the dispatcher.

    ``supports_bulk`` is declared by each implementation; the dispatcher only
    calls ``publish_many`` when it is True. Failures are reported by raising
    ``PublishError``. Publishing the same event twice must be harmless to the
    far side (delivery is at-least-once).
    """

    supports_bulk: bool

    def publish(self, event: StreamEvent) -> None:
        ...

    def publish_many(self, events: Sequence[StreamEvent]) -> None:
        ...

    def close(self) -> None:
        ...
