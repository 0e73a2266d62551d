class OutboxError(Exception):
    """Base class for outbox relay failures."""


class StorageError(OutboxError):
    """Reading or writing the outbox table failed."""


class MarkOutcomeError(StorageError):
    """Recording a publish outcome failed; the row's lease will expire and it becomes claimable again."""

    def __init__(self, event_id: int, message: str):
        super().__init__(message)
        self.event_id = event_id


class PublishError(OutboxError):
    """The stream publisher rejected or failed to deliver an event."""


class UnknownEventType(OutboxError):
    def __init__(self, event_type: str):
        super().__init__(f"no handler registered for event type {event_type!r}")
        self.event_type = event_type


class EventDecodeError(OutboxError):
    """An outbox payload could not be deserialized by its handler."""
