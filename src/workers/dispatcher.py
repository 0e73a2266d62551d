import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

from src.adapters.queue.outbox import OutboxStore
from src.config.settings import Settings
from src.domain.backoff import BackoffPolicy
from src.domain.errors import StorageError, UnknownEventType
from src.domain.models.events import OutboxEvent, StreamEvent
from src.domain.publisher import StreamPublisher
from src.pipelines.registry import HandlerRegistry
from src.utils.clock import SYSTEM_CLOCK, Clock
from src.utils.logging import configure_logging


@dataclass
class TickStats:
    claimed: int = 0
    published: int = 0
    failed: int = 0
    skipped: int = 0
    exhausted: int = 0
    abandoned: int = 0
    mark_errors: int = 0
    already_published: int = 0
    lease_lost: int = 0


class OutboxDispatcher:
    """Poll the outbox, publish claimed rows and record each outcome.

    Rows in a batch are handled one after another in id order. Nothing raised
    while dispatching escapes ``tick``: publish and decode failures are
    rescheduled with backoff, storage failures are logged and left to lease
    expiry.
    """

    def __init__(
        self,
        store: OutboxStore,
        registry: HandlerRegistry,
        publisher: StreamPublisher,
        backoff: Optional[BackoffPolicy] = None,
        clock: Clock = SYSTEM_CLOCK,
        batch_size: int = 100,
        lease_seconds: float = 30,
        poll_interval_seconds: float = 2.0,
        max_attempts: Optional[int] = None,
        unknown_event_policy: str = "retry",
        bulk_publish: bool = False,
        log: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.registry = registry
        self.publisher = publisher
        self.backoff = backoff or BackoffPolicy()
        self.clock = clock
        self.batch_size = batch_size
        self.lease_seconds = lease_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self.unknown_event_policy = unknown_event_policy
        self.bulk_publish = bulk_publish and publisher.supports_bulk
        self.log = log or configure_logging("outbox_dispatcher")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: OutboxStore,
        registry: HandlerRegistry,
        publisher: StreamPublisher,
        clock: Clock = SYSTEM_CLOCK,
    ) -> "OutboxDispatcher":
        return cls(
            store,
            registry,
            publisher,
            backoff=BackoffPolicy(settings.backoff_base_seconds, settings.backoff_max_seconds),
            clock=clock,
            batch_size=settings.batch_size,
            lease_seconds=settings.lease_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            max_attempts=settings.max_attempts,
            unknown_event_policy=settings.unknown_event_policy,
            bulk_publish=settings.bulk_publish,
            log=configure_logging("outbox_dispatcher", settings.log_level),
        )

    def run(self, stop_event: threading.Event) -> None:
        """Tick on a fixed cadence until ``stop_event`` is set."""
        self.log.info(
            "Starting outbox dispatcher",
            extra={"batch_size": self.batch_size, "interval": self.poll_interval_seconds, "bulk": self.bulk_publish},
        )
        while not stop_event.is_set():
            started = self.clock.monotonic()
            self.tick(stop_event)
            elapsed = self.clock.monotonic() - started
            stop_event.wait(max(self.poll_interval_seconds - elapsed, 0.0))
        self.log.info("Outbox dispatcher stopped")

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run the loop on a daemon thread, for embedding in another process."""
        thread = threading.Thread(target=self.run, args=(stop_event,), name="outbox-dispatcher", daemon=True)
        thread.start()
        return thread

    def tick(self, stop_event: Optional[threading.Event] = None) -> TickStats:
        stats = TickStats()
        try:
            events = self.store.claim_batch(self.batch_size, self.lease_seconds)
        except StorageError:
            self.log.exception("Outbox claim failed")
            return stats

        stats.claimed = len(events)
        if not events:
            return stats
        self.log.info("Claimed outbox batch", extra={"claimed": stats.claimed, "first_id": events[0].id})

        if self.bulk_publish:
            self._dispatch_bulk(events, stats, stop_event)
        else:
            for index, event in enumerate(events):
                if stop_event is not None and stop_event.is_set():
                    self._abandon(events[index:], stats)
                    break
                self._dispatch_one(event, stats)
        return stats

    def _abandon(self, remaining: List[OutboxEvent], stats: TickStats) -> None:
        stats.abandoned = len(remaining)
        self.log.info(
            "Stop requested; leaving claimed rows for lease expiry",
            extra={"abandoned": stats.abandoned, "first_id": remaining[0].id},
        )

    def _decode(self, event: OutboxEvent) -> Optional[StreamEvent]:
        """Run the registered handler. None means the row should be skipped as delivered."""
        handler = self.registry.get(event.event_type)
        if handler is None:
            if self.unknown_event_policy == "skip":
                self.log.warning(
                    "Unknown event type; marking as delivered",
                    extra={"outbox_id": event.id, "event_type": event.event_type},
                )
                return None
            raise UnknownEventType(event.event_type)
        return handler(event)

    def _dispatch_one(self, event: OutboxEvent, stats: TickStats) -> None:
        try:
            stream_event = self._decode(event)
            if stream_event is not None:
                self.publisher.publish(stream_event)
        except Exception as exc:  # noqa: BLE001
            self._record_failure(event, exc, stats)
            return
        self._record_success(event, stats, skipped=stream_event is None)

    def _dispatch_bulk(self, events: List[OutboxEvent], stats: TickStats, stop_event: Optional[threading.Event]) -> None:
        decoded: List[Tuple[OutboxEvent, StreamEvent]] = []
        for index, event in enumerate(events):
            if stop_event is not None and stop_event.is_set():
                self._abandon(events[index:], stats)
                break
            try:
                stream_event = self._decode(event)
            except Exception as exc:  # noqa: BLE001
                self._record_failure(event, exc, stats)
                continue
            if stream_event is None:
                self._record_success(event, stats, skipped=True)
            else:
                decoded.append((event, stream_event))

        if not decoded:
            return
        try:
            self.publisher.publish_many([stream_event for _, stream_event in decoded])
        except Exception as exc:  # noqa: BLE001
            for event, _ in decoded:
                self._record_failure(event, exc, stats)
            return
        for event, _ in decoded:
            self._record_success(event, stats)

    def _record_success(self, event: OutboxEvent, stats: TickStats, skipped: bool = False) -> None:
        try:
            changed = self.store.mark_published(event.id)
        except StorageError:
            stats.mark_errors += 1
            self.log.exception("Could not mark outbox row published", extra={"outbox_id": event.id})
            return
        if not changed:
            # another worker finished this row after our lease lapsed
            stats.already_published += 1
            self.log.debug("Outbox row was already published", extra={"outbox_id": event.id})
            return
        if skipped:
            stats.skipped += 1
        else:
            stats.published += 1
        self.log.debug("Published outbox row", extra={"outbox_id": event.id, "event_type": event.event_type})

    def _record_failure(self, event: OutboxEvent, exc: Exception, stats: TickStats) -> None:
        attempts = event.attempts + 1
        next_available_at = self.backoff.next_available_at(attempts, self.clock.now())
        detail = f"{type(exc).__name__}: {exc}"
        try:
            recorded = self.store.mark_failed(event.id, next_available_at, detail, lock_token=event.lock_token)
        except StorageError:
            stats.mark_errors += 1
            self.log.exception("Could not record outbox failure", extra={"outbox_id": event.id})
            return
        if not recorded:
            stats.lease_lost += 1
            self.log.warning(
                "Lease lost before outbox failure was recorded; outcome left to the current owner",
                extra={"outbox_id": event.id, "event_type": event.event_type, "error": detail},
            )
            return

        stats.failed += 1
        if self.max_attempts is not None and attempts >= self.max_attempts:
            stats.exhausted += 1
            self.log.error(
                "Outbox row exhausted its attempts; parked for operator review",
                extra={"outbox_id": event.id, "event_type": event.event_type, "attempts": attempts, "error": detail},
            )
            return
        self.log.warning(
            "Outbox publish failed; retry scheduled",
            extra={
                "outbox_id": event.id,
                "event_type": event.event_type,
                "attempts": attempts,
                "next_available_at": next_available_at.isoformat(),
                "error": detail,
            },
        )
