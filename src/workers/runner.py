import signal
import threading
from typing import Optional

from src.adapters.neo4j.client import GraphEventPublisher
from src.adapters.postgres.db import PostgresPool
from src.adapters.postgres.schema import ensure_schema
from src.adapters.queue.outbox import OutboxStore
from src.adapters.redis.stream import RedisStreamPublisher
from src.config.settings import Settings
from src.domain.publisher import StreamPublisher
from src.pipelines.registry import HandlerRegistry
from src.pipelines.todo_pipeline import TodoPipeline
from src.workers.dispatcher import OutboxDispatcher
from src.utils.logging import configure_logging


def build_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    TodoPipeline().register(registry)
    return registry


def build_publisher(settings: Settings) -> StreamPublisher:
    if settings.publisher == "neo4j":
        if not (settings.neo4j_uri and settings.neo4j_user and settings.neo4j_password):
            raise ValueError("OUTBOX_PUBLISHER=neo4j requires NEO4J_URI, NEO4J_USER and NEO4J_PASSWORD")
        return GraphEventPublisher.connect(settings.neo4j_uri, settings.neo4j_user, settings.neo4j_password)
    return RedisStreamPublisher.from_url(settings.redis_url, stream=settings.stream_name, maxlen=settings.stream_maxlen)


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _stop(signum, _frame):
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)


def main(settings: Optional[Settings] = None, stop_event: Optional[threading.Event] = None):
    settings = settings or Settings()
    log = configure_logging("outbox_worker", settings.log_level)
    log.info("Starting outbox worker", extra={"publisher": settings.publisher})

    registry = build_registry()
    stop_event = stop_event or threading.Event()
    pg_pool = PostgresPool(settings.outbox_dsn)
    try:
        publisher = build_publisher(settings)
        try:
            ensure_schema(pg_pool)
            store = OutboxStore(pg_pool, max_attempts=settings.max_attempts, error_max_length=settings.error_max_length)
            dispatcher = OutboxDispatcher.from_settings(settings, store, registry, publisher)
            log.info("Registered handlers", extra={"event_types": ",".join(registry.event_types())})

            if threading.current_thread() is threading.main_thread():
                install_signal_handlers(stop_event)
            dispatcher.run(stop_event)
        finally:
            publisher.close()
    finally:
        pg_pool.close()


if __name__ == "__main__":
    main()
