from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PUBLISHERS = ("redis", "neo4j")
UNKNOWN_EVENT_POLICIES = ("retry", "skip")


class Settings(BaseSettings):
    """Runtime configuration for the outbox relay worker."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    outbox_dsn: str = Field(..., validation_alias="OUTBOX_DSN")
    publisher: str = Field("redis", validation_alias="OUTBOX_PUBLISHER")

    redis_url: str = Field("redis://localhost:6379/0", validation_alias="REDIS_URL")
    stream_name: str = Field("todo:stream", validation_alias="STREAM_NAME")
    stream_maxlen: Optional[int] = Field(None, validation_alias="STREAM_MAXLEN")

    neo4j_uri: Optional[str] = Field(None, validation_alias="NEO4J_URI")
    neo4j_user: Optional[str] = Field(None, validation_alias="NEO4J_USER")
    neo4j_password: Optional[str] = Field(None, validation_alias="NEO4J_PASSWORD")

    poll_interval_seconds: float = Field(2.0, validation_alias="POLL_INTERVAL_SECONDS")
    batch_size: int = Field(100, validation_alias="BATCH_SIZE")
    lease_seconds: int = Field(30, validation_alias="LEASE_SECONDS")
    max_attempts: int = Field(10, validation_alias="MAX_ATTEMPTS")
    backoff_base_seconds: float = Field(1.0, validation_alias="BACKOFF_BASE_SECONDS")
    backoff_max_seconds: float = Field(600.0, validation_alias="BACKOFF_MAX_SECONDS")
    error_max_length: int = Field(2000, validation_alias="ERROR_MAX_LENGTH")
    unknown_event_policy: str = Field("retry", validation_alias="UNKNOWN_EVENT_POLICY")
    bulk_publish: bool = Field(False, validation_alias="BULK_PUBLISH")

    event_source: str = Field("api", validation_alias="EVENT_SOURCE")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.publisher not in PUBLISHERS:
            raise ValueError(f"publisher must be one of {PUBLISHERS}, got {self.publisher!r}")
        if self.unknown_event_policy not in UNKNOWN_EVENT_POLICIES:
            raise ValueError(
                f"unknown_event_policy must be one of {UNKNOWN_EVENT_POLICIES}, got {self.unknown_event_policy!r}"
            )
        for name in ("poll_interval_seconds", "batch_size", "lease_seconds", "max_attempts", "backoff_base_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        # a lease shorter than one tick lets a slow batch be reclaimed mid-flight
        if self.lease_seconds < self.poll_interval_seconds:
            raise ValueError("lease_seconds must be >= poll_interval_seconds")
        return self
