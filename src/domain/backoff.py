from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff without jitter, capped at ``max_delay_seconds``."""

    base_seconds: float = 1.0
    max_delay_seconds: float = 600.0

    def delay(self, attempts: int) -> float:
        """Delay in seconds after the ``attempts``-th failure (post-increment count)."""
        attempt = max(attempts, 1)
        # cap the exponent before it can overflow a float
        if attempt > 64:
            return float(self.max_delay_seconds)
        return float(min(self.base_seconds * (2 ** (attempt - 1)), self.max_delay_seconds))

    def next_available_at(self, attempts: int, now: datetime) -> datetime:
        return now + timedelta(seconds=self.delay(attempts))
