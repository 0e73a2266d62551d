from datetime import datetime, timedelta, timezone

import pytest

from src.domain.backoff import BackoffPolicy


@pytest.mark.parametrize(
    "attempts, expected",
    [(1, 1.0), (2, 2.0), (3, 4.0), (10, 512.0), (11, 600.0), (500, 600.0)],
)
def test_delay_doubles_until_capped(attempts, expected):
    assert BackoffPolicy(base_seconds=1.0, max_delay_seconds=600.0).delay(attempts) == expected


def test_non_positive_attempts_use_base_delay():
    policy = BackoffPolicy(base_seconds=3.0)
    assert policy.delay(0) == policy.delay(-4) == 3.0


def test_next_available_at_is_monotonic_and_bounded():
    policy = BackoffPolicy(base_seconds=0.5, max_delay_seconds=30.0)
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    schedule = [policy.next_available_at(n, now) for n in range(1, 20)]

    assert schedule == sorted(schedule)
    assert schedule[0] == now + timedelta(seconds=0.5)
    assert max(schedule) == now + timedelta(seconds=30)
