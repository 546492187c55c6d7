import pytest

from association_finder.probing.retry import RetryPolicy


def make_attempt(values):
    calls = []

    async def attempt():
        calls.append(1)
        return values[min(len(calls), len(values)) - 1]

    return attempt, calls


@pytest.mark.asyncio
async def test_returns_first_value_without_sleeping(fake_clock):
    """A value that is not rate limited is returned after one attempt."""
    policy = RetryPolicy(backoff=10, max_retry_window=60, clock=fake_clock, sleep=fake_clock.sleep)
    attempt, calls = make_attempt([200])

    outcome = await policy.execute(attempt, lambda v: v == 429)

    assert outcome.value == 200
    assert outcome.attempts == 1
    assert not outcome.exhausted
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_retries_with_constant_backoff(fake_clock):
    policy = RetryPolicy(backoff=10, max_retry_window=60, clock=fake_clock, sleep=fake_clock.sleep)
    attempt, calls = make_attempt([429, 429, 200])

    outcome = await policy.execute(attempt, lambda v: v == 429)

    assert outcome.value == 200
    assert outcome.attempts == 3
    assert outcome.elapsed == 20
    assert not outcome.exhausted
    assert fake_clock.sleeps == [10, 10]


@pytest.mark.asyncio
async def test_gives_up_once_window_elapsed(fake_clock):
    """Attempts happen at 0, 10, ... 60s; the attempt at 60s is the last."""
    policy = RetryPolicy(backoff=10, max_retry_window=60, clock=fake_clock, sleep=fake_clock.sleep)
    attempt, calls = make_attempt([429])

    outcome = await policy.execute(attempt, lambda v: v == 429)

    assert outcome.exhausted
    assert outcome.value == 429
    assert outcome.attempts == 7
    assert outcome.elapsed == 60
    assert len(fake_clock.sleeps) == 6


@pytest.mark.asyncio
async def test_zero_window_means_single_attempt(fake_clock):
    policy = RetryPolicy(backoff=10, max_retry_window=0, clock=fake_clock, sleep=fake_clock.sleep)
    attempt, calls = make_attempt([429])

    outcome = await policy.execute(attempt, lambda v: v == 429)

    assert outcome.exhausted
    assert len(calls) == 1
    assert fake_clock.sleeps == []


def test_from_settings():
    from association_finder.config.config import ProbeSettings

    policy = RetryPolicy.from_settings(ProbeSettings(backoff_seconds=2.5, max_retry_window_seconds=30))
    assert policy.backoff == 2.5
    assert policy.max_retry_window == 30
