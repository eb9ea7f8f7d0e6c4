import asyncio

import pytest

from services.errors import GenerationTimeout
from services.retry import RetryPolicy, is_rate_limited


class StatusError(Exception):
    def __init__(self, status_code, message="upstream error"):
        super().__init__(message)
        self.status_code = status_code


def test_retryable_predicate():
    policy = RetryPolicy()

    assert policy.is_retryable(ConnectionError("reset"))
    assert policy.is_retryable(asyncio.TimeoutError())
    assert policy.is_retryable(GenerationTimeout(30))
    assert policy.is_retryable(StatusError(429))
    assert policy.is_retryable(Exception("rate_limit_error: slow down"))
    assert not policy.is_retryable(StatusError(401))
    assert not policy.is_retryable(ValueError("bad prompt"))


def test_rate_limits_back_off_exponentially():
    policy = RetryPolicy(rate_limit_base_delay=2.0, max_delay=30.0)
    limited = StatusError(429)

    assert is_rate_limited(limited)
    assert [policy.backoff(attempt, limited) for attempt in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert policy.backoff(10, limited) == 30.0


def test_other_failures_back_off_linearly():
    policy = RetryPolicy(base_delay=1.5)

    assert [policy.backoff(attempt, ConnectionError()) for attempt in (1, 2, 3)] == [1.5, 3.0, 4.5]


def test_from_settings_never_allows_zero_attempts(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "LLM_RETRY_ATTEMPTS", 0)

    assert RetryPolicy.from_settings().max_attempts == 1


@pytest.mark.asyncio
async def test_call_retries_until_success():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "ok"

    result = await RetryPolicy(max_attempts=3, base_delay=0).call(flaky)

    assert result == "ok"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_call_reraises_original_error_when_exhausted():
    attempts = []

    async def always_down():
        attempts.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError, match="down"):
        await RetryPolicy(max_attempts=2, base_delay=0).call(always_down)
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_call_does_not_retry_permanent_errors():
    attempts = []

    async def unauthorized():
        attempts.append(1)
        raise StatusError(401, "invalid api key")

    with pytest.raises(StatusError):
        await RetryPolicy(max_attempts=3, base_delay=0).call(unauthorized)
    assert len(attempts) == 1
