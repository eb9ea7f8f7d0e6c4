"""Bounded retry policy for model calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import openai
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from config import settings
from services.errors import GenerationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEVER_RETRY = (openai.AuthenticationError, openai.PermissionDeniedError, openai.BadRequestError)
_TRANSIENT = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
    GenerationTimeout,
    asyncio.TimeoutError,
    ConnectionError,
)


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def is_rate_limited(exc: Optional[BaseException]) -> bool:
    if exc is None:
        return False
    if isinstance(exc, openai.RateLimitError) or _status_code(exc) == 429:
        return True
    return "rate_limit" in str(exc)


@dataclass
class RetryPolicy:
    """Max attempts, backoff function and retryable-error predicate.

    Rate limits back off exponentially from ``rate_limit_base_delay``; other
    transient failures back off linearly from ``base_delay``. Authentication
    and request errors are never retried.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    rate_limit_base_delay: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=max(int(settings.LLM_RETRY_ATTEMPTS), 1),
            base_delay=float(settings.LLM_RETRY_BASE_DELAY_SECONDS),
            rate_limit_base_delay=float(settings.LLM_RATE_LIMIT_BASE_DELAY_SECONDS),
        )

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, _NEVER_RETRY) or _status_code(exc) == 401:
            return False
        if isinstance(exc, _TRANSIENT):
            return True
        return is_rate_limited(exc)

    def backoff(self, attempt: int, exc: Optional[BaseException] = None) -> float:
        if is_rate_limited(exc):
            delay = self.rate_limit_base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay * attempt
        return max(0.0, min(delay, self.max_delay))

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        return self.backoff(retry_state.attempt_number, exc)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Model call failed (attempt %s/%s), retrying in %.1fs: %s",
            retry_state.attempt_number,
            self.max_attempts,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            exc,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(self.max_attempts, 1)),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._before_sleep,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async for attempt in self.retrying():
            with attempt:
                result = await fn(*args, **kwargs)
        return result
