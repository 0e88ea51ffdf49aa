"""Exponential backoff for outreach audit writes.

An OutreachLog row must survive a locked or briefly unavailable
database, so the writer retries the insert+commit a few times with a
rollback between attempts before giving up and counting the loss.

Usage:
    config = RetryConfig(max_attempts=3, base_delay=0.2)
    await retry_async(write_row, config=config, on_retry=rollback)
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from benefit_outreach.core.log_setup import get_logger

log = get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[Exception, int, float], Awaitable[None] | None]


class RetryExhausted(Exception):
    """Every attempt failed; ``last_error`` holds the final failure."""

    def __init__(self, message: str, last_error: Exception | None = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0
    jitter: float = 0.1
    non_retryable_exceptions: tuple[type[Exception], ...] = ()

    def calculate_delay(self, attempt: int) -> float:
        """Backoff before the retry that follows ``attempt`` (1-based)."""
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


LOG_WRITE_RETRY = RetryConfig()


def _name(func: Callable[..., Any]) -> str:
    return getattr(func, "__name__", repr(func))


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig = LOG_WRITE_RETRY,
    on_retry: OnRetry | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func`` until it succeeds or attempts run out.

    ``on_retry(exc, attempt, delay)`` runs before each sleep and may be a
    coroutine function, typically a session rollback.

    Raises:
        RetryExhausted: After ``config.max_attempts`` failures
    """
    last_error: Exception | None = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except config.non_retryable_exceptions:
            raise
        except Exception as e:
            last_error = e
            if attempt == config.max_attempts:
                break

            delay = config.calculate_delay(attempt)
            log.warning(
                "Write failed, retrying",
                function=_name(func),
                attempt=attempt,
                max_attempts=config.max_attempts,
                error=str(e),
                delay=round(delay, 2),
            )
            if on_retry is not None:
                outcome = on_retry(e, attempt, delay)
                if asyncio.iscoroutine(outcome):
                    await outcome
            await asyncio.sleep(delay)

    raise RetryExhausted(
        f"{_name(func)} failed after {config.max_attempts} attempts",
        last_error=last_error,
        attempts=config.max_attempts,
    )
