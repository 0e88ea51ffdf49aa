"""Tests for retry helper and outreach counters."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from benefit_outreach.core.metrics import SEND_FAILED, SEND_SUCCEEDED, OutreachMetrics
from benefit_outreach.core.retry import RetryConfig, RetryExhausted, retry_async

FAST = RetryConfig(max_attempts=3, base_delay=0.0, jitter=0.0)


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        func = AsyncMock(side_effect=[RuntimeError("locked"), RuntimeError("locked"), "ok"])

        assert await retry_async(func, config=FAST) == "ok"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):
        func = AsyncMock(side_effect=RuntimeError("down"))

        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(func, config=FAST)

        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "down"

    @pytest.mark.asyncio
    async def test_async_on_retry_callback(self):
        func = AsyncMock(side_effect=[RuntimeError("x"), "ok"])
        on_retry = AsyncMock()

        await retry_async(func, config=FAST, on_retry=on_retry)

        on_retry.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        config = RetryConfig(max_attempts=3, base_delay=0.0, non_retryable_exceptions=(ValueError,))
        func = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await retry_async(func, config=config)
        assert func.await_count == 1

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=0.0)

        assert config.calculate_delay(1) == 1.0
        assert config.calculate_delay(10) == 5.0


class TestOutreachMetrics:
    def test_increment_and_snapshot(self):
        metrics = OutreachMetrics()
        metrics.increment(SEND_SUCCEEDED)
        metrics.increment(SEND_SUCCEEDED, 2)

        assert metrics.get(SEND_SUCCEEDED) == 3
        assert metrics.get(SEND_FAILED) == 0
        assert metrics.snapshot()["counters"] == {SEND_SUCCEEDED: 3}

    def test_reset(self):
        metrics = OutreachMetrics()
        metrics.increment(SEND_FAILED)
        metrics.reset()

        assert metrics.get(SEND_FAILED) == 0
