"""Tests for provider retry and backoff."""

from unittest.mock import AsyncMock

import pytest

from agent_remote.core.errors import ProviderAPIError, RateLimitError
from agent_remote.safeguards.retry_handler import RetryHandler


@pytest.fixture
def sleep():
    return AsyncMock()


class TestBackoff:
    def test_schedule_doubles_then_caps(self):
        handler = RetryHandler(initial_backoff_ms=1000, max_backoff_ms=30000, multiplier=2)
        assert [handler.calculate_backoff(a) for a in range(7)] == [
            1000, 2000, 4000, 8000, 16000, 30000, 30000,
        ]

    def test_default_policy(self):
        handler = RetryHandler()
        assert handler.calculate_backoff(0) == 2000
        assert handler.calculate_backoff(10) == 30000


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep):
        handler = RetryHandler(sleep=sleep)
        func = AsyncMock(return_value="ok")

        assert await handler.call_with_retry(func) == "ok"
        func.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_retried_with_backoff(self, sleep):
        handler = RetryHandler(initial_backoff_ms=1000, max_retries=3, sleep=sleep)
        func = AsyncMock(side_effect=[RateLimitError("429"), RateLimitError("429"), "ok"])

        assert await handler.call_with_retry(func) == "ok"
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_attempts(self, sleep):
        handler = RetryHandler(max_retries=3, sleep=sleep)
        func = AsyncMock(side_effect=RateLimitError("429"))

        with pytest.raises(RateLimitError):
            await handler.call_with_retry(func)
        assert func.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_generic_error_retried_once(self, sleep):
        handler = RetryHandler(sleep=sleep)
        func = AsyncMock(side_effect=[ProviderAPIError("500"), "ok"])

        assert await handler.call_with_retry(func) == "ok"
        assert func.await_count == 2
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generic_error_twice_propagates(self, sleep):
        handler = RetryHandler(sleep=sleep)
        func = AsyncMock(side_effect=ProviderAPIError("500", status_code=500))

        with pytest.raises(ProviderAPIError) as exc_info:
            await handler.call_with_retry(func)
        assert exc_info.value.status_code == 500
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_unrelated_exceptions_not_retried(self, sleep):
        handler = RetryHandler(sleep=sleep)
        func = AsyncMock(side_effect=KeyError("x"))

        with pytest.raises(KeyError):
            await handler.call_with_retry(func)
        func.assert_awaited_once()
