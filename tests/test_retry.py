"""Tests for umbrella_mail_import.retry."""

from __future__ import annotations

import pytest

from umbrella_mail_import.config import RetryConfig
from umbrella_mail_import.retry import with_retry


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=3, initial_wait_seconds=0.01, max_wait_seconds=0.1)


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, fast_retry):
        call_count = 0

        @with_retry(fast_retry)
        async def fn():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("transient")
            return "recovered"

        assert await fn() == "recovered"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_exhausts_retries_and_reraises(self, fast_retry):
        call_count = 0

        @with_retry(fast_retry)
        async def fn():
            nonlocal call_count
            call_count += 1
            raise ValueError("permanent")

        with pytest.raises(ValueError, match="permanent"):
            await fn()
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, fast_retry):
        call_count = 0

        @with_retry(fast_retry, retryable_exceptions=(ConnectionError,))
        async def fn():
            nonlocal call_count
            call_count += 1
            raise TypeError("not retryable")

        with pytest.raises(TypeError):
            await fn()
        assert call_count == 1
