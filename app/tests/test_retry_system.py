"""
Unit tests for the async retry system (core/retry.py).

Tests cover:
- Exponential backoff calculation and timing
- Exception classification (retryable vs non-retryable vs unrelated)
- Retry success after N attempts
- Logging behavior
"""

import pytest
import asyncio
from unittest.mock import AsyncMock, patch

import httpx

from core.retry import async_retry, RetryableError, NonRetryableError


class TestAsyncRetryDecorator:
    """Test suite for @async_retry decorator"""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        """Function succeeds immediately without retry"""
        async_fn = AsyncMock(return_value="success")
        decorated = async_retry(max_attempts=3)(async_fn)

        result = await decorated()

        assert result == "success"
        assert async_fn.call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_retryable_error_then_success(self):
        """Function fails once with RetryableError, succeeds on second attempt"""
        async_fn = AsyncMock(side_effect=[
            RetryableError("vPIC returned 503"),
            "success"
        ])
        decorated = async_retry(max_attempts=3, base_delay=0.01)(async_fn)

        result = await decorated()

        assert result == "success"
        assert async_fn.call_count == 2

    @pytest.mark.asyncio
    async def test_retry_on_transport_error_when_configured(self):
        """Types listed in retry_on are retried"""
        async_fn = AsyncMock(side_effect=[
            httpx.ConnectError("connection reset"),
            "success"
        ])
        decorated = async_retry(
            max_attempts=3, base_delay=0.01, retry_on=(RetryableError, httpx.TransportError)
        )(async_fn)

        result = await decorated()

        assert result == "success"
        assert async_fn.call_count == 2

    @pytest.mark.asyncio
    async def test_retry_on_timeout_error_then_success(self):
        """asyncio.TimeoutError is retryable by default"""
        async_fn = AsyncMock(side_effect=[
            asyncio.TimeoutError("request timeout"),
            "success"
        ])
        decorated = async_retry(max_attempts=3, base_delay=0.01)(async_fn)

        result = await decorated()

        assert result == "success"
        assert async_fn.call_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self):
        """NonRetryableError causes immediate failure without retry"""
        async_fn = AsyncMock(side_effect=NonRetryableError("no decode for VIN"))
        decorated = async_retry(max_attempts=3, base_delay=0.01)(async_fn)

        with pytest.raises(NonRetryableError):
            await decorated()

        # Should only be called once - no retry
        assert async_fn.call_count == 1

    @pytest.mark.asyncio
    async def test_unlisted_exception_is_not_retried(self):
        """Exceptions outside retry_on propagate on the first attempt"""
        async_fn = AsyncMock(side_effect=ValueError("bad payload"))
        decorated = async_retry(max_attempts=3, base_delay=0.01)(async_fn)

        with pytest.raises(ValueError):
            await decorated()

        assert async_fn.call_count == 1

    @pytest.mark.asyncio
    async def test_exhausts_all_retries_then_fails(self):
        """All retries exhausted, raises last exception"""
        async_fn = AsyncMock(side_effect=RetryableError("persistent error"))
        decorated = async_retry(max_attempts=3, base_delay=0.01)(async_fn)

        with pytest.raises(RetryableError) as exc_info:
            await decorated()

        assert str(exc_info.value) == "persistent error"
        assert async_fn.call_count == 3

    @pytest.mark.asyncio
    async def test_exponential_backoff_timing(self):
        """Backoff delays increase exponentially: 0.01s → 0.02s"""
        async_fn = AsyncMock(side_effect=[
            RetryableError("fail"),
            RetryableError("fail"),
            "success"
        ])
        decorated = async_retry(max_attempts=3, base_delay=0.01, max_delay=1.0)(async_fn)

        with patch('asyncio.sleep') as mock_sleep:
            result = await decorated()

        assert result == "success"

        sleep_calls = mock_sleep.call_args_list
        assert len(sleep_calls) == 2
        assert sleep_calls[0][0][0] == pytest.approx(0.01, abs=0.001)  # 0.01 * (2^0)
        assert sleep_calls[1][0][0] == pytest.approx(0.02, abs=0.001)  # 0.01 * (2^1)

    @pytest.mark.asyncio
    async def test_backoff_capped_at_max_delay(self):
        """Backoff is capped at max_delay"""
        async_fn = AsyncMock(side_effect=[
            RetryableError("fail"),
            RetryableError("fail"),
            RetryableError("fail"),
            "success"
        ])
        decorated = async_retry(max_attempts=4, base_delay=1.0, max_delay=2.0)(async_fn)

        with patch('asyncio.sleep') as mock_sleep:
            result = await decorated()

        assert result == "success"

        sleep_calls = mock_sleep.call_args_list
        assert len(sleep_calls) == 3
        assert sleep_calls[0][0][0] == pytest.approx(1.0)
        assert sleep_calls[1][0][0] == pytest.approx(2.0)
        assert sleep_calls[2][0][0] == pytest.approx(2.0)  # Capped

    @pytest.mark.asyncio
    async def test_logging_on_retry(self):
        """Retry attempts are logged as warnings"""
        async_fn = AsyncMock(side_effect=[
            RetryableError("connection failed"),
            "success"
        ])
        decorated = async_retry(max_attempts=3, base_delay=0.01)(async_fn)

        with patch('core.retry.logger') as mock_logger:
            result = await decorated()

        assert result == "success"
        warning_calls = mock_logger.warning.call_args_list
        assert any("Retry attempt" in str(call) for call in warning_calls)

    @pytest.mark.asyncio
    async def test_logging_on_all_retries_exhausted(self):
        """Exhausted retries are logged as errors"""
        async_fn = AsyncMock(side_effect=RetryableError("persistent"))
        decorated = async_retry(max_attempts=2, base_delay=0.01)(async_fn)

        with patch('core.retry.logger') as mock_logger:
            with pytest.raises(RetryableError):
                await decorated()

        assert mock_logger.error.called
        assert "All 2 attempts failed" in str(mock_logger.error.call_args)
