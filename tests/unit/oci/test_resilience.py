"""Unit tests for the retry policy used by convenience wrappers.

Tests cover exponential backoff, Retry-After handling, retryability and
the retry loop itself (with asyncio.sleep patched out).
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from shard_registry.errors import HttpError, NotFoundError, RateLimitError, RegistryUnavailableError
from shard_registry.oci.resilience import RetryPolicy
from shard_registry.schemas.config import RetryConfig


class TestRetryPolicyExponentialBackoff:
    """Tests for RetryPolicy delay calculation."""

    @pytest.mark.requirement("retry-backoff")
    def test_default_config_has_correct_values(self) -> None:
        """Test default RetryConfig: 3 attempts, 1s initial, 2x multiplier."""
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.initial_delay_ms == 1000
        assert config.backoff_multiplier == pytest.approx(2.0)
        assert config.jitter is True

    @pytest.mark.requirement("retry-backoff")
    def test_calculate_delay_exponential_backoff_no_jitter(self) -> None:
        """Test delay doubles per attempt without jitter."""
        policy = RetryPolicy(RetryConfig(jitter=False))

        assert policy.calculate_delay(0) == pytest.approx(1.0)
        assert policy.calculate_delay(1) == pytest.approx(2.0)
        assert policy.calculate_delay(2) == pytest.approx(4.0)

    @pytest.mark.requirement("retry-backoff")
    def test_calculate_delay_is_capped(self) -> None:
        """Test delay never exceeds max_delay_ms."""
        policy = RetryPolicy(RetryConfig(jitter=False, max_delay_ms=3000))
        assert policy.calculate_delay(5) == pytest.approx(3.0)

    @pytest.mark.requirement("retry-backoff")
    def test_jitter_stays_within_bounds(self) -> None:
        """Test jitter keeps the delay within ±25%."""
        policy = RetryPolicy(RetryConfig(jitter=True))
        for _ in range(50):
            assert 0.75 <= policy.calculate_delay(0) <= 1.25

    @pytest.mark.requirement("retry-backoff")
    def test_retry_after_overrides_backoff(self) -> None:
        """Test a 429 Retry-After is honoured up to the cap."""
        policy = RetryPolicy(RetryConfig(jitter=False, max_delay_ms=10000))

        assert policy.calculate_delay(0, RateLimitError(429, "slow", retry_after=4)) == pytest.approx(4.0)
        assert policy.calculate_delay(0, RateLimitError(429, "slow", retry_after=600)) == pytest.approx(10.0)
        assert policy.calculate_delay(0, RateLimitError(429, "slow")) == pytest.approx(1.0)


class TestRetryPolicyCall:
    """Tests for RetryPolicy.call and wrap."""

    @pytest.mark.requirement("retry-call")
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self) -> None:
        """Test transient errors are retried until success."""
        func = AsyncMock(
            side_effect=[RegistryUnavailableError("https://ghcr.io", "refused"), HttpError(502, "bad gateway"), "ok"]
        )
        policy = RetryPolicy(RetryConfig(jitter=False))

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await policy.call(func, "arg", key="value")

        assert result == "ok"
        assert func.await_count == 3
        func.assert_awaited_with("arg", key="value")
        assert [c.args[0] for c in mock_sleep.await_args_list] == [pytest.approx(1.0), pytest.approx(2.0)]

    @pytest.mark.requirement("retry-call")
    @pytest.mark.asyncio
    async def test_non_retryable_fails_fast(self) -> None:
        """Test a permanent failure is raised on the first attempt."""
        func = AsyncMock(side_effect=NotFoundError(404, "missing"))

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(NotFoundError):
                await RetryPolicy().call(func)

        assert func.await_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.requirement("retry-call")
    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self) -> None:
        """Test the last error is raised once attempts run out."""
        errors = [HttpError(500, f"attempt {i}") for i in range(3)]
        func = AsyncMock(side_effect=errors)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(HttpError) as exc_info:
                await RetryPolicy(RetryConfig(max_attempts=3)).call(func)

        assert exc_info.value is errors[-1]
        assert func.await_count == 3

    @pytest.mark.requirement("retry-call")
    @pytest.mark.asyncio
    async def test_custom_predicate(self) -> None:
        """Test a custom retryable predicate replaces the default."""
        func = AsyncMock(side_effect=[ValueError("flaky"), "ok"])
        policy = RetryPolicy(RetryConfig(jitter=False), retryable=lambda e: isinstance(e, ValueError))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await policy.call(func) == "ok"

    @pytest.mark.requirement("retry-call")
    @pytest.mark.asyncio
    async def test_wrap(self) -> None:
        """Test the decorator form retries like call()."""
        attempts = 0
        policy = RetryPolicy(RetryConfig(jitter=False))

        @policy.wrap
        async def flaky(value: int) -> int:
            nonlocal attempts
            attempts += 1
            if attempts < 2:
                raise RegistryUnavailableError("https://ghcr.io", "reset")
            return value * 2

        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await flaky(21) == 42

        assert attempts == 2
        assert flaky.__name__ == "flaky"
