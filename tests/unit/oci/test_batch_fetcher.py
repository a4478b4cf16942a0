"""Unit tests for BatchFetcher."""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from shard_registry.errors import NotFoundError
from shard_registry.oci.batch_fetcher import MAX_CONCURRENCY_LIMIT, BatchFetcher


class TestBatchFetcher:
    """Tests for concurrency-capped fan-out."""

    @pytest.mark.requirement("batch-isolation")
    @pytest.mark.asyncio
    async def test_failures_are_isolated(self) -> None:
        """Test one failing key does not affect the others."""

        async def fetch(key: str) -> str:
            if key == "bad":
                raise NotFoundError(404, "missing")
            return key.upper()

        with capture_logs() as logs:
            result = await BatchFetcher(4).fetch(["a", "bad", "b"], fetch)

        assert result.results == {"a": "A", "b": "B"}
        assert isinstance(result.errors["bad"], NotFoundError)
        assert (result.total, result.successful, result.failed) == (3, 2, 1)
        assert result.ordered(["b", "bad", "a"]) == [("b", "B"), ("a", "A")]
        assert any(log["event"] == "batch_fetch_item_failed" and log["key"] == "bad" for log in logs)

    @pytest.mark.requirement("batch-concurrency")
    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        """Test at most max_concurrency fetches run at once."""
        in_flight = 0
        peak = 0

        async def fetch(key: str) -> str:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return key

        result = await BatchFetcher(2).fetch([str(i) for i in range(10)], fetch)

        assert result.successful == 10
        assert peak == 2

    @pytest.mark.requirement("batch-concurrency")
    @pytest.mark.asyncio
    async def test_duplicate_keys_fetched_once(self) -> None:
        """Test repeated keys share one fetch."""
        calls: list[str] = []

        async def fetch(key: str) -> str:
            calls.append(key)
            return key

        await BatchFetcher().fetch(["a", "a", "b"], fetch)

        assert sorted(calls) == ["a", "b"]

    @pytest.mark.requirement("batch-concurrency")
    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        """Test an empty key list returns an empty result."""

        async def fetch(key: str) -> str:
            raise AssertionError("not called")

        result = await BatchFetcher().fetch([], fetch)
        assert result.total == 0

    @pytest.mark.requirement("batch-concurrency")
    def test_limits(self) -> None:
        """Test the cap is clamped and must be positive."""
        assert BatchFetcher(100).max_concurrency == MAX_CONCURRENCY_LIMIT
        with pytest.raises(ValueError):
            BatchFetcher(0)

    @pytest.mark.requirement("batch-cancellation")
    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self) -> None:
        """Test cancelling the batch cancels its pending fetches."""
        started = asyncio.Event()

        async def fetch(key: str) -> str:
            started.set()
            await asyncio.sleep(5)
            return key

        task = asyncio.create_task(BatchFetcher(2).fetch(["a", "b", "c"], fetch))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
