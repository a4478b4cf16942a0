"""Concurrency-capped fan-out for per-tag registry requests.

Fetching metadata for every tag of a repository is an N-request job.
BatchFetcher runs those requests concurrently on the event loop, bounded by a
semaphore so a large tag list never floods the registry, and records each
tag's failure separately so one bad tag never aborts the batch.

Example:
    >>> fetcher = BatchFetcher(max_concurrency=8)
    >>> result = await fetcher.fetch(
    ...     ["1.0.0", "1.1.0"],
    ...     lambda tag: client.query_tag_metadata(repo, tag),
    ... )
    >>> print(f"Fetched {result.successful}/{result.total}")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 8
"""Default number of in-flight requests."""

MAX_CONCURRENCY_LIMIT = 20
"""Maximum allowed in-flight requests to prevent overwhelming registries."""


class BatchFetchResult(Generic[T]):
    """Result of a batch fetch.

    Attributes:
        results: Mapping of key to fetched value.
        errors: Mapping of key to the exception its fetch raised.
    """

    def __init__(self) -> None:
        """Initialize empty BatchFetchResult."""
        self.results: dict[str, T] = {}
        self.errors: dict[str, Exception] = {}

    @property
    def total(self) -> int:
        """Return total number of keys attempted."""
        return len(self.results) + len(self.errors)

    @property
    def successful(self) -> int:
        """Return number of successful fetches."""
        return len(self.results)

    @property
    def failed(self) -> int:
        """Return number of failed fetches."""
        return len(self.errors)

    def ordered(self, keys: Sequence[str]) -> list[tuple[str, T]]:
        """Return successful (key, value) pairs in the order of ``keys``."""
        return [(key, self.results[key]) for key in keys if key in self.results]


class BatchFetcher:
    """Runs one coroutine per key with at most ``max_concurrency`` in flight.

    Cancellation of the caller cancels every pending fetch.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        """Initialize BatchFetcher.

        Args:
            max_concurrency: Maximum number of concurrent fetches.
                Capped at MAX_CONCURRENCY_LIMIT.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._max_concurrency = min(max_concurrency, MAX_CONCURRENCY_LIMIT)

    @property
    def max_concurrency(self) -> int:
        """Return the concurrency cap."""
        return self._max_concurrency

    async def fetch(
        self,
        keys: Sequence[str],
        fetch_one: Callable[[str], Awaitable[T]],
    ) -> BatchFetchResult[T]:
        """Fetch every key concurrently.

        Args:
            keys: Keys to fetch (duplicates are fetched once).
            fetch_one: Coroutine function fetching a single key.

        Returns:
            BatchFetchResult with values and per-key errors.
        """
        result: BatchFetchResult[T] = BatchFetchResult()
        unique = list(dict.fromkeys(keys))
        if not unique:
            return result

        log = logger.bind(total=len(unique), max_concurrency=self._max_concurrency)
        log.debug("batch_fetch_started")
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _fetch(key: str) -> None:
            async with semaphore:
                try:
                    result.results[key] = await fetch_one(key)
                except Exception as e:
                    result.errors[key] = e
                    log.warning("batch_fetch_item_failed", key=key, error=str(e))

        await asyncio.gather(*(_fetch(key) for key in unique))

        log.debug(
            "batch_fetch_completed",
            successful=result.successful,
            failed=result.failed,
        )
        return result


__all__ = [
    "DEFAULT_MAX_CONCURRENCY",
    "MAX_CONCURRENCY_LIMIT",
    "BatchFetchResult",
    "BatchFetcher",
]
