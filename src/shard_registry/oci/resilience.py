"""Retry with exponential backoff for the convenience entry points.

Low-level registry primitives fail fast on the first error. Only the
caller-facing convenience layers (``ManifestClient.fetch_versions`` and the
marketplace sync) wrap calls in a RetryPolicy, and only transient failures
are retried: deadline overruns, unreachable registries, 429 and 5xx
responses.

Key Components:
    RetryPolicy: Exponential backoff with jitter for transient failures

Design Principles:
- Non-blocking: All delays use asyncio.sleep, so cancellation interrupts backoff
- Configurable: Uses RetryConfig from schemas

Example:
    >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
    >>>
    >>> @policy.wrap
    ... async def fetch(tag: str) -> TagMetadata:
    ...     return await client.query_tag_metadata(repo, tag)
    >>>
    >>> metadata = await policy.call(client.query_tag_metadata, repo, "1.0.0")
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import structlog

from shard_registry.errors import RateLimitError, is_retryable
from shard_registry.schemas.config import RetryConfig

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    Retry Timeline (default config):
    - Attempt 1: Immediate
    - Attempt 2: ~1s delay (with jitter)
    - Attempt 3: ~2s delay (with jitter)

    A RateLimitError carrying ``retry_after`` waits that long instead,
    capped at ``max_delay_ms``.

    Attributes:
        config: RetryConfig with max_attempts, delays, and jitter settings.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable: Callable[[BaseException], bool] | None = None,
    ) -> None:
        """Initialize RetryPolicy.

        Args:
            config: Retry configuration. Uses defaults if None.
            retryable: Predicate deciding whether an exception is transient.
                Defaults to ``is_retryable``.
        """
        self._config = config or RetryConfig()
        self._retryable = retryable or is_retryable

    @property
    def config(self) -> RetryConfig:
        """Return the retry configuration."""
        return self._config

    def calculate_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Calculate delay before next retry attempt.

        Uses exponential backoff: delay = initial * (multiplier ^ attempt)
        Optionally adds jitter (±25%) to prevent thundering herd.

        Args:
            attempt: Current attempt number (0-indexed).
            error: The failure being retried, consulted for ``retry_after``.

        Returns:
            Delay in seconds.
        """
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, self._config.max_delay_ms / 1000.0)

        base_delay_ms = min(
            self._config.initial_delay_ms * (self._config.backoff_multiplier**attempt),
            self._config.max_delay_ms,
        )

        if self._config.jitter:
            # Add ±25% jitter
            jitter_range = base_delay_ms * 0.25
            base_delay_ms += random.uniform(-jitter_range, jitter_range)

        return base_delay_ms / 1000.0

    def should_retry(self, exception: BaseException) -> bool:
        """Check if exception is retryable."""
        return self._retryable(exception)

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Await ``func(*args, **kwargs)``, retrying transient failures.

        Raises:
            Exception: The last failure once attempts are exhausted, or the
                first non-retryable failure.
        """
        max_attempts = self._config.max_attempts
        for attempt in range(max_attempts):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(e):
                    raise
                remaining = max_attempts - attempt - 1
                if remaining == 0:
                    logger.warning(
                        "retry_exhausted",
                        attempts=max_attempts,
                        error=str(e),
                    )
                    raise
                delay = self.calculate_delay(attempt, e)
                logger.debug(
                    "retry_attempt",
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

        # Should not reach here, max_attempts is at least 1
        raise RuntimeError("Retry exhausted without exception")

    def wrap(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """Decorator to wrap a coroutine function with retry logic.

        Example:
            >>> @policy.wrap
            ... async def fetch_manifest():
            ...     return await client.get_manifest(repo, "v1.0.0")
        """

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.call(func, *args, **kwargs)

        return wrapper


__all__ = ["RetryPolicy"]
