"""OpenTelemetry metrics and spans for registry operations.

Metrics Emitted:
    Counters:
        - shard_registry_operations_total: Operations by type, status and registry
        - shard_registry_token_requests_total: Token lookups by outcome
          (hit, fetched, rejected)

    Histograms:
        - shard_registry_operation_duration_seconds: Operation duration distribution
        - shard_registry_tags_listed: Tags returned per listing

Trace Spans:
    - shard.registry.list_tags: One tag page request
    - shard.registry.get_manifest: Manifest fetch and verification
    - shard.registry.query_tag_metadata: Per-tag metadata extraction
    - shard.registry.auth: Token endpoint exchange
    - shard.registry.sync: One plugin of a marketplace sync

Only the OpenTelemetry API is used, so instrumentation is a no-op until the
host application installs an SDK.

Example:
    >>> metrics = RegistryMetrics()
    >>> with metrics.operation_timer("get_manifest", "ghcr.io"):
    ...     result = await client.get_manifest(repo, "v1.0.0")
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.metrics import Counter, Histogram
    from opentelemetry.trace import Span, Tracer


class RegistryMetrics:
    """OpenTelemetry instrumentation for the registry client.

    Label Conventions:
        - operation: list_tags, get_manifest, query_tag_metadata, token
        - status: success, failure
        - registry: Registry hostname (e.g., ghcr.io)
        - outcome: hit, fetched, rejected (token requests)
    """

    OPERATIONS_TOTAL = "shard_registry_operations_total"
    TOKEN_REQUESTS_TOTAL = "shard_registry_token_requests_total"
    OPERATION_DURATION_SECONDS = "shard_registry_operation_duration_seconds"
    TAGS_LISTED = "shard_registry_tags_listed"

    SPAN_LIST_TAGS = "shard.registry.list_tags"
    SPAN_GET_MANIFEST = "shard.registry.get_manifest"
    SPAN_QUERY_TAG_METADATA = "shard.registry.query_tag_metadata"
    SPAN_AUTH = "shard.registry.auth"
    SPAN_SYNC = "shard.registry.sync"

    def __init__(
        self,
        meter_name: str = "shard.registry",
        meter_version: str = "0.1.0",
        tracer_name: str = "shard.registry",
    ) -> None:
        """Bind to the global meter and tracer providers.

        Args:
            meter_name: Instrumentation scope of the meter.
            meter_version: Version reported with the meter scope.
            tracer_name: Instrumentation scope of the tracer.
        """
        self._meter = metrics.get_meter(meter_name, meter_version)
        self._tracer: Tracer = trace.get_tracer(tracer_name)

        self._operations_counter: Counter | None = None
        self._token_counter: Counter | None = None
        self._duration_histogram: Histogram | None = None
        self._tags_histogram: Histogram | None = None

    @property
    def operations_counter(self) -> Counter:
        """Counter of finished operations, created on first use."""
        if self._operations_counter is None:
            self._operations_counter = self._meter.create_counter(
                self.OPERATIONS_TOTAL,
                unit="1",
                description="Total number of registry operations by type, status, and registry",
            )
        return self._operations_counter

    @property
    def token_counter(self) -> Counter:
        """Counter of token lookups, created on first use."""
        if self._token_counter is None:
            self._token_counter = self._meter.create_counter(
                self.TOKEN_REQUESTS_TOTAL,
                unit="1",
                description="Bearer token lookups by outcome",
            )
        return self._token_counter

    @property
    def duration_histogram(self) -> Histogram:
        """Histogram of operation durations, created on first use."""
        if self._duration_histogram is None:
            self._duration_histogram = self._meter.create_histogram(
                self.OPERATION_DURATION_SECONDS,
                unit="s",
                description="Duration of registry operations in seconds",
            )
        return self._duration_histogram

    @property
    def tags_histogram(self) -> Histogram:
        """Histogram of tags per listing, created on first use."""
        if self._tags_histogram is None:
            self._tags_histogram = self._meter.create_histogram(
                self.TAGS_LISTED,
                unit="1",
                description="Number of tags returned by a tag listing",
            )
        return self._tags_histogram

    def record_operation(self, operation: str, registry: str, *, success: bool) -> None:
        """Record a registry operation completion."""
        self.operations_counter.add(
            1,
            attributes={
                "operation": operation,
                "registry": registry,
                "status": "success" if success else "failure",
            },
        )

    def record_duration(self, operation: str, registry: str, duration_seconds: float) -> None:
        """Record the duration of a registry operation."""
        self.duration_histogram.record(
            duration_seconds,
            attributes={"operation": operation, "registry": registry},
        )

    def record_token_request(self, registry: str, outcome: str) -> None:
        """Record a bearer token lookup (hit, fetched or rejected)."""
        self.token_counter.add(1, attributes={"registry": registry, "outcome": outcome})

    def record_tags_listed(self, registry: str, count: int) -> None:
        """Record how many tags a listing produced."""
        self.tags_histogram.record(count, attributes={"registry": registry})

    @contextmanager
    def operation_timer(self, operation: str, registry: str) -> Generator[None, None, None]:
        """Time an operation and record its duration and outcome.

        Example:
            >>> with metrics.operation_timer("get_manifest", "ghcr.io"):
            ...     await fetch()
        """
        start_time = time.monotonic()
        success = False
        try:
            yield
            success = True
        finally:
            self.record_duration(operation, registry, time.monotonic() - start_time)
            self.record_operation(operation, registry, success=success)

    @contextmanager
    def create_span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        """Create a trace span that records exceptions raised inside it.

        Args:
            name: One of the SPAN_* names.
            attributes: Attributes to set; None values are skipped.

        Yields:
            The active span.
        """
        with self._tracer.start_as_current_span(name) as span:
            if attributes:
                for key, value in attributes.items():
                    if value is not None:
                        span.set_attribute(key, value)
            try:
                yield span
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


__all__ = ["RegistryMetrics"]
