"""OCI registry protocol client.

This package implements the read side of the OCI Distribution API used to
synchronize plugin releases: identifier parsing, challenge/response
authentication, Link-header tag pagination and digest-verified manifest
fetches.

Example:
    >>> from shard_registry.oci import HttpxTransport, ManifestClient
    >>> async with HttpxTransport() as transport:
    ...     client = ManifestClient(transport)
    ...     result = await client.get_manifest("ghcr.io/owner/repo:1.0.0")
    >>> result.digest
    'sha256:...'
"""

from __future__ import annotations

from shard_registry.oci.auth import (
    AuthChallenge,
    AuthInfo,
    AuthNegotiator,
    AuthScheme,
    AuthState,
    BasicAuth,
    BearerAuth,
    Credentials,
    NoAuth,
    TokenCache,
    parse_www_authenticate,
)
from shard_registry.oci.batch_fetcher import BatchFetcher, BatchFetchResult
from shard_registry.oci.client import ManifestClient, ManifestResult, VersionFetchResult
from shard_registry.oci.manifest import (
    MANIFEST_ACCEPT,
    calculate_digest,
    calculate_layers_total_size,
    parse_created_timestamp,
    parse_manifest,
)
from shard_registry.oci.metrics import RegistryMetrics
from shard_registry.oci.namespace import (
    DEFAULT_TAG,
    normalize,
    parse_index,
    parse_repo,
    parse_repo_and_ref,
    plugin_repository,
)
from shard_registry.oci.pagination import TagPage, TagPager, parse_link_header
from shard_registry.oci.resilience import RetryPolicy
from shard_registry.oci.transport import HttpxTransport, Transport, TransportResponse

__all__ = [
    "DEFAULT_TAG",
    "MANIFEST_ACCEPT",
    "AuthChallenge",
    "AuthInfo",
    "AuthNegotiator",
    "AuthScheme",
    "AuthState",
    "BasicAuth",
    "BatchFetchResult",
    "BatchFetcher",
    "BearerAuth",
    "Credentials",
    "HttpxTransport",
    "ManifestClient",
    "ManifestResult",
    "NoAuth",
    "RegistryMetrics",
    "RetryPolicy",
    "TagPage",
    "TagPager",
    "TokenCache",
    "Transport",
    "TransportResponse",
    "VersionFetchResult",
    "calculate_digest",
    "calculate_layers_total_size",
    "normalize",
    "parse_created_timestamp",
    "parse_index",
    "parse_link_header",
    "parse_manifest",
    "parse_repo",
    "parse_repo_and_ref",
    "parse_www_authenticate",
    "plugin_repository",
]
