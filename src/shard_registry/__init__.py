"""shard-registry: OCI registry client and marketplace sync for Obsidian plugins.

This package provides:
- ManifestClient: Tag listing, verified manifest fetches and tag metadata
- AuthNegotiator: Basic/Bearer challenge negotiation with a token cache
- normalize, parse_repo, parse_repo_and_ref: Registry identifier parsing
- sort_tags_by_priority, group_versions_by_sha: Version reconciliation
- MarketplaceSync: Batch sync of plugin versions into a marketplace index
- Errors: RegistryError hierarchy with a stable ErrorKind (shard_registry.errors)
- Schemas: Pydantic models for identifiers, manifests and config (shard_registry.schemas)

Example:
    >>> from shard_registry import HttpxTransport, ManifestClient, group_versions_by_sha
    >>> async with HttpxTransport() as transport:
    ...     client = ManifestClient(transport)
    ...     result = await client.fetch_versions("ghcr.io/owner/repo")
    >>> groups = group_versions_by_sha(result.versions)

See Also:
    - shard_registry.oci: Registry protocol client
    - shard_registry.marketplace: Version reconciliation and sync
    - shard_registry.telemetry: structlog configuration with trace context
"""

from __future__ import annotations

__version__ = "0.1.0"

from shard_registry.errors import (
    AuthError,
    DigestMismatchError,
    ErrorKind,
    FormatError,
    HttpError,
    NotFoundError,
    ProtocolError,
    RateLimitError,
    RegistryError,
    RegistryTimeoutError,
    RegistryUnavailableError,
    UnsupportedManifestError,
)
from shard_registry.marketplace import (
    MarketplaceSync,
    SyncReport,
    group_versions_by_sha,
    sort_tags_by_priority,
)
from shard_registry.oci import (
    AuthNegotiator,
    Credentials,
    HttpxTransport,
    ManifestClient,
    ManifestResult,
    Transport,
    TransportResponse,
    VersionFetchResult,
    normalize,
    parse_repo,
    parse_repo_and_ref,
)
from shard_registry.schemas import (
    GroupedVersion,
    RawVersion,
    RegistryClientConfig,
    RegistryImage,
    RegistryRepo,
    SyncConfig,
    TagMetadata,
)
from shard_registry.telemetry import configure_logging

__all__ = [
    "__version__",
    "AuthError",
    "AuthNegotiator",
    "Credentials",
    "DigestMismatchError",
    "ErrorKind",
    "FormatError",
    "GroupedVersion",
    "HttpError",
    "HttpxTransport",
    "ManifestClient",
    "ManifestResult",
    "MarketplaceSync",
    "NotFoundError",
    "ProtocolError",
    "RateLimitError",
    "RawVersion",
    "RegistryClientConfig",
    "RegistryError",
    "RegistryImage",
    "RegistryRepo",
    "RegistryTimeoutError",
    "RegistryUnavailableError",
    "SyncConfig",
    "SyncReport",
    "TagMetadata",
    "Transport",
    "TransportResponse",
    "UnsupportedManifestError",
    "VersionFetchResult",
    "configure_logging",
    "group_versions_by_sha",
    "normalize",
    "parse_repo",
    "parse_repo_and_ref",
    "sort_tags_by_priority",
]
