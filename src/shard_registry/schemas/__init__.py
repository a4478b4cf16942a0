"""Pydantic schemas for shard-registry.

Submodules:
    registry: Identifier, manifest and version models
    config: Client and sync configuration
    marketplace: Marketplace index records
"""

from __future__ import annotations

from shard_registry.schemas.config import (
    DEFAULT_NAMESPACE,
    RegistryClientConfig,
    RetryConfig,
    SyncConfig,
)
from shard_registry.schemas.marketplace import (
    MarketplaceIndex,
    MarketplacePlugin,
    PluginSource,
    PluginVersion,
)
from shard_registry.schemas.registry import (
    GroupedVersion,
    ImageManifest,
    ManifestDescriptor,
    ManifestIndex,
    RawVersion,
    RegistryImage,
    RegistryIndex,
    RegistryRepo,
    TagMetadata,
)

__all__ = [
    "DEFAULT_NAMESPACE",
    "GroupedVersion",
    "ImageManifest",
    "ManifestDescriptor",
    "ManifestIndex",
    "MarketplaceIndex",
    "MarketplacePlugin",
    "PluginSource",
    "PluginVersion",
    "RawVersion",
    "RegistryClientConfig",
    "RegistryImage",
    "RegistryIndex",
    "RegistryRepo",
    "RetryConfig",
    "SyncConfig",
    "TagMetadata",
]
