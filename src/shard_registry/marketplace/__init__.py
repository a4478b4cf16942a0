"""Marketplace version reconciliation and sync.

Example:
    >>> from shard_registry.marketplace import group_versions_by_sha
    >>> groups = group_versions_by_sha(result.versions)
"""

from __future__ import annotations

from shard_registry.marketplace.annotations import (
    annotations_to_plugin,
    generate_version_tags,
    ghcr_url_to_github_repo,
    repo_to_github_url,
)
from shard_registry.marketplace.sync import MarketplaceSync, PluginSyncResult, SyncReport
from shard_registry.marketplace.versions import (
    group_versions_by_sha,
    sort_tags_by_priority,
    tag_priority_key,
)

__all__ = [
    "MarketplaceSync",
    "PluginSyncResult",
    "SyncReport",
    "annotations_to_plugin",
    "generate_version_tags",
    "ghcr_url_to_github_repo",
    "group_versions_by_sha",
    "repo_to_github_url",
    "sort_tags_by_priority",
    "tag_priority_key",
]
