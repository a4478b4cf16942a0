"""Marketplace record schemas.

These are the typed outputs a sync run hands to marketplace generation and
CLI rendering. They serialize with camelCase keys (``registryUrl``,
``canonicalTag``, ``generatedAt``) so the JSON matches what the marketplace
site consumes.

Key Components:
    PluginSource: One plugin entry from the sync configuration
    PluginVersion: A grouped version as published in the index
    MarketplacePlugin: Plugin metadata plus its versions
    MarketplaceIndex: Every plugin plus the generation timestamp
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shard_registry.schemas.registry import GroupedVersion


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class PluginSource(BaseModel):
    """A plugin to synchronize, as declared in the sync configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Plugin id")
    registry_url: str | None = Field(
        default=None,
        min_length=1,
        description=(
            "Repository holding the plugin releases (e.g. ghcr.io/owner/repo). "
            "Defaults to <namespace>/<id> of the sync configuration"
        ),
    )
    name: str = Field(..., min_length=1)
    author: str = Field(...)
    description: str = Field(default="")
    license: str | None = Field(default=None)
    min_obsidian_version: str | None = Field(default=None)
    author_url: str | None = Field(default=None)
    repository: str | None = Field(default=None)
    tags: list[str] | None = Field(default=None, description="Category tags")
    introduction: str | None = Field(default=None, description="Markdown introduction")


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PluginVersion(_CamelModel):
    """A version entry of a marketplace plugin."""

    canonical_tag: str
    additional_tags: list[str] = Field(default_factory=list)
    sha: str
    published_at: datetime | None = None
    size: int = Field(default=0, ge=0)
    annotations: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_grouped(cls, version: GroupedVersion) -> PluginVersion:
        """Convert a GroupedVersion into its published form."""
        return cls(
            canonical_tag=version.canonical_tag,
            additional_tags=list(version.additional_tags),
            sha=version.sha,
            published_at=version.published_at,
            size=version.size,
            annotations=dict(version.annotations),
        )


class MarketplacePlugin(_CamelModel):
    """Marketplace plugin information.

    Combines the configured plugin metadata with data from OCI annotations.
    """

    id: str
    registry_url: str
    name: str
    author: str
    description: str
    license: str | None = None
    min_obsidian_version: str | None = None
    author_url: str | None = None
    repository: str | None = None
    tags: list[str] | None = None
    introduction: str | None = None
    versions: list[PluginVersion] = Field(default_factory=list)


class MarketplaceIndex(_CamelModel):
    """Marketplace index containing all plugins."""

    plugins: list[MarketplacePlugin] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utc_now)

    def to_json(self, *, indent: int | None = 2) -> str:
        """Serialize the index with camelCase keys, omitting unset optionals."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)


__all__ = [
    "MarketplaceIndex",
    "MarketplacePlugin",
    "PluginSource",
    "PluginVersion",
]
