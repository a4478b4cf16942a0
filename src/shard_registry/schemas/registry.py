"""Registry data model for shard-registry.

This module defines the Pydantic v2 schemas for parsed registry identifiers,
OCI manifest payloads and the per-tag version records produced by a sync run.

Key Components:
    RegistryIndex / RegistryRepo / RegistryImage: Parsed identifiers
    ManifestDescriptor: Layer/config blob reference inside a manifest
    ImageManifest / ManifestIndex: Typed manifest payloads
    TagMetadata: Metadata extracted from one tag's manifest
    RawVersion / GroupedVersion: Version records before and after grouping

Identifier models are immutable values. Manifest models ignore unknown
fields, since registries and artifact producers routinely add extra keys.

See Also:
    - shard_registry.oci.namespace: Produces the identifier models
    - shard_registry.marketplace.versions: Groups RawVersion into GroupedVersion
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Constants
# =============================================================================

DIGEST_PATTERN = r"^[a-z0-9+._-]+:[a-f0-9]+$"
"""Pattern every descriptor digest must match."""

SHA256_DIGEST_PATTERN = r"^sha256:[a-f0-9]{64}$"
"""Pattern for digests computed by this package."""

DEFAULT_INDEX_NAME = "docker.io"
"""Name of the official Docker Hub index."""

DEFAULT_INDEX_URL = "https://registry-1.docker.io"
"""API endpoint of the official Docker Hub index."""


# =============================================================================
# Identifier Schemas
# =============================================================================


class RegistryIndex(BaseModel):
    """A registry host.

    Examples:
        >>> index = RegistryIndex(name="ghcr.io", scheme="https", official=False)
        >>> index.url
        'https://ghcr.io'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(
        ...,
        min_length=1,
        description="Bare host[:port], never including a scheme",
    )
    scheme: Literal["http", "https"] = Field(
        default="https",
        description="URL scheme used to reach the registry API",
    )
    official: bool = Field(
        default=False,
        description="True only for the Docker Hub index",
    )

    @property
    def url(self) -> str:
        """Return the base URL of the registry API."""
        if self.official:
            return DEFAULT_INDEX_URL
        return f"{self.scheme}://{self.name}"


class RegistryRepo(BaseModel):
    """A repository (namespace) within an index."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    index: RegistryIndex = Field(..., description="Registry hosting the repository")
    official: bool = Field(
        default=False,
        description="True for library/ repositories on the official index",
    )
    remote_name: str = Field(
        ...,
        min_length=1,
        description="Repository path as used in /v2/<name>/ API URLs",
    )
    local_name: str = Field(..., description="Short display name")
    canonical_name: str = Field(
        ...,
        description="Fully qualified name, a pure function of index and remote_name",
    )

    @property
    def pull_scope(self) -> str:
        """Return the token scope needed to read this repository."""
        return f"repository:{self.remote_name}:pull"


class RegistryImage(RegistryRepo):
    """A repository plus an optional tag and/or digest reference."""

    tag: str | None = Field(default=None, description="Tag, if given")
    digest: str | None = Field(default=None, description="Digest, if given")
    canonical_ref: str = Field(
        ...,
        description="canonical_name with :tag and @digest suffixes when present",
    )

    @property
    def reference(self) -> str | None:
        """Return the reference that drives resolution (digest wins over tag)."""
        return self.digest or self.tag


# =============================================================================
# Manifest Schemas
# =============================================================================


class ManifestDescriptor(BaseModel):
    """Reference to a layer or config blob, or to a child manifest."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    media_type: str = Field(..., alias="mediaType", description="Blob media type")
    size: int = Field(..., ge=0, description="Blob size in bytes")
    digest: str = Field(..., pattern=DIGEST_PATTERN, description="Content digest")
    annotations: dict[str, str] | None = Field(
        default=None,
        description="Optional descriptor annotations",
    )
    platform: dict[str, object] | None = Field(
        default=None,
        description="Platform of a child manifest (index entries only)",
    )


class ImageManifest(BaseModel):
    """An OCI image manifest or Docker v2 schema 2 manifest."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    schema_version: int = Field(..., alias="schemaVersion")
    media_type: str | None = Field(default=None, alias="mediaType")
    artifact_type: str | None = Field(default=None, alias="artifactType")
    config: ManifestDescriptor | None = Field(default=None)
    layers: list[ManifestDescriptor] = Field(default_factory=list)
    annotations: dict[str, str] | None = Field(default=None)
    created: str | None = Field(
        default=None,
        description="Non-standard creation timestamp written by some publishers",
    )

    @property
    def is_index(self) -> bool:
        """Return False; image manifests are never indexes."""
        return False


class ManifestIndex(BaseModel):
    """An OCI image index or Docker manifest list.

    Child manifests are listed but never resolved recursively.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    schema_version: int = Field(..., alias="schemaVersion")
    media_type: str | None = Field(default=None, alias="mediaType")
    manifests: list[ManifestDescriptor] = Field(default_factory=list)
    annotations: dict[str, str] | None = Field(default=None)

    @property
    def is_index(self) -> bool:
        """Return True; this payload lists other manifests."""
        return True


# =============================================================================
# Version Schemas
# =============================================================================


class TagMetadata(BaseModel):
    """Metadata extracted from the manifest a tag points at."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    digest: str = Field(
        ...,
        pattern=SHA256_DIGEST_PATTERN,
        description="Verified content digest of the manifest",
    )
    published_at: datetime | None = Field(
        default=None,
        description="Publication timestamp, None when the manifest carries none",
    )
    size: int = Field(..., ge=0, description="Sum of all layer sizes in bytes")
    annotations: dict[str, str] = Field(
        default_factory=dict,
        description="Manifest annotations (empty when absent)",
    )


class RawVersion(BaseModel):
    """One tag's resolved data, before grouping by digest."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tag: str = Field(..., min_length=1)
    sha: str = Field(..., description="Verified content digest of the manifest")
    published_at: datetime | None = Field(default=None)
    size: int = Field(default=0, ge=0)
    annotations: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_metadata(cls, tag: str, metadata: TagMetadata) -> RawVersion:
        """Build a RawVersion from a tag and its fetched metadata."""
        return cls(
            tag=tag,
            sha=metadata.digest,
            published_at=metadata.published_at,
            size=metadata.size,
            annotations=dict(metadata.annotations),
        )


class GroupedVersion(BaseModel):
    """A set of tags resolving to the same content, under one canonical tag."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sha: str = Field(..., description="Content digest shared by every tag in the group")
    canonical_tag: str = Field(..., description="Highest-priority tag of the group")
    additional_tags: list[str] = Field(
        default_factory=list,
        description="Remaining tags in priority order, excluding canonical_tag",
    )
    published_at: datetime | None = Field(default=None)
    size: int = Field(default=0, ge=0)
    annotations: dict[str, str] = Field(default_factory=dict)

    @property
    def tags(self) -> list[str]:
        """Return every tag of the group, canonical first."""
        return [self.canonical_tag, *self.additional_tags]


__all__ = [
    "DEFAULT_INDEX_NAME",
    "DEFAULT_INDEX_URL",
    "DIGEST_PATTERN",
    "SHA256_DIGEST_PATTERN",
    "GroupedVersion",
    "ImageManifest",
    "ManifestDescriptor",
    "ManifestIndex",
    "RawVersion",
    "RegistryImage",
    "RegistryIndex",
    "RegistryRepo",
    "TagMetadata",
]
