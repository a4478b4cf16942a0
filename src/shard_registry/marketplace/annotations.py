"""Plugin annotation keys and annotation-to-record transforms.

Plugin releases carry their metadata as OCI manifest annotations under the
``vnd.obsidianmd.plugin.*`` prefix, alongside the standard
``org.opencontainers.image.*`` keys.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from shard_registry.errors import FormatError
from shard_registry.schemas.marketplace import MarketplacePlugin

PLUGIN_ID = "vnd.obsidianmd.plugin.id"
PLUGIN_NAME = "vnd.obsidianmd.plugin.name"
PLUGIN_VERSION = "vnd.obsidianmd.plugin.version"
PLUGIN_DESCRIPTION = "vnd.obsidianmd.plugin.description"
PLUGIN_AUTHOR = "vnd.obsidianmd.plugin.author"
PLUGIN_AUTHOR_URL = "vnd.obsidianmd.plugin.author-url"
PLUGIN_SOURCE = "vnd.obsidianmd.plugin.source"
PLUGIN_PUBLISHED_AT = "vnd.obsidianmd.plugin.published-at"
PLUGIN_INTRODUCTION = "vnd.obsidianmd.plugin.introduction"
PLUGIN_FUNDING_URL = "vnd.obsidianmd.plugin.funding-url"
PLUGIN_IS_DESKTOP_ONLY = "vnd.obsidianmd.plugin.is-desktop-only"
PLUGIN_MIN_APP_VERSION = "vnd.obsidianmd.plugin.min-app-version"
IMAGE_SOURCE = "org.opencontainers.image.source"
IMAGE_TITLE = "org.opencontainers.image.title"
IMAGE_DESCRIPTION = "org.opencontainers.image.description"
IMAGE_CREATED = "org.opencontainers.image.created"

_VERSION = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


def repo_to_github_url(repo: str) -> str:
    """Convert ``owner/repo`` into ``https://github.com/owner/repo``.

    Raises:
        FormatError: If ``repo`` has no ``/``.
    """
    if "/" not in repo:
        raise FormatError(f'Invalid repo format: {repo}. Expected "owner/repo"')
    return f"https://github.com/{repo}"


def ghcr_url_to_github_repo(registry_url: str) -> str:
    """Derive the GitHub repository URL from a GHCR repository.

    Example:
        >>> ghcr_url_to_github_repo("ghcr.io/owner/repo/path")
        'https://github.com/owner/repo'

    Raises:
        FormatError: If fewer than two path segments follow the host.
    """
    path = re.sub(r"^https?://", "", registry_url.strip())
    path = re.sub(r"^ghcr\.io/", "", path)
    segments = [segment for segment in path.split("/") if segment]
    if len(segments) < 2:
        raise FormatError(f"Invalid GHCR URL: {registry_url}")
    return f"https://github.com/{segments[0]}/{segments[1]}"


def generate_version_tags(version: str) -> list[str]:
    """Return the tags a release of ``version`` is published under.

    Example:
        >>> generate_version_tags("v2.36.1")
        ['2.36.1', '2.36', '2', 'latest']

    Raises:
        FormatError: If ``version`` is not ``X.Y.Z`` (optionally ``v``-prefixed).
    """
    clean = version[1:] if version.startswith("v") else version
    match = _VERSION.match(clean)
    if match is None:
        raise FormatError(f"Invalid semantic version format: {version}. Expected format: X.Y.Z")
    major, minor, _ = match.groups()
    return [clean, f"{major}.{minor}", major, "latest"]


def annotations_to_plugin(annotations: Mapping[str, str], registry_url: str) -> MarketplacePlugin:
    """Build a MarketplacePlugin from a release's annotations.

    Args:
        annotations: Manifest annotations of the release.
        registry_url: Repository the release lives in.

    Raises:
        FormatError: If the id, name or author annotation is missing.
    """
    missing = [key for key in (PLUGIN_ID, PLUGIN_NAME, PLUGIN_AUTHOR) if not annotations.get(key)]
    if missing:
        raise FormatError(f"Missing plugin annotations: {', '.join(missing)}")

    return MarketplacePlugin(
        id=annotations[PLUGIN_ID],
        registry_url=registry_url,
        name=annotations[PLUGIN_NAME],
        author=annotations[PLUGIN_AUTHOR],
        description=annotations.get(PLUGIN_DESCRIPTION, ""),
        author_url=annotations.get(PLUGIN_AUTHOR_URL) or None,
        min_obsidian_version=annotations.get(PLUGIN_MIN_APP_VERSION) or None,
        repository=annotations.get(PLUGIN_SOURCE) or None,
        introduction=annotations.get(PLUGIN_INTRODUCTION) or None,
    )


__all__ = [
    "IMAGE_CREATED",
    "IMAGE_DESCRIPTION",
    "IMAGE_SOURCE",
    "IMAGE_TITLE",
    "PLUGIN_AUTHOR",
    "PLUGIN_AUTHOR_URL",
    "PLUGIN_DESCRIPTION",
    "PLUGIN_FUNDING_URL",
    "PLUGIN_ID",
    "PLUGIN_INTRODUCTION",
    "PLUGIN_IS_DESKTOP_ONLY",
    "PLUGIN_MIN_APP_VERSION",
    "PLUGIN_NAME",
    "PLUGIN_PUBLISHED_AT",
    "PLUGIN_SOURCE",
    "PLUGIN_VERSION",
    "annotations_to_plugin",
    "generate_version_tags",
    "ghcr_url_to_github_repo",
    "repo_to_github_url",
]
