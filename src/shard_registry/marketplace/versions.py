"""Version reconciliation: collapse tags that share content.

A release is usually pushed under several tags (``1.2.3``, ``1.2``, ``1``,
``latest``) that all resolve to one manifest digest. Grouping by digest turns
those into one GroupedVersion whose canonical tag is the highest-priority
tag of the group.

Priority:
    1. Tags starting with a full ``X.Y.Z`` version rank above all others.
    2. Within a class, tags compare segment by segment, digit runs
       numerically and text case-insensitively, in descending order, so
       ``10.0.0`` ranks above ``2.0.0``.
    3. Equal tags keep their input order.

Example:
    >>> sort_tags_by_priority(["latest", "1.2", "1.2.3"])
    ['1.2.3', 'latest', '1.2']
"""

from __future__ import annotations

import re
from collections.abc import Iterable

import structlog

from shard_registry.schemas.registry import GroupedVersion, RawVersion

logger = structlog.get_logger(__name__)

SEMVER_PREFIX = re.compile(r"^\d+\.\d+\.\d+")
"""Tags matching this pattern rank above all others."""

_SEGMENTS = re.compile(r"(\d+)")


def tag_priority_key(tag: str) -> tuple[bool, tuple[tuple[int, int, str], ...]]:
    """Return the sort key of ``tag``; larger keys have higher priority."""
    segments: list[tuple[int, int, str]] = []
    for part in _SEGMENTS.split(tag):
        if not part:
            continue
        if part.isdecimal():
            # digits sort before letters
            segments.append((0, int(part), ""))
        else:
            segments.append((1, 0, part.casefold()))
    return bool(SEMVER_PREFIX.match(tag)), tuple(segments)


def sort_tags_by_priority(tags: Iterable[str]) -> list[str]:
    """Sort tags from highest to lowest priority.

    Returns a new list; the input is not modified. The sort is stable.

    Example:
        >>> sort_tags_by_priority(["1.0.0", "2.0.0", "1.5.0"])
        ['2.0.0', '1.5.0', '1.0.0']
    """
    return sorted(tags, key=tag_priority_key, reverse=True)


def _diverges(first: RawVersion, other: RawVersion) -> bool:
    return (
        first.size != other.size
        or first.published_at != other.published_at
        or first.annotations != other.annotations
    )


def group_versions_by_sha(versions: Iterable[RawVersion]) -> list[GroupedVersion]:
    """Group raw versions by exact digest and pick a canonical tag per group.

    Metadata (size, publication time, annotations) comes from the first
    version seen for each digest. Later tags reporting different metadata
    for the same digest are logged as ``version_metadata_diverged`` and
    otherwise ignored.

    Args:
        versions: Raw per-tag versions, in discovery order.

    Returns:
        Groups sorted by canonical tag, highest priority first.

    Example:
        >>> groups = group_versions_by_sha([
        ...     RawVersion(tag="1.2.3", sha="sha256:abc123"),
        ...     RawVersion(tag="latest", sha="sha256:abc123"),
        ... ])
        >>> groups[0].canonical_tag, groups[0].additional_tags
        ('1.2.3', ['latest'])
    """
    first_seen: dict[str, RawVersion] = {}
    tags_by_sha: dict[str, list[str]] = {}

    for version in versions:
        first = first_seen.setdefault(version.sha, version)
        tags_by_sha.setdefault(version.sha, []).append(version.tag)
        if first is not version and _diverges(first, version):
            logger.warning(
                "version_metadata_diverged",
                sha=version.sha,
                kept_tag=first.tag,
                ignored_tag=version.tag,
            )

    groups: list[GroupedVersion] = []
    for sha, tags in tags_by_sha.items():
        ordered = sort_tags_by_priority(tags)
        first = first_seen[sha]
        groups.append(
            GroupedVersion(
                sha=sha,
                canonical_tag=ordered[0],
                additional_tags=ordered[1:],
                published_at=first.published_at,
                size=first.size,
                annotations=dict(first.annotations),
            )
        )

    return sorted(groups, key=lambda group: tag_priority_key(group.canonical_tag), reverse=True)


__all__ = [
    "SEMVER_PREFIX",
    "group_versions_by_sha",
    "sort_tags_by_priority",
    "tag_priority_key",
]
