"""Unit tests for plugin annotation transforms."""

from __future__ import annotations

import pytest

from shard_registry.errors import FormatError
from shard_registry.marketplace.annotations import (
    PLUGIN_AUTHOR,
    PLUGIN_AUTHOR_URL,
    PLUGIN_DESCRIPTION,
    PLUGIN_ID,
    PLUGIN_MIN_APP_VERSION,
    PLUGIN_NAME,
    PLUGIN_SOURCE,
    annotations_to_plugin,
    generate_version_tags,
    ghcr_url_to_github_repo,
    repo_to_github_url,
)


class TestGithubUrls:
    """Tests for repository URL helpers."""

    @pytest.mark.requirement("annotations-urls")
    def test_repo_to_github_url(self) -> None:
        """Test owner/repo becomes a GitHub URL."""
        assert repo_to_github_url("owner/repo") == "https://github.com/owner/repo"
        with pytest.raises(FormatError):
            repo_to_github_url("repo")

    @pytest.mark.requirement("annotations-urls")
    @pytest.mark.parametrize(
        "url",
        ["ghcr.io/owner/repo", "https://ghcr.io/owner/repo/extra/path", "owner/repo"],
    )
    def test_ghcr_url_to_github_repo(self, url: str) -> None:
        """Test the first two path segments name the GitHub repository."""
        assert ghcr_url_to_github_repo(url) == "https://github.com/owner/repo"

    @pytest.mark.requirement("annotations-urls")
    @pytest.mark.parametrize("url", ["ghcr.io/owner", "ghcr.io/", ""])
    def test_ghcr_url_too_short(self, url: str) -> None:
        """Test URLs without owner and repo are rejected."""
        with pytest.raises(FormatError):
            ghcr_url_to_github_repo(url)


class TestGenerateVersionTags:
    """Tests for generate_version_tags."""

    @pytest.mark.requirement("annotations-version-tags")
    @pytest.mark.parametrize("version", ["2.36.1", "v2.36.1"])
    def test_tags(self, version: str) -> None:
        """Test the full, minor, major and latest tags are produced."""
        assert generate_version_tags(version) == ["2.36.1", "2.36", "2", "latest"]

    @pytest.mark.requirement("annotations-version-tags")
    @pytest.mark.parametrize("version", ["2.36", "latest", "1.0.0-beta", "v"])
    def test_invalid(self, version: str) -> None:
        """Test anything but X.Y.Z is rejected."""
        with pytest.raises(FormatError):
            generate_version_tags(version)


class TestAnnotationsToPlugin:
    """Tests for annotations_to_plugin."""

    @pytest.mark.requirement("annotations-plugin")
    def test_maps_fields(self) -> None:
        """Test annotation keys map onto MarketplacePlugin fields."""
        plugin = annotations_to_plugin(
            {
                PLUGIN_ID: "calendar",
                PLUGIN_NAME: "Calendar",
                PLUGIN_AUTHOR: "Liam",
                PLUGIN_DESCRIPTION: "Calendar view",
                PLUGIN_AUTHOR_URL: "https://example.com",
                PLUGIN_MIN_APP_VERSION: "0.9.11",
                PLUGIN_SOURCE: "https://github.com/owner/calendar",
            },
            "ghcr.io/owner/calendar",
        )

        assert plugin.id == "calendar"
        assert plugin.registry_url == "ghcr.io/owner/calendar"
        assert plugin.description == "Calendar view"
        assert plugin.min_obsidian_version == "0.9.11"
        assert plugin.repository == "https://github.com/owner/calendar"
        assert plugin.introduction is None
        assert plugin.versions == []

    @pytest.mark.requirement("annotations-plugin")
    def test_missing_required(self) -> None:
        """Test id, name and author are required."""
        with pytest.raises(FormatError, match=PLUGIN_AUTHOR):
            annotations_to_plugin({PLUGIN_ID: "x", PLUGIN_NAME: "X"}, "ghcr.io/o/x")
