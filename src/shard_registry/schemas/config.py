"""Configuration schemas for the registry client and marketplace sync.

Key Components:
    RetryConfig: Backoff settings for the convenience retry wrappers
    RegistryClientConfig: Defaults applied by ManifestClient
    SyncConfig: A marketplace sync run, loadable from YAML

Examples:
    >>> config = SyncConfig.from_yaml("marketplace.yaml")
    >>> config.registry.max_concurrency
    8
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shard_registry.errors import FormatError
from shard_registry.schemas.marketplace import PluginSource

if TYPE_CHECKING:
    from shard_registry.oci.auth import Credentials

DEFAULT_NAMESPACE = "ghcr.io/shard-for-obsidian/shard/community-plugins"
"""Namespace that holds community plugin repositories."""

DEFAULT_USER_AGENT = "shard-registry/0.1.0"
"""User-Agent sent by the default transport."""


class RetryConfig(BaseModel):
    """Retry policy configuration for transient failures.

    Uses exponential backoff with optional jitter to prevent thundering herd.

    Examples:
        >>> config = RetryConfig(max_attempts=5, initial_delay_ms=500)
        >>> config.initial_delay_ms
        500
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of attempts, including the first",
    )
    initial_delay_ms: int = Field(
        default=1000,
        ge=100,
        description="Initial delay between retries in milliseconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Multiplier for exponential backoff",
    )
    max_delay_ms: int = Field(
        default=30000,
        ge=1000,
        description="Maximum delay cap in milliseconds",
    )
    jitter: bool = Field(
        default=True,
        description="Add random jitter to delays to prevent thundering herd",
    )


class RegistryClientConfig(BaseModel):
    """Defaults applied by ManifestClient when a call does not override them.

    Examples:
        >>> config = RegistryClientConfig(default_index="ghcr.io", page_size=100)
        >>> config.token_ttl_seconds
        60.0
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_index: str = Field(
        default="docker.io",
        min_length=1,
        description="Index used when an identifier has no INDEX/ prefix",
    )
    page_size: int | None = Field(
        default=None,
        ge=1,
        le=1000,
        description="Tags requested per page (the n= query parameter)",
    )
    page_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of tag pages to fetch",
    )
    timeout_seconds: float | None = Field(
        default=30.0,
        gt=0,
        description="Deadline applied to a call that passes none",
    )
    token_ttl_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Bearer token lifetime when the issuer sends no expires_in",
    )
    max_concurrency: int = Field(
        default=8,
        ge=1,
        le=20,
        description="In-flight manifest fetches for fetch_versions",
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        min_length=1,
        description="User-Agent sent by HttpxTransport.from_config",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)


class SyncConfig(BaseModel):
    """Configuration for one marketplace sync run.

    Examples:
        >>> config = SyncConfig(plugins=[PluginSource(
        ...     id="calendar",
        ...     registry_url="ghcr.io/owner/calendar",
        ...     name="Calendar",
        ...     author="Jane",
        ...     description="A calendar view",
        ... )])
        >>> config.plugin_concurrency
        4
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    namespace: str = Field(
        default=DEFAULT_NAMESPACE,
        description="Namespace under which plugin repositories live",
    )
    registry: RegistryClientConfig = Field(
        default_factory=lambda: RegistryClientConfig(default_index="ghcr.io"),
    )
    plugin_concurrency: int = Field(
        default=4,
        ge=1,
        le=20,
        description="Plugins synchronized concurrently",
    )
    token_env: str = Field(
        default="GITHUB_TOKEN",
        min_length=1,
        description="Environment variable holding the registry token",
    )
    plugins: list[PluginSource] = Field(default_factory=list)

    @field_validator("plugins")
    @classmethod
    def validate_unique_ids(cls, v: list[PluginSource]) -> list[PluginSource]:
        """Reject duplicate plugin ids."""
        seen: set[str] = set()
        for plugin in v:
            if plugin.id in seen:
                raise ValueError(f"duplicate plugin id '{plugin.id}'")
            seen.add(plugin.id)
        return v

    @classmethod
    def from_yaml(cls, path: str | Path) -> SyncConfig:
        """Load a SyncConfig from a YAML file.

        Args:
            path: Path to the YAML document.

        Returns:
            The validated configuration.

        Raises:
            FormatError: If the file is missing, is not YAML, or fails validation.
        """
        config_path = Path(path)
        try:
            raw: Any = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except OSError as e:
            raise FormatError(f"Cannot read sync config {config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise FormatError(f"Invalid YAML in {config_path}: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise FormatError(f"Sync config {config_path} must be a mapping")
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise FormatError(f"Invalid sync config {config_path}: {e}") from e

    def credentials(self, environ: Mapping[str, str] | None = None) -> Credentials | None:
        """Return token credentials from the environment, if set.

        Args:
            environ: Environment mapping. Defaults to ``os.environ``.

        Returns:
            Credentials built from the token, or None for anonymous access.
        """
        from shard_registry.oci.auth import Credentials

        env = os.environ if environ is None else environ
        token = env.get(self.token_env, "").strip()
        if not token:
            return None
        return Credentials.from_token(token)


__all__ = [
    "DEFAULT_NAMESPACE",
    "DEFAULT_USER_AGENT",
    "RegistryClientConfig",
    "RetryConfig",
    "SyncConfig",
]
