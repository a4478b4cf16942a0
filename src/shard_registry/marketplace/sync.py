"""Batch marketplace sync.

Builds a MarketplaceIndex from the configured plugin sources by resolving
every plugin's tags against the registry and grouping them into versions.
Plugins are processed concurrently under a cap. A plugin that fails never
blocks the others: it is still emitted (without versions) and its error is
reported in the SyncReport.

Example:
    >>> config = SyncConfig.from_yaml("marketplace.yaml")
    >>> async with HttpxTransport.from_config(config.registry) as transport:
    ...     client = ManifestClient(
    ...         transport,
    ...         credentials=config.credentials(),
    ...         config=config.registry,
    ...     )
    ...     report = await MarketplaceSync(client, config).sync()
    >>> sys.exit(report.exit_code)
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from shard_registry.errors import FormatError, RegistryError
from shard_registry.marketplace.annotations import annotations_to_plugin
from shard_registry.marketplace.versions import group_versions_by_sha
from shard_registry.oci.client import ManifestClient
from shard_registry.oci.metrics import RegistryMetrics
from shard_registry.oci.namespace import normalize, plugin_repository
from shard_registry.schemas.config import SyncConfig
from shard_registry.schemas.marketplace import (
    MarketplaceIndex,
    MarketplacePlugin,
    PluginSource,
    PluginVersion,
)
from shard_registry.schemas.registry import GroupedVersion

logger = structlog.get_logger(__name__)


@dataclass
class PluginSyncResult:
    """Outcome of synchronizing one plugin.

    Attributes:
        plugin: The marketplace record (without versions if the listing failed).
        error: Failure that prevented listing the plugin's tags, if any.
        tag_errors: Per-tag metadata failures.
    """

    plugin: MarketplacePlugin
    error: Exception | None = None
    tag_errors: dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None and not self.tag_errors


@dataclass
class SyncReport:
    """Outcome of a sync run.

    Attributes:
        index: The generated marketplace index.
        failures: Plugin id to the error that prevented listing its tags.
        tag_failures: Plugin id to its per-tag failures.
    """

    index: MarketplaceIndex
    failures: dict[str, Exception] = field(default_factory=dict)
    tag_failures: dict[str, dict[str, Exception]] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        """Return 0 on full success, else an exit code for the first failure."""
        for error in self.failures.values():
            return error.exit_code if isinstance(error, RegistryError) else 1
        return 1 if self.tag_failures else 0


def _merge_annotations(plugin: MarketplacePlugin, versions: Sequence[GroupedVersion]) -> MarketplacePlugin:
    """Fill optional fields the source left empty from the newest annotations."""
    if not versions:
        return plugin
    try:
        annotated = annotations_to_plugin(versions[0].annotations, plugin.registry_url)
    except FormatError:
        return plugin

    updates = {
        name: getattr(annotated, name)
        for name in ("author_url", "min_obsidian_version", "repository", "introduction")
        if getattr(plugin, name) is None and getattr(annotated, name) is not None
    }
    return plugin.model_copy(update=updates) if updates else plugin


def _plugin_from_source(source: PluginSource, registry_url: str) -> MarketplacePlugin:
    return MarketplacePlugin(
        id=source.id,
        registry_url=registry_url,
        name=source.name,
        author=source.author,
        description=source.description,
        license=source.license,
        min_obsidian_version=source.min_obsidian_version,
        author_url=source.author_url,
        repository=source.repository,
        tags=source.tags,
        introduction=source.introduction,
    )


class MarketplaceSync:
    """Synchronizes marketplace plugin records from the registry."""

    def __init__(
        self,
        client: ManifestClient,
        config: SyncConfig | None = None,
        *,
        metrics: RegistryMetrics | None = None,
    ) -> None:
        """Initialize MarketplaceSync.

        Args:
            client: Registry client used for every plugin.
            config: Sync configuration. Uses SyncConfig() if None.
            metrics: Metrics collector. A default one is created if None.
        """
        self._client = client
        self._config = config or SyncConfig()
        self._metrics = metrics or RegistryMetrics()

    def resolve_source(self, source: PluginSource) -> PluginSource:
        """Fill ``registry_url`` from the configured namespace when it is unset.

        Raises:
            FormatError: If the namespace or plugin id is invalid.
        """
        if source.registry_url is not None:
            return source
        return source.model_copy(update={"registry_url": plugin_repository(self._config.namespace, source.id)})

    async def sync_plugin(self, source: PluginSource) -> PluginSyncResult:
        """Resolve one plugin's versions.

        Failures are captured in the result so one plugin never aborts the
        run; cancellation propagates.
        """
        log = logger.bind(plugin_id=source.id)
        try:
            source = self.resolve_source(source)
        except FormatError as e:
            log.warning("plugin_sync_failed", kind=e.kind.value, error=str(e))
            return PluginSyncResult(plugin=_plugin_from_source(source, ""), error=e)

        registry_url = source.registry_url or ""
        plugin = _plugin_from_source(source, registry_url)
        log = log.bind(registry_url=registry_url)

        with self._metrics.create_span(
            RegistryMetrics.SPAN_SYNC,
            {"plugin.id": source.id, "plugin.registry_url": registry_url},
        ):
            try:
                fetched = await self._client.fetch_versions(normalize(registry_url))
            except RegistryError as e:
                log.warning("plugin_sync_failed", kind=e.kind.value, error=str(e))
                return PluginSyncResult(plugin=plugin, error=e)
            except Exception as e:
                log.exception("plugin_sync_crashed", error=str(e))
                return PluginSyncResult(plugin=plugin, error=e)

        grouped = group_versions_by_sha(fetched.versions)
        plugin = _merge_annotations(plugin, grouped)
        plugin = plugin.model_copy(update={"versions": [PluginVersion.from_grouped(v) for v in grouped]})
        log.info(
            "plugin_synced",
            versions=len(grouped),
            tags=len(fetched.versions),
            failed_tags=len(fetched.errors),
        )
        return PluginSyncResult(plugin=plugin, tag_errors=dict(fetched.errors))

    async def sync(self, sources: Sequence[PluginSource] | None = None) -> SyncReport:
        """Synchronize every plugin, isolating failures per plugin.

        Args:
            sources: Plugins to sync. Defaults to ``config.plugins``.

        Returns:
            SyncReport whose index lists plugins in source order.
        """
        plugins = list(self._config.plugins if sources is None else sources)
        semaphore = asyncio.Semaphore(self._config.plugin_concurrency)

        async def _run(source: PluginSource) -> PluginSyncResult:
            async with semaphore:
                return await self.sync_plugin(source)

        results = await asyncio.gather(*(_run(source) for source in plugins))

        report = SyncReport(index=MarketplaceIndex(plugins=[result.plugin for result in results]))
        for result in results:
            if result.error is not None:
                report.failures[result.plugin.id] = result.error
            if result.tag_errors:
                report.tag_failures[result.plugin.id] = result.tag_errors

        logger.info(
            "marketplace_sync_completed",
            plugins=len(plugins),
            failed=len(report.failures),
            versions=sum(len(plugin.versions) for plugin in report.index.plugins),
        )
        return report


__all__ = [
    "MarketplaceSync",
    "PluginSyncResult",
    "SyncReport",
]
